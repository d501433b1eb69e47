"""
Class label tables for SSD detectors.
"""

from __future__ import annotations

import os
from typing import List, Optional

# COCO label map used by SSD MobileNet (91 outputs, index 0 is background).
COCO_LABELS: List[str] = [
    "background", "person", "bicycle", "car", "motorcycle", "airplane", "bus",
    "train", "truck", "boat", "traffic light", "fire hydrant", "???", "stop sign",
    "parking meter", "bench", "bird", "cat", "dog", "horse", "sheep", "cow",
    "elephant", "bear", "zebra", "giraffe", "???", "backpack", "umbrella", "???",
    "???", "handbag", "tie", "suitcase", "frisbee", "skis", "snowboard",
    "sports ball", "kite", "baseball bat", "baseball glove", "skateboard",
    "surfboard", "tennis racket", "bottle", "???", "wine glass", "cup", "fork",
    "knife", "spoon", "bowl", "banana", "apple", "sandwich", "orange", "broccoli",
    "carrot", "hot dog", "pizza", "donut", "cake", "chair", "couch",
    "potted plant", "bed", "???", "dining table", "???", "???", "toilet", "???",
    "tv", "laptop", "mouse", "remote", "keyboard", "cell phone", "microwave",
    "oven", "toaster", "sink", "refrigerator", "???", "book", "clock", "vase",
    "scissors", "teddy bear", "hair drier", "toothbrush",
]


def load_labels(path: Optional[str] = None) -> List[str]:
    """
    Load one label per line from `path`, or the COCO table when no path is given.

    Blank lines are kept as empty labels so line numbers match class indices.
    """
    if not path:
        return list(COCO_LABELS)
    if not os.path.exists(path):
        raise FileNotFoundError(f"Labels file not found: {path}")
    with open(path, "r") as f:
        return [line.rstrip("\n").strip() for line in f]


def label_for(labels: List[str], class_id: int) -> str:
    """Label for a class index, falling back to the index itself."""
    if 0 <= class_id < len(labels) and labels[class_id]:
        return labels[class_id]
    return str(class_id)
