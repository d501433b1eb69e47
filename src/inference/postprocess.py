"""
SSD post-processing: box decode, sigmoid scoring and non-max suppression.

Turns the raw (box_offsets, class_logits) tensors of one inference into a
list of Detection objects ranked by descending confidence. The result is
deterministic for identical input: ties keep anchor order.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from models.detection import BoundingBox, Detection
from models.errors import ConfigurationError, MalformedOutputError
from models.labels import COCO_LABELS, label_for

from .anchors import AnchorBook
from .backend import RawOutput


def sigmoid(x: np.ndarray) -> np.ndarray:
    # Split by sign so large |x| never overflows exp().
    x = np.asarray(x, dtype=np.float64)
    out = np.empty_like(x)
    pos = x >= 0
    out[pos] = 1.0 / (1.0 + np.exp(-x[pos]))
    ex = np.exp(x[~pos])
    out[~pos] = ex / (1.0 + ex)
    return out


def iou_one_to_many(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """IoU between one [x1, y1, x2, y2] box and an (N, 4) array of boxes."""
    x1 = np.maximum(box[0], boxes[:, 0])
    y1 = np.maximum(box[1], boxes[:, 1])
    x2 = np.minimum(box[2], boxes[:, 2])
    y2 = np.minimum(box[3], boxes[:, 3])

    inter = np.maximum(0.0, x2 - x1) * np.maximum(0.0, y2 - y1)
    area = (box[2] - box[0]) * (box[3] - box[1])
    areas = (boxes[:, 2] - boxes[:, 0]) * (boxes[:, 3] - boxes[:, 1])
    union = area + areas - inter
    return np.where(union > 0, inter / np.where(union > 0, union, 1.0), 0.0)


class BoxDecoder:
    """
    Decode anchor-relative offsets into clipped corner boxes.

    For anchor (acx, acy, aw, ah) and offsets (dx, dy, dw, dh):
        cx = acx + dx / x_scale * aw
        cy = acy + dy / y_scale * ah
        w  = aw * exp(dw / w_scale)
        h  = ah * exp(dh / h_scale)
    """

    def __init__(self, anchors: AnchorBook, scales: Sequence[float] = (10.0, 10.0, 5.0, 5.0)):
        if len(scales) != 4 or any(s <= 0 for s in scales):
            raise ConfigurationError(f"box_scales must be 4 positive numbers, got {list(scales)}")
        self.anchors = anchors
        self.x_scale, self.y_scale, self.w_scale, self.h_scale = (float(s) for s in scales)

    def decode(self, box_offsets: np.ndarray) -> np.ndarray:
        """
        Args:
            box_offsets: (N, 4) offsets where N equals the anchor count.

        Returns:
            (N, 4) array of [x_min, y_min, x_max, y_max] clipped to [0, 1].
            Rows are NaN where the offsets overflow exp().
        """
        offsets = np.asarray(box_offsets, dtype=np.float64)
        anchors = self.anchors.as_array()
        if offsets.shape != anchors.shape:
            raise MalformedOutputError(
                f"Box tensor shape {offsets.shape} does not match anchors {anchors.shape}"
            )

        acx, acy, aw, ah = anchors[:, 0], anchors[:, 1], anchors[:, 2], anchors[:, 3]
        with np.errstate(over="ignore", invalid="ignore"):
            cx = acx + offsets[:, 0] / self.x_scale * aw
            cy = acy + offsets[:, 1] / self.y_scale * ah
            w = aw * np.exp(offsets[:, 2] / self.w_scale)
            h = ah * np.exp(offsets[:, 3] / self.h_scale)

            boxes = np.stack([cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2], axis=1)

        # Overflowed rows must stay invalid instead of clipping to the full frame.
        boxes[~np.all(np.isfinite(boxes), axis=1)] = np.nan
        return np.clip(boxes, 0.0, 1.0)


class ScoreSigmoid:
    """Pick the best non-background class per anchor and its sigmoid score."""

    def __init__(self, num_classes: int, background_class: Optional[int] = 0):
        if num_classes <= 0:
            raise ConfigurationError("num_classes must be positive")
        if background_class is not None and not (0 <= background_class < num_classes):
            raise ConfigurationError(
                f"background_class {background_class} outside [0, {num_classes})"
            )
        if background_class is not None and num_classes == 1:
            raise ConfigurationError("Only the background class is defined")
        self.num_classes = num_classes
        self.background_class = background_class

    def score(self, class_logits: np.ndarray):
        """
        Returns:
            (class_ids, confidences), both of length N.
        """
        logits = np.asarray(class_logits, dtype=np.float64)
        if logits.ndim != 2 or logits.shape[1] != self.num_classes:
            raise MalformedOutputError(
                f"Class tensor shape {logits.shape} does not match {self.num_classes} classes"
            )

        if self.background_class is not None:
            logits = logits.copy()
            logits[:, self.background_class] = -np.inf

        # Sigmoid is monotonic, so the argmax over logits picks the same class.
        class_ids = np.argmax(logits, axis=1)
        best = logits[np.arange(logits.shape[0]), class_ids]
        return class_ids, sigmoid(best)


class Suppressor:
    """
    Greedy non-max suppression.

    Candidates are stably sorted by descending confidence, those below
    `score_threshold` are dropped (equal is kept), invalid geometry is dropped,
    and a candidate survives only if its IoU with every kept candidate in scope
    is strictly below `overlap_threshold`. At most `max_observations` survive.
    """

    def __init__(
        self,
        score_threshold: float = 0.01,
        overlap_threshold: float = 0.5,
        max_observations: int = 10,
        per_class: bool = False,
    ):
        if not 0.0 <= score_threshold <= 1.0:
            raise ConfigurationError("score_threshold must be between 0 and 1")
        if not 0.0 < overlap_threshold <= 1.0:
            raise ConfigurationError("nms_overlap_threshold must be in (0, 1]")
        if max_observations <= 0:
            raise ConfigurationError("max_observations must be a positive integer")
        self.score_threshold = score_threshold
        self.overlap_threshold = overlap_threshold
        self.max_observations = max_observations
        self.per_class = per_class

    def suppress_indices(
        self,
        boxes: np.ndarray,
        confidences: np.ndarray,
        class_ids: Optional[np.ndarray] = None,
    ) -> List[int]:
        """Indices of kept rows, ordered by descending confidence."""
        boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
        confidences = np.asarray(confidences, dtype=np.float64).reshape(-1)
        if class_ids is None:
            class_ids = np.zeros(len(confidences), dtype=np.int64)
        class_ids = np.asarray(class_ids).reshape(-1)

        finite = np.all(np.isfinite(boxes), axis=1) & np.isfinite(confidences)
        with np.errstate(invalid="ignore"):
            positive = (boxes[:, 2] > boxes[:, 0]) & (boxes[:, 3] > boxes[:, 1])
            eligible = finite & positive & (confidences >= self.score_threshold)

        candidates = np.flatnonzero(eligible)
        order = candidates[np.argsort(-confidences[candidates], kind="stable")]

        keep: List[int] = []
        for i in order:
            if len(keep) >= self.max_observations:
                break
            if keep:
                kept = np.asarray(keep)
                if self.per_class:
                    kept = kept[class_ids[kept] == class_ids[i]]
                if kept.size and np.any(iou_one_to_many(boxes[i], boxes[kept]) >= self.overlap_threshold):
                    continue
            keep.append(int(i))
        return keep

    def suppress(self, detections: Sequence[Detection]) -> List[Detection]:
        """Run suppression over already-built detections."""
        if not detections:
            return []
        boxes = np.array([d.bbox.as_tuple() for d in detections], dtype=np.float64)
        confidences = np.array([d.confidence for d in detections], dtype=np.float64)
        class_ids = np.array([d.class_id if d.class_id is not None else -1 for d in detections])
        return [detections[i] for i in self.suppress_indices(boxes, confidences, class_ids)]


class PostProcessor:
    """
    Compose BoxDecoder, ScoreSigmoid and Suppressor into
    `postprocess(raw) -> [Detection]`.

    Malformed tensors produce an empty list and a warning; they never raise.
    """

    def __init__(
        self,
        anchors: AnchorBook,
        num_classes: int = 91,
        background_class: Optional[int] = 0,
        score_threshold: float = 0.01,
        overlap_threshold: float = 0.5,
        max_observations: int = 10,
        per_class: bool = False,
        box_scales: Sequence[float] = (10.0, 10.0, 5.0, 5.0),
        labels: Optional[List[str]] = None,
    ):
        self.decoder = BoxDecoder(anchors, box_scales)
        self.scorer = ScoreSigmoid(num_classes, background_class)
        self.suppressor = Suppressor(
            score_threshold=score_threshold,
            overlap_threshold=overlap_threshold,
            max_observations=max_observations,
            per_class=per_class,
        )
        self.labels = list(labels) if labels is not None else list(COCO_LABELS)

    @property
    def num_anchors(self) -> int:
        return len(self.decoder.anchors)

    def postprocess(self, raw: Optional[RawOutput]) -> List[Detection]:
        if raw is None:
            return []
        try:
            return self._postprocess(raw)
        except MalformedOutputError as e:
            logging.warning(f"Discarding malformed inference output: {e}")
            return []

    def __call__(self, raw: Optional[RawOutput]) -> List[Detection]:
        return self.postprocess(raw)

    def _postprocess(self, raw: RawOutput) -> List[Detection]:
        box_offsets = _as_2d(raw.box_offsets, 4, "box")
        class_logits = _as_2d(raw.class_logits, self.scorer.num_classes, "class")

        if box_offsets.shape[0] != self.num_anchors or class_logits.shape[0] != self.num_anchors:
            raise MalformedOutputError(
                f"Anchor count mismatch: boxes={box_offsets.shape[0]}, "
                f"classes={class_logits.shape[0]}, expected={self.num_anchors}"
            )
        if np.isnan(box_offsets).any() or np.isnan(class_logits).any():
            raise MalformedOutputError("Output tensors contain NaN values")

        boxes = self.decoder.decode(box_offsets)
        class_ids, confidences = self.scorer.score(class_logits)
        kept = self.suppressor.suppress_indices(boxes, confidences, class_ids)

        detections: List[Detection] = []
        for i in kept:
            x_min, y_min, x_max, y_max = (float(v) for v in boxes[i])
            class_id = int(class_ids[i])
            detections.append(
                Detection(
                    identifier=label_for(self.labels, class_id),
                    confidence=float(confidences[i]),
                    bbox=BoundingBox(x_min=x_min, y_min=y_min, x_max=x_max, y_max=y_max),
                    class_id=class_id,
                )
            )
        return detections


def _as_2d(tensor: np.ndarray, width: int, name: str) -> np.ndarray:
    """Squeeze leading batch dimensions, e.g. (1, N, 4) -> (N, 4)."""
    try:
        arr = np.asarray(tensor, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise MalformedOutputError(f"Non-numeric or ragged {name} tensor: {e}") from e
    while arr.ndim > 2 and arr.shape[0] == 1:
        arr = arr[0]
    if arr.ndim != 2 or arr.shape[1] != width:
        raise MalformedOutputError(f"Unexpected {name} tensor shape {np.shape(tensor)}")
    return arr


def create_postprocessor_from_config(
    anchors: AnchorBook,
    postprocess_cfg,
    max_observations: int,
    labels: Optional[List[str]] = None,
) -> PostProcessor:
    """
    Factory: Build a PostProcessor from PostProcessConfig.

    Raises:
        ConfigurationError: If the label table is shorter than the class
            tensor is wide.
    """
    if labels is not None and len(labels) < postprocess_cfg.num_classes:
        raise ConfigurationError(
            f"Label table has {len(labels)} entries but the model has "
            f"{postprocess_cfg.num_classes} classes"
        )
    return PostProcessor(
        anchors,
        num_classes=postprocess_cfg.num_classes,
        background_class=postprocess_cfg.background_class,
        score_threshold=postprocess_cfg.score_threshold,
        overlap_threshold=postprocess_cfg.nms_overlap_threshold,
        max_observations=max_observations,
        per_class=postprocess_cfg.nms_per_class,
        box_scales=postprocess_cfg.box_scales,
        labels=labels,
    )
