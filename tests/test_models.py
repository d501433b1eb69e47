"""
Smoke tests for typed models and adapters.
"""

import numpy as np
import pytest

from models.frame import CameraPose, FrameData, ImageRepresentation
from models.detection import BoundingBox, Detection, RectangleObservation
from models.labels import COCO_LABELS, label_for, load_labels


class TestBoundingBox:
    def test_as_tuple(self):
        bbox = BoundingBox(x_min=0.1, y_min=0.2, x_max=0.5, y_max=0.4)
        assert bbox.as_tuple() == (0.1, 0.2, 0.5, 0.4)

    def test_inverted_box_rejected(self):
        with pytest.raises(ValueError, match="Inverted"):
            BoundingBox(x_min=0.5, y_min=0.1, x_max=0.2, y_max=0.3)

    def test_zero_area_allowed(self):
        assert BoundingBox(0.2, 0.2, 0.2, 0.4).as_tuple() == (0.2, 0.2, 0.2, 0.4)


class TestDetection:
    def test_from_xyxy(self):
        det = Detection.from_xyxy(0.1, 0.2, 0.3, 0.4, confidence=0.9, identifier="cup", class_id=47)
        assert det.x_min == 0.1
        assert det.y_max == 0.4
        assert det.confidence == 0.9
        assert det.class_id == 47

    def test_label_is_first_name(self):
        det = Detection.from_xyxy(0, 0, 1, 1, identifier="tabby, tabby cat")
        assert det.label == "tabby"

    def test_confidence_out_of_range(self):
        with pytest.raises(ValueError, match="Confidence"):
            Detection.from_xyxy(0, 0, 1, 1, confidence=1.2)

    def test_is_immutable(self):
        det = Detection.from_xyxy(0, 0, 1, 1)
        with pytest.raises(AttributeError):
            det.confidence = 0.1


class TestRectangleObservation:
    def test_corners_clockwise(self):
        rect = RectangleObservation((0.1, 0.1), (0.9, 0.1), (0.9, 0.8), (0.1, 0.8))
        assert rect.corners == [(0.1, 0.1), (0.9, 0.1), (0.9, 0.8), (0.1, 0.8)]
        assert rect.confidence == 1.0


class TestFrameModels:
    def test_frame_data_from_numpy(self):
        frame = np.zeros((480, 640, 3), dtype=np.uint8)
        fd = FrameData.from_numpy(frame, timestamp=12.5, frame_index=4, source="cam")
        assert fd.size == (640, 480)
        assert fd.frame is frame

    def test_to_handle(self):
        frame = np.zeros((4, 4, 3), dtype=np.uint8)
        handle = FrameData.from_numpy(frame, timestamp=12.5, frame_index=4).to_handle()
        assert handle.buffer is frame
        assert handle.representation is ImageRepresentation.VIDEO_BUFFER
        assert handle.timestamp == 12.5

    def test_camera_pose_forward(self):
        # 90 degrees about y: forward (z) turns to +x
        rotation = np.array([[0.0, 0.0, 1.0], [0.0, 1.0, 0.0], [-1.0, 0.0, 0.0]])
        pose = CameraPose(position=np.array([1.0, 0.0, 0.0]), rotation=rotation)
        assert pose.forward == pytest.approx([1.0, 0.0, 0.0])
        assert pose.point_ahead(2.0) == pytest.approx([3.0, 0.0, 0.0])


class TestLabels:
    def test_coco_table(self):
        assert len(COCO_LABELS) == 91
        assert COCO_LABELS[0] == "background"
        assert COCO_LABELS[1] == "person"

    def test_load_labels_default(self):
        assert load_labels() == COCO_LABELS

    def test_load_labels_file(self, tmp_path):
        path = tmp_path / "labels.txt"
        path.write_text("background\ncat\n\ndog\n")
        labels = load_labels(str(path))
        assert labels == ["background", "cat", "", "dog"]
        assert label_for(labels, 2) == "2"
        assert label_for(labels, 3) == "dog"

    def test_load_labels_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_labels(str(tmp_path / "nope.txt"))

    def test_label_for_out_of_range(self):
        assert label_for(["background"], 5) == "5"
