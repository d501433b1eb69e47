"""
Tests for SSD post-processing: decode, scoring and suppression.
"""

import logging

import numpy as np
import pytest

from conftest import NUM_CLASSES, logit, make_raw
from inference.backend import RawOutput
from inference.postprocess import (
    BoxDecoder,
    PostProcessor,
    ScoreSigmoid,
    Suppressor,
    create_postprocessor_from_config,
    iou_one_to_many,
    sigmoid,
)
from models.config import PostProcessConfig
from models.detection import Detection
from models.errors import ConfigurationError, MalformedOutputError


@pytest.fixture
def processor(small_anchors):
    return PostProcessor(
        small_anchors,
        num_classes=NUM_CLASSES,
        labels=["background", "person", "car, automobile", "dog"],
    )


class TestSigmoid:
    """Tests for the numerically stable sigmoid."""

    def test_zero_is_half(self):
        assert sigmoid(np.array([0.0]))[0] == pytest.approx(0.5)

    def test_extremes_do_not_overflow(self):
        with np.errstate(over="raise"):
            out = sigmoid(np.array([-1000.0, 1000.0]))

        assert out[0] == pytest.approx(0.0)
        assert out[1] == pytest.approx(1.0)

    def test_inverse_of_logit(self):
        assert sigmoid(np.array([logit(0.8)]))[0] == pytest.approx(0.8)


class TestBoxDecoder:
    """Tests for anchor-relative box decoding."""

    def test_zero_offsets_return_anchor(self, small_anchors):
        """Zero offsets decode to the anchor box itself."""
        boxes = BoxDecoder(small_anchors).decode(np.zeros((len(small_anchors), 4)))

        assert boxes[0] == pytest.approx([0.4, 0.4, 0.6, 0.6])

    def test_center_shift_uses_scale(self, small_anchors):
        """dx = 10 moves the center by one anchor width."""
        offsets = np.zeros((len(small_anchors), 4))
        offsets[0] = (10.0, 0.0, 0.0, 0.0)

        boxes = BoxDecoder(small_anchors).decode(offsets)

        assert boxes[0] == pytest.approx([0.6, 0.4, 0.8, 0.6])

    def test_size_uses_exp(self, small_anchors):
        """dw = 5 * ln(2) doubles the width."""
        offsets = np.zeros((len(small_anchors), 4))
        offsets[0] = (0.0, 0.0, 5.0 * np.log(2.0), 0.0)

        boxes = BoxDecoder(small_anchors).decode(offsets)

        assert boxes[0] == pytest.approx([0.3, 0.4, 0.7, 0.6])

    def test_corners_clipped(self, small_anchors):
        """Boxes extending past the frame are clipped to [0, 1]."""
        offsets = np.zeros((len(small_anchors), 4))
        offsets[0] = (0.0, 0.0, 15.0, 15.0)

        boxes = BoxDecoder(small_anchors).decode(offsets)

        assert boxes[0] == pytest.approx([0.0, 0.0, 1.0, 1.0])

    def test_overflow_rows_are_nan(self, small_anchors):
        """exp() overflow leaves the row invalid rather than full-frame."""
        offsets = np.zeros((len(small_anchors), 4))
        offsets[0] = (0.0, 0.0, 1e6, 0.0)

        boxes = BoxDecoder(small_anchors).decode(offsets)

        assert np.all(np.isnan(boxes[0]))
        assert np.all(np.isfinite(boxes[1]))

    def test_shape_mismatch_raises(self, small_anchors):
        with pytest.raises(MalformedOutputError):
            BoxDecoder(small_anchors).decode(np.zeros((3, 4)))

    def test_invalid_scales_rejected(self, small_anchors):
        with pytest.raises(ConfigurationError):
            BoxDecoder(small_anchors, scales=(10.0, 10.0, 0.0, 5.0))


class TestScoreSigmoid:
    """Tests for class selection."""

    def test_background_never_wins(self):
        """Background column is excluded from the argmax."""
        logits = np.array([[10.0, -1.0, 2.0, 0.0]])

        class_ids, confidences = ScoreSigmoid(4).score(logits)

        assert class_ids[0] == 2
        assert confidences[0] == pytest.approx(sigmoid(np.array([2.0]))[0])

    def test_background_disabled(self):
        """With background_class=None every column competes."""
        logits = np.array([[10.0, -1.0, 2.0, 0.0]])

        class_ids, _ = ScoreSigmoid(4, background_class=None).score(logits)

        assert class_ids[0] == 0

    def test_width_mismatch_raises(self):
        with pytest.raises(MalformedOutputError):
            ScoreSigmoid(4).score(np.zeros((2, 3)))

    def test_background_out_of_range_rejected(self):
        with pytest.raises(ConfigurationError):
            ScoreSigmoid(4, background_class=4)


class TestSuppressor:
    """Tests for greedy non-max suppression."""

    def test_overlapping_lower_score_dropped(self):
        boxes = np.array([[0.1, 0.1, 0.3, 0.3], [0.11, 0.11, 0.31, 0.31], [0.6, 0.6, 0.8, 0.8]])
        confidences = np.array([0.9, 0.8, 0.7])

        kept = Suppressor().suppress_indices(boxes, confidences)

        assert kept == [0, 2]

    def test_output_sorted_descending(self):
        boxes = np.array([[0.0, 0.0, 0.1, 0.1], [0.3, 0.3, 0.4, 0.4], [0.6, 0.6, 0.7, 0.7]])
        confidences = np.array([0.2, 0.9, 0.5])

        kept = Suppressor().suppress_indices(boxes, confidences)

        assert kept == [1, 2, 0]

    def test_ties_keep_anchor_order(self):
        """Equal confidences are ranked by original index."""
        boxes = np.array([[0.0, 0.0, 0.1, 0.1], [0.3, 0.3, 0.4, 0.4], [0.6, 0.6, 0.7, 0.7]])
        confidences = np.array([0.5, 0.5, 0.5])

        assert Suppressor().suppress_indices(boxes, confidences) == [0, 1, 2]

    def test_score_threshold_inclusive(self):
        """A confidence exactly at the threshold is kept."""
        boxes = np.array([[0.0, 0.0, 0.1, 0.1], [0.3, 0.3, 0.4, 0.4]])
        confidences = np.array([0.25, 0.2499])

        kept = Suppressor(score_threshold=0.25).suppress_indices(boxes, confidences)

        assert kept == [0]

    def test_iou_at_threshold_suppressed(self):
        """IoU equal to the overlap threshold suppresses; survivors are strictly below."""
        # Half-overlapping squares: IoU = 0.125 / 0.375 = 1/3
        boxes = np.array([[0.0, 0.0, 0.5, 0.5], [0.25, 0.0, 0.75, 0.5]])
        confidences = np.array([0.9, 0.8])

        assert Suppressor(overlap_threshold=1.0 / 3.0).suppress_indices(boxes, confidences) == [0]
        assert Suppressor(overlap_threshold=0.34).suppress_indices(boxes, confidences) == [0, 1]

    def test_max_observations_cap(self):
        boxes = np.array([[i * 0.05, 0.0, i * 0.05 + 0.04, 0.04] for i in range(15)])
        confidences = np.linspace(0.9, 0.2, 15)

        kept = Suppressor(max_observations=10).suppress_indices(boxes, confidences)

        assert kept == list(range(10))

    def test_invalid_geometry_dropped(self):
        """NaN and zero-area boxes never survive."""
        boxes = np.array([[np.nan] * 4, [0.2, 0.2, 0.2, 0.4], [0.5, 0.5, 0.6, 0.6]])
        confidences = np.array([0.9, 0.8, 0.7])

        assert Suppressor().suppress_indices(boxes, confidences) == [2]

    def test_class_agnostic_by_default(self):
        """Overlapping boxes of different classes still suppress each other."""
        boxes = np.array([[0.1, 0.1, 0.3, 0.3], [0.1, 0.1, 0.3, 0.3]])
        confidences = np.array([0.9, 0.8])
        class_ids = np.array([1, 2])

        assert Suppressor().suppress_indices(boxes, confidences, class_ids) == [0]
        assert Suppressor(per_class=True).suppress_indices(boxes, confidences, class_ids) == [0, 1]

    def test_suppress_is_idempotent(self):
        """Running suppression on its own output changes nothing."""
        rng = np.random.default_rng(7)
        detections = []
        for _ in range(40):
            x, y = rng.uniform(0, 0.8, size=2)
            w, h = rng.uniform(0.05, 0.2, size=2)
            detections.append(
                Detection.from_xyxy(x, y, x + w, y + h, confidence=float(rng.uniform(0, 1)), class_id=1)
            )
        suppressor = Suppressor(max_observations=40)

        once = suppressor.suppress(detections)
        twice = suppressor.suppress(once)

        assert twice == once

    def test_invalid_arguments_rejected(self):
        with pytest.raises(ConfigurationError):
            Suppressor(score_threshold=1.5)
        with pytest.raises(ConfigurationError):
            Suppressor(overlap_threshold=0.0)
        with pytest.raises(ConfigurationError):
            Suppressor(max_observations=0)


class TestIou:
    def test_disjoint_is_zero(self):
        box = np.array([0.0, 0.0, 0.1, 0.1])
        boxes = np.array([[0.5, 0.5, 0.6, 0.6]])

        assert iou_one_to_many(box, boxes)[0] == 0.0

    def test_identical_is_one(self):
        box = np.array([0.1, 0.1, 0.3, 0.3])

        assert iou_one_to_many(box, box[np.newaxis, :])[0] == pytest.approx(1.0)


class TestPostProcessor:
    """Tests for the composed post-processor."""

    def test_empty_when_nothing_scores(self, processor, small_anchors):
        raw = make_raw(len(small_anchors))

        assert processor.postprocess(raw) == []

    def test_none_yields_empty(self, processor):
        assert processor.postprocess(None) == []

    def test_two_overlapping_boxes_keep_higher(self, processor, small_anchors):
        """(0.1,0.1,0.3,0.3)@0.9 and (0.15,0.12,0.32,0.31)@0.8 collapse to the first."""
        raw = make_raw(len(small_anchors), scores={1: (1, logit(0.9)), 2: (2, logit(0.8))})

        detections = processor.postprocess(raw)

        assert len(detections) == 1
        assert detections[0].confidence == pytest.approx(0.9)
        assert detections[0].bbox.as_tuple() == pytest.approx((0.1, 0.1, 0.3, 0.3))
        assert detections[0].identifier == "person"
        assert detections[0].class_id == 1

    def test_ranked_by_confidence(self, processor, small_anchors):
        raw = make_raw(
            len(small_anchors),
            scores={3: (3, logit(0.6)), 4: (1, logit(0.95)), 5: (2, logit(0.7))},
        )

        detections = processor.postprocess(raw)

        assert [d.class_id for d in detections] == [1, 2, 3]
        assert detections[1].label == "car"

    def test_deterministic(self, processor, small_anchors):
        """Identical input produces identical output."""
        raw = make_raw(
            len(small_anchors),
            scores={3: (3, logit(0.6)), 4: (1, logit(0.6)), 6: (2, logit(0.6))},
        )

        assert processor.postprocess(raw) == processor.postprocess(raw)
        assert [d.class_id for d in processor.postprocess(raw)] == [3, 1, 2]

    def test_batch_dimension_squeezed(self, processor, small_anchors):
        """(1, N, 4) and (1, N, C) tensors are accepted."""
        raw = make_raw(len(small_anchors), scores={0: (1, logit(0.9))})
        batched = RawOutput(
            box_offsets=raw.box_offsets[np.newaxis],
            class_logits=raw.class_logits[np.newaxis],
        )

        detections = processor.postprocess(batched)

        assert len(detections) == 1
        assert detections[0].bbox.as_tuple() == pytest.approx((0.4, 0.4, 0.6, 0.6))

    def test_wrong_anchor_count_yields_empty(self, processor, caplog):
        """A tensor with the wrong anchor count is discarded with a warning."""
        raw = make_raw(5, scores={0: (1, logit(0.9))})

        with caplog.at_level(logging.WARNING):
            assert processor.postprocess(raw) == []

        assert "malformed" in caplog.text.lower()

    def test_nan_yields_empty(self, processor, small_anchors):
        raw = make_raw(len(small_anchors), scores={0: (1, logit(0.9))})
        raw.box_offsets[3, 0] = np.nan

        assert processor.postprocess(raw) == []

    def test_ragged_tensor_yields_empty(self, processor, caplog):
        raw = RawOutput(box_offsets=[[0, 0, 0, 0], [0, 0]], class_logits=[[0, 1, 2, 3]])

        with caplog.at_level(logging.WARNING):
            assert processor.postprocess(raw) == []

        assert "malformed" in caplog.text.lower()

    def test_non_numeric_tensor_yields_empty(self, processor, small_anchors):
        raw = make_raw(len(small_anchors), scores={0: (1, logit(0.9))})
        text_offsets = raw.box_offsets.astype(str)
        text_offsets[0, 0] = "a"

        assert processor.postprocess(RawOutput(text_offsets, raw.class_logits)) == []

    def test_unknown_class_falls_back_to_index(self, small_anchors):
        processor = PostProcessor(small_anchors, num_classes=NUM_CLASSES, labels=["background", "person"])
        raw = make_raw(len(small_anchors), scores={0: (3, logit(0.9))})

        assert processor(raw)[0].identifier == "3"


class TestCreatePostProcessorFromConfig:
    def test_builds_from_config(self, small_anchors):
        cfg = PostProcessConfig(num_anchors=8, num_classes=NUM_CLASSES, nms_overlap_threshold=0.4)

        processor = create_postprocessor_from_config(small_anchors, cfg, max_observations=3)

        assert processor.num_anchors == 8
        assert processor.suppressor.overlap_threshold == 0.4
        assert processor.suppressor.max_observations == 3

    def test_short_label_table_rejected(self, small_anchors):
        cfg = PostProcessConfig(num_anchors=8, num_classes=NUM_CLASSES)

        with pytest.raises(ConfigurationError, match="Label table"):
            create_postprocessor_from_config(small_anchors, cfg, max_observations=10, labels=["a", "b"])
