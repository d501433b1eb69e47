"""
Live detection overlay.

Reads frames from a camera or video file, runs SSD detection behind a
single-flight gate, and draws the resulting markers with the OpenCV host.

Usage:
    python src/main.py --config config/config.yaml --display

Arguments:
    --config: Path to configuration file
    --display: Show the annotated feed in a window
    --max-frames: Stop after this many frames (0 = run until the source ends)
"""

import os
import sys
import argparse
import logging
import time
import yaml
import cv2
from typing import Any, Dict, Optional, Tuple

from inference.anchors import AnchorBook
from inference.backend import InferenceBackend
from inference.postprocess import PostProcessor, create_postprocessor_from_config
from inference.vision import create_backend_from_config
from models.config import Config, RequestKind
from models.errors import ConfigurationError
from models.labels import load_labels
from observation.opencv_source import CameraSource
from observation.tracking import CameraFeed
from ops.logging import setup_logging
from overlay.opencv_host import OpenCvRenderHost
from overlay.slots import create_slot_manager_from_config
from pipeline.engine import OverlayPipeline
from runtime.context import RuntimeContext


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    try:
        base_path = os.path.join(os.path.dirname(config_path), "default.yaml")
        base_cfg: Dict[str, Any] = {}
        if os.path.exists(base_path):
            with open(base_path, "r") as f:
                base_cfg = yaml.safe_load(f) or {}

        local_overrides_path = os.path.join(os.path.dirname(config_path), "config.yaml")
        local_cfg: Dict[str, Any] = {}
        if os.path.exists(local_overrides_path):
            with open(local_overrides_path, "r") as f:
                local_cfg = yaml.safe_load(f) or {}

        merged = _deep_merge(base_cfg, local_cfg)

        # Finally apply explicit config_path if it's not the local override file itself
        if os.path.exists(config_path) and os.path.abspath(config_path) != os.path.abspath(local_overrides_path):
            with open(config_path, "r") as f:
                explicit_cfg = yaml.safe_load(f) or {}
            merged = _deep_merge(merged, explicit_cfg)

        return merged
    except Exception as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_probability(value: Any) -> bool:
    return _is_number(value) and 0 <= value <= 1


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration file structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    # Required top-level sections
    required_sections = ['camera', 'inference', 'overlay', 'log_path', 'log_level']
    for section in required_sections:
        if section not in config:
            return False, f"Missing required configuration section: {section}"

    # Validate camera settings
    camera = config.get('camera', {})
    if 'device_id' not in camera:
        return False, "Missing camera.device_id"
    if not isinstance(camera['device_id'], (int, str)) or isinstance(camera['device_id'], bool):
        return False, "camera.device_id must be an integer (index) or string (file path)"
    if isinstance(camera['device_id'], int) and camera['device_id'] < 0:
        return False, "camera.device_id integer must be non-negative"
    if 'resolution' in camera:
        resolution = camera['resolution']
        if not isinstance(resolution, list) or len(resolution) != 2:
            return False, "camera.resolution must be a list of [width, height]"
        if not all(isinstance(x, int) and x > 0 for x in resolution):
            return False, "camera.resolution values must be positive integers"
    if 'fps' in camera and (not isinstance(camera['fps'], int) or camera['fps'] <= 0):
        return False, "camera.fps must be a positive integer"
    if 'buffer_size' in camera and (not isinstance(camera['buffer_size'], int) or camera['buffer_size'] <= 0):
        return False, "camera.buffer_size must be a positive integer"

    # Validate inference settings
    inference = config.get('inference', {}) or {}
    kinds = inference.get('request_kinds', ['classification'])
    if not isinstance(kinds, list):
        return False, "inference.request_kinds must be a list"
    try:
        request_kinds = RequestKind.from_names(kinds)
    except ValueError:
        return False, "inference.request_kinds entries must be one of: classification, rectangle_recognition"
    max_obs = inference.get('max_observations', 10)
    if not isinstance(max_obs, int) or isinstance(max_obs, bool) or max_obs <= 0:
        return False, "inference.max_observations must be a positive integer"
    if RequestKind.CLASSIFICATION in request_kinds:
        model = inference.get('model', {}) or {}
        if not isinstance(model.get('path'), str) or not model.get('path'):
            return False, "inference.model.path is required when classification is requested"
        if model.get('box_layout', 'yxhw') not in ('yxhw', 'xywh'):
            return False, "inference.model.box_layout must be yxhw or xywh"

    # Validate post-processing settings
    postprocess = config.get('postprocess', {}) or {}
    for key in ('num_anchors', 'num_classes'):
        if key in postprocess:
            value = postprocess[key]
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                return False, f"postprocess.{key} must be a positive integer"
    if 'score_threshold' in postprocess and not _is_probability(postprocess['score_threshold']):
        return False, "postprocess.score_threshold must be between 0 and 1"
    if 'nms_overlap_threshold' in postprocess:
        iou = postprocess['nms_overlap_threshold']
        if not _is_number(iou) or not (0 < iou <= 1):
            return False, "postprocess.nms_overlap_threshold must be between 0 and 1"
    if 'box_scales' in postprocess:
        scales = postprocess['box_scales']
        if not isinstance(scales, list) or len(scales) != 4 or not all(_is_number(s) and s > 0 for s in scales):
            return False, "postprocess.box_scales must be a list of 4 positive numbers"

    # Validate overlay settings
    overlay = config.get('overlay', {}) or {}
    if 'confidence_threshold' in overlay and not _is_probability(overlay['confidence_threshold']):
        return False, "overlay.confidence_threshold must be between 0 and 1"
    for key in ('display_depth', 'plane_size'):
        if key in overlay and (not _is_number(overlay[key]) or overlay[key] <= 0):
            return False, f"overlay.{key} must be a positive number"

    # Validate log settings
    valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    if config['log_level'] not in valid_log_levels:
        return False, f"log_level must be one of: {', '.join(valid_log_levels)}"

    return True, None


def build_postprocessor(config: Config) -> PostProcessor:
    """
    Load anchors and labels and build the post-processor.

    Raises:
        ConfigurationError: On anchor/class count mismatches or missing files.
    """
    model = config.inference.model
    expected = config.postprocess.num_anchors

    if model is not None and model.anchors_path:
        anchors = AnchorBook.load(model.anchors_path, expected_count=expected)
    else:
        anchors = AnchorBook.ssd_mobilenet_v1()
        if len(anchors) != expected:
            raise ConfigurationError(
                f"Anchor count mismatch: generated {len(anchors)} anchors, "
                f"postprocess.num_anchors is {expected}"
            )

    try:
        labels = load_labels(model.labels_path if model is not None else None)
    except FileNotFoundError as e:
        raise ConfigurationError(str(e)) from e

    return create_postprocessor_from_config(
        anchors,
        config.postprocess,
        max_observations=config.inference.max_observations,
        labels=labels,
    )


def build_pipeline(
    config: Config,
    host: OpenCvRenderHost,
    backend: Optional[InferenceBackend] = None,
    executor=None,
) -> OverlayPipeline:
    """Assemble backend, post-processor, slots and pipeline from config."""
    if backend is None:
        backend = create_backend_from_config(config.inference)
    post_processor = build_postprocessor(config)
    slot_manager = create_slot_manager_from_config(
        host,
        config.overlay,
        capacity=config.inference.max_observations,
    )
    return OverlayPipeline(backend, post_processor, slot_manager, executor=executor)


def run(ctx: RuntimeContext, display: bool = False, max_frames: int = 0) -> None:
    """Read frames, publish them to the pipeline and render every tick."""
    consecutive_failures = 0
    max_failures = 10
    frame_count = 0
    last_stats_time = time.time()

    ctx.pipeline.add_callback(ctx.on_cycle)
    ctx.pipeline.start(ctx.feed)
    try:
        ctx.source.open()
        while True:
            frame_data = ctx.source.read()
            if frame_data is None:
                if ctx.source.exhausted:
                    break
                consecutive_failures += 1
                if consecutive_failures >= max_failures:
                    logging.error(f"Too many consecutive frame read failures ({consecutive_failures}), exiting")
                    break
                logging.warning(f"Failed to read frame ({consecutive_failures}/{max_failures}), continuing...")
                time.sleep(0.5)
                continue

            consecutive_failures = 0
            frame_count += 1

            ctx.feed.publish(frame_data)
            ctx.pipeline.tick(ctx.feed.pose)
            if display:
                cv2.imshow("Detection Overlay", ctx.host.draw(frame_data.frame.copy()))
                key = cv2.waitKey(1) & 0xFF
                if key == ord('q'):
                    break

            now = time.time()
            if now - last_stats_time >= 60:
                stats = ctx.pipeline.stats
                logging.info(
                    f"Pipeline stats: frames={stats.frames_seen}, admitted={stats.frames_admitted}, "
                    f"dropped={stats.frames_dropped}, errors={stats.cycle_errors}, "
                    f"last_detections={ctx.last_cycle.get('detections', 0)}"
                )
                last_stats_time = now

            if max_frames and frame_count >= max_frames:
                break
    finally:
        ctx.pipeline.shutdown()
        ctx.source.close()
        if display:
            cv2.destroyAllWindows()


def main():
    """Main application function."""
    parser = argparse.ArgumentParser(description='Live Detection Overlay')
    parser.add_argument('--config', type=str, default='config/config.yaml',
                        help='Path to configuration file')
    parser.add_argument('--display', action='store_true',
                        help='Show the annotated feed')
    parser.add_argument('--max-frames', type=int, default=0,
                        help='Stop after this many frames (0 = no limit)')
    args = parser.parse_args()

    raw_config = load_config(args.config)

    is_valid, error_msg = validate_config(raw_config)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        sys.exit(1)

    setup_logging(raw_config['log_path'], raw_config['log_level'])
    config = Config.from_dict(raw_config)

    logging.info("Starting Live Detection Overlay")

    try:
        host = OpenCvRenderHost(
            display_depth=config.overlay.display_depth,
            plane_size=config.overlay.plane_size,
        )
        backend = create_backend_from_config(config.inference)
        pipeline = build_pipeline(config, host, backend=backend)
    except ConfigurationError as e:
        logging.error(f"Configuration error: {e}")
        sys.exit(1)

    source = CameraSource(config.camera, source_id="main-camera")
    ctx = RuntimeContext(
        config=config,
        source=source,
        feed=CameraFeed(),
        pipeline=pipeline,
        host=host,
        backend=backend,
    )

    try:
        run(ctx, display=args.display, max_frames=args.max_frames)
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
    except RuntimeError as e:
        logging.error(f"Error in main loop: {e}")
        sys.exit(1)
    finally:
        logging.info("Live Detection Overlay stopped")


if __name__ == "__main__":
    main()
