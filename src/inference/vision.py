"""
Composite vision backend.

Allocated once at startup with the requested kinds (classification and/or
rectangle recognition) and the observation bound, then evaluated once per
admitted frame.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import numpy as np

from models.config import InferenceConfig, RequestKind
from models.errors import ConfigurationError

from .backend import InferenceBackend, InferenceResult, RawOutput
from .rectangle_backend import RectangleDetector
from .ssd_backend import SsdConfig, SsdDnnClassifier

Classifier = Callable[[np.ndarray], RawOutput]


class VisionBackend(InferenceBackend):
    """
    Runs every allocated request on one image.

    Example:
        backend = VisionBackend(classifier=SsdDnnClassifier(cfg).classify)
        backend.configure(RequestKind.CLASSIFICATION, max_observations=10)
        result = backend.run_inference(image)
    """

    def __init__(
        self,
        classifier: Optional[Classifier] = None,
        quadrature_tolerance: float = 15.0,
    ):
        self._classifier = classifier
        self._quadrature_tolerance = quadrature_tolerance
        self._rectangles: Optional[RectangleDetector] = None
        self._classification_enabled = False
        self.request_kinds = RequestKind.NONE
        self.max_observations = 0

    def configure(self, request_kinds: RequestKind, max_observations: int) -> None:
        """
        (Re)allocate requests. Previous allocations are discarded.

        Raises:
            ConfigurationError: If classification is requested without a classifier.
        """
        self._classification_enabled = False
        self._rectangles = None
        self.request_kinds = request_kinds
        self.max_observations = max_observations

        if not request_kinds:
            logging.warning("No requests specified")
            return

        if RequestKind.CLASSIFICATION in request_kinds:
            if self._classifier is None:
                raise ConfigurationError("Classification requested but no model is configured")
            self._classification_enabled = True
            logging.info("Classification request allocated")

        if RequestKind.RECTANGLE_RECOGNITION in request_kinds:
            self._rectangles = RectangleDetector(
                max_observations=max_observations,
                quadrature_tolerance=self._quadrature_tolerance,
            )
            logging.info("Rectangle recognition request allocated")

    def run_inference(self, image: np.ndarray) -> InferenceResult:
        result = InferenceResult()
        if self._classification_enabled:
            result.raw = self._classifier(image)
        if self._rectangles is not None:
            result.rectangles = self._rectangles.detect(image)
        return result


def create_backend_from_config(inference_cfg: InferenceConfig) -> VisionBackend:
    """
    Factory: Build and allocate a VisionBackend from InferenceConfig.

    Raises:
        ConfigurationError: If a requested model artifact is missing.
    """
    classifier = None
    if RequestKind.CLASSIFICATION in inference_cfg.request_kinds:
        model_cfg = inference_cfg.model
        if model_cfg is None or not model_cfg.path:
            raise ConfigurationError("inference.model.path is required for classification")
        ssd = SsdDnnClassifier(
            SsdConfig(
                model_path=model_cfg.path,
                config_path=model_cfg.config_path,
                input_size=model_cfg.input_size,
                center_crop=model_cfg.center_crop,
                box_output=model_cfg.box_output,
                class_output=model_cfg.class_output,
                box_layout=model_cfg.box_layout,
            )
        )
        classifier = ssd.classify

    backend = VisionBackend(
        classifier=classifier,
        quadrature_tolerance=inference_cfg.quadrature_tolerance,
    )
    backend.configure(inference_cfg.request_kinds, inference_cfg.max_observations)
    return backend
