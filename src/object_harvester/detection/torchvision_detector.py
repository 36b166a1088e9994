"""
COCO object detector implementation using torchvision.

This module provides a concrete implementation of the BaseDetector
interface using pre-trained COCO detection models from torchvision.
The default SSDLite MobileNetV3 model is small enough for live webcam use.
"""

import logging
from typing import Callable, Dict, Optional, Tuple

import cv2
import numpy as np
import torch
import torchvision
import torchvision.transforms.functional as F

from .base import BaseDetector, Detection, DetectionResult
from ..config import COCO_CLASSES, DetectorConfig
from ..errors import DetectorUnavailableError

logger = logging.getLogger(__name__)

_detection_models = torchvision.models.detection

# model name -> (builder, weights enum)
SUPPORTED_MODELS: Dict[str, Tuple[Callable, object]] = {
    "ssdlite320_mobilenet_v3_large": (
        _detection_models.ssdlite320_mobilenet_v3_large,
        _detection_models.SSDLite320_MobileNet_V3_Large_Weights.DEFAULT,
    ),
    "fasterrcnn_resnet50_fpn": (
        _detection_models.fasterrcnn_resnet50_fpn,
        _detection_models.FasterRCNN_ResNet50_FPN_Weights.DEFAULT,
    ),
    "maskrcnn_resnet50_fpn": (
        _detection_models.maskrcnn_resnet50_fpn,
        _detection_models.MaskRCNN_ResNet50_FPN_Weights.DEFAULT,
    ),
}


class TorchvisionDetector(BaseDetector):
    """
    Object detector backed by a COCO-pretrained torchvision model.

    Example:
        >>> config = DetectorConfig(device="cuda")
        >>> detector = TorchvisionDetector(config)
        >>> result = detector.detect(bgr_frame)
        >>> for det in result:
        ...     print(f"Found {det.class_name} at {det.bbox}")
    """

    def __init__(self, config: Optional[DetectorConfig] = None):
        """
        Initialize the detector.

        Args:
            config: Detector configuration. Uses defaults if None.

        Raises:
            DetectorUnavailableError: If the model cannot be loaded
        """
        self._config = config or DetectorConfig()
        self._device = self._resolve_device()
        self._model = self._load_model()

        logger.info(
            f"Initialized TorchvisionDetector({self._config.model_name}) on "
            f"{self._device} (default_conf={self._config.default_confidence})"
        )

    def _resolve_device(self) -> torch.device:
        """Resolve the device to use based on configuration and availability."""
        if self._config.device == "auto":
            device = torch.device(
                "cuda" if torch.cuda.is_available() else "cpu")
        else:
            device = torch.device(self._config.device)

        if device.type == "cuda" and not torch.cuda.is_available():
            logger.warning(
                "CUDA requested but not available, falling back to CPU")
            device = torch.device("cpu")

        return device

    def _load_model(self) -> torch.nn.Module:
        """Load and configure the detection model."""
        name = self._config.model_name
        if name not in SUPPORTED_MODELS:
            raise DetectorUnavailableError(
                f"Unsupported model: {name}. "
                f"Supported: {sorted(SUPPORTED_MODELS)}"
            )

        logger.debug(f"Loading {name} model...")
        builder, weights = SUPPORTED_MODELS[name]

        try:
            model = builder(weights=weights)
            model.eval()
            model.to(self._device)
        except Exception as e:
            raise DetectorUnavailableError(f"Failed to load {name}: {e}") from e

        logger.debug("Model loaded successfully")
        return model

    def _preprocess(self, frame: np.ndarray) -> torch.Tensor:
        """
        Preprocess a frame for model input.

        Args:
            frame: BGR image as numpy array (H, W, 3)

        Returns:
            Tensor ready for model inference
        """
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        # Convert to tensor and normalize to [0, 1]
        tensor = F.to_tensor(rgb)
        return tensor.unsqueeze(0).to(self._device)

    def _postprocess(
        self,
        output: dict,
        frame_shape: tuple,
        max_results: int,
        min_score: Optional[float]
    ) -> DetectionResult:
        """
        Convert model output to DetectionResult.

        Args:
            output: Raw model output dictionary
            frame_shape: Original frame shape (H, W, C)
            max_results: Maximum number of detections to keep
            min_score: Global score floor; per-class thresholds if None

        Returns:
            DetectionResult with filtered detections, highest score first
        """
        boxes = output['boxes'].cpu().numpy()
        labels = output['labels'].cpu().numpy()
        scores = output['scores'].cpu().numpy()

        detections = []

        for i in np.argsort(-scores, kind="stable"):
            if len(detections) >= max_results:
                break

            label = int(labels[i])
            class_name = COCO_CLASSES.get(label, f"class_{label}")
            score = float(scores[i])
            threshold = (
                min_score if min_score is not None
                else self._config.get_threshold(class_name)
            )

            if score < threshold:
                continue

            # [x1, y1, x2, y2] -> [x, y, w, h]
            x1, y1, x2, y2 = boxes[i].astype(np.float64)
            detections.append(Detection(
                bbox=np.array([x1, y1, x2 - x1, y2 - y1]),
                class_name=class_name,
                score=score,
            ))

        return DetectionResult(detections=detections, frame_shape=frame_shape)

    def detect(
        self,
        frame: np.ndarray,
        max_results: Optional[int] = None,
        min_score: Optional[float] = None
    ) -> DetectionResult:
        """
        Run detection on a single frame.

        Args:
            frame: BGR image as numpy array, shape (H, W, 3)
            max_results: Overrides the configured maximum if given
            min_score: Overrides the per-class thresholds if given

        Returns:
            DetectionResult containing all detections above threshold
        """
        if frame.ndim != 3 or frame.shape[2] != 3:
            raise ValueError(
                f"Expected BGR image (H, W, 3), got shape {frame.shape}")

        input_tensor = self._preprocess(frame)

        with torch.no_grad():
            outputs = self._model(input_tensor)

        result = self._postprocess(
            outputs[0],
            frame.shape,
            max_results or self._config.max_results,
            min_score,
        )

        # Clean up GPU memory
        if self._device.type == "cuda":
            torch.cuda.empty_cache()

        return result

    @property
    def device(self) -> str:
        """Return the device being used."""
        return str(self._device)

    @property
    def model_name(self) -> str:
        """Return the model identifier."""
        return self._config.model_name

    def __repr__(self) -> str:
        return f"TorchvisionDetector(device={self._device}, model={self.model_name})"
