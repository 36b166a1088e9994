"""
Unit tests for detection module.
"""

import numpy as np
import pytest
import torch

from object_harvester.config import DetectorConfig
from object_harvester.detection import Detection, DetectionResult, TorchvisionDetector
from object_harvester.errors import DetectorUnavailableError


class TestDetection:
    """Tests for Detection dataclass."""

    def test_properties(self):
        det = Detection(
            bbox=np.array([100, 100, 100, 50]),
            class_name="cat",
            score=0.9
        )

        assert det.width == 100
        assert det.height == 50
        assert det.area == 5000
        np.testing.assert_array_equal(det.center, [150, 125])
        assert not det.is_degenerate

    def test_bbox_coerced_to_float_array(self):
        det = Detection(bbox=[1, 2, 3, 4], class_name="cat", score=0.5)
        assert isinstance(det.bbox, np.ndarray)
        assert det.bbox.dtype == np.float64

    def test_dict_roundtrip_format(self):
        det = Detection.from_dict({"class": "cat", "score": 0.7, "bbox": [10, 10, 50, 50]})

        assert det.class_name == "cat"
        assert det.to_dict() == {"class": "cat", "score": 0.7, "bbox": [10.0, 10.0, 50.0, 50.0]}

    def test_with_bbox_keeps_label(self):
        det = Detection(bbox=[0, 0, 10, 10], class_name="dog", score=0.4)
        moved = det.with_bbox([5, 5, 10, 10])

        assert moved.class_name == "dog"
        assert moved.score == 0.4
        np.testing.assert_array_equal(det.bbox, [0, 0, 10, 10])

    @pytest.mark.parametrize("bbox", [
        [0, 0, 0, 10],
        [0, 0, 10, 0],
        [0, 0, -5, 10],
        [0, float("inf"), 10, 10],
        [0, 0, 10],
    ])
    def test_degenerate(self, bbox):
        assert Detection(bbox=bbox, class_name="cat", score=0.5).is_degenerate


class TestDetectionResult:
    """Tests for DetectionResult container."""

    def test_empty_result(self):
        result = DetectionResult(detections=[], frame_shape=(480, 640, 3))

        assert len(result) == 0
        boxes, class_names, scores = result.to_numpy()
        assert boxes.shape == (0, 4)
        assert class_names == []
        assert scores.shape == (0,)

    def test_centers_in_order(self):
        detections = [
            Detection(np.array([0, 0, 50, 50]), class_name="cat", score=0.9),
            Detection(np.array([100, 100, 20, 40]), class_name="dog", score=0.8),
        ]
        result = DetectionResult(detections=detections, frame_shape=(480, 640, 3))

        assert result.centers == [(25.0, 25.0), (110.0, 120.0)]

    def test_filter_by_class(self):
        detections = [
            Detection(np.array([0, 0, 50, 50]), class_name="cat", score=0.9),
            Detection(np.array([100, 100, 50, 50]), class_name="dog", score=0.8),
            Detection(np.array([200, 200, 50, 50]), class_name="cat", score=0.7),
        ]
        result = DetectionResult(detections=detections, frame_shape=(480, 640, 3))

        filtered = result.filter_by_class(["cat"])
        assert len(filtered) == 2

        for det in filtered:
            assert det.class_name == "cat"

    def test_filter_by_confidence(self):
        detections = [
            Detection(np.array([0, 0, 50, 50]), class_name="cat", score=0.9),
            Detection(np.array([100, 100, 50, 50]), class_name="cat", score=0.5),
            Detection(np.array([200, 200, 50, 50]), class_name="cat", score=0.3),
        ]
        result = DetectionResult(detections=detections, frame_shape=(480, 640, 3))

        filtered = result.filter_by_confidence(0.6)
        assert len(filtered) == 1
        assert filtered.detections[0].score == 0.9


class TestTorchvisionDetector:
    """Tests for the torchvision detector that need no model download."""

    def test_unsupported_model(self):
        with pytest.raises(DetectorUnavailableError):
            TorchvisionDetector(DetectorConfig(model_name="no_such_model", device="cpu"))

    def _bare_detector(self, config: DetectorConfig) -> TorchvisionDetector:
        detector = TorchvisionDetector.__new__(TorchvisionDetector)
        detector._config = config
        detector._device = torch.device("cpu")
        return detector

    def test_postprocess_converts_boxes_and_labels(self):
        detector = self._bare_detector(DetectorConfig(default_confidence=0.5))
        output = {
            'boxes': torch.tensor([[10.0, 20.0, 60.0, 80.0], [0.0, 0.0, 5.0, 5.0]]),
            'labels': torch.tensor([17, 1]),
            'scores': torch.tensor([0.9, 0.2]),
        }

        result = detector._postprocess(output, (480, 640, 3), max_results=20, min_score=None)

        assert len(result) == 1
        det = result.detections[0]
        assert det.class_name == "cat"
        assert det.score == pytest.approx(0.9)
        np.testing.assert_array_almost_equal(det.bbox, [10, 20, 50, 60])

    def test_postprocess_limits_and_orders_results(self):
        detector = self._bare_detector(DetectorConfig())
        output = {
            'boxes': torch.tensor([[0.0, 0.0, 10.0, 10.0]] * 3),
            'labels': torch.tensor([1, 17, 18]),
            'scores': torch.tensor([0.6, 0.95, 0.8]),
        }

        result = detector._postprocess(output, (480, 640, 3), max_results=2, min_score=0.1)

        assert [d.class_name for d in result] == ["cat", "dog"]

    def test_postprocess_per_class_threshold(self):
        detector = self._bare_detector(DetectorConfig(class_thresholds={"person": 0.9}))
        output = {
            'boxes': torch.tensor([[0.0, 0.0, 10.0, 10.0]] * 2),
            'labels': torch.tensor([1, 17]),
            'scores': torch.tensor([0.8, 0.8]),
        }

        result = detector._postprocess(output, (480, 640, 3), max_results=20, min_score=None)

        assert [d.class_name for d in result] == ["cat"]
