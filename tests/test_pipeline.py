"""
Unit tests for the frame orchestrator and harvest session.
"""

import asyncio
import logging
from typing import Callable, List, Optional

import numpy as np
import pytest

from object_harvester.config import get_default_config
from object_harvester.detection import BaseDetector, Detection, DetectionResult
from object_harvester.errors import DetectionCallFailedError, SourceUnavailableError
from object_harvester.io import CropExporter, FrameSource, OpenCVRenderer, SourceMetadata
from object_harvester.pipeline import FrameOrchestrator, HarvestSession


def det(class_name, bbox, score):
    return Detection(bbox=np.array(bbox, dtype=float), class_name=class_name, score=score)


class ScriptedDetector(BaseDetector):
    """Returns a fixed list of detections per call."""

    def __init__(
        self,
        script: List[List[Detection]],
        fail_on: tuple = (),
        on_detect: Optional[Callable[[int], None]] = None
    ):
        self._script = script
        self._fail_on = fail_on
        self.on_detect = on_detect
        self.calls = 0
        self.arguments = []

    def detect(self, frame, max_results=None, min_score=None):
        index = self.calls
        self.arguments.append((max_results, min_score))
        self.calls += 1
        if self.on_detect is not None:
            self.on_detect(index)
        if index in self._fail_on:
            raise RuntimeError("model crashed")
        detections = self._script[index] if index < len(self._script) else []
        return DetectionResult(detections=list(detections), frame_shape=frame.shape)

    @property
    def device(self) -> str:
        return "cpu"

    @property
    def model_name(self) -> str:
        return "scripted"


class ArraySource(FrameSource):
    """Yields ``n_frames`` white frames."""

    def __init__(self, n_frames: int, shape=(240, 320, 3), is_static: bool = False):
        self._remaining = n_frames
        self._shape = shape
        self.is_static = is_static
        self._metadata = SourceMetadata(
            name="frames", width=shape[1], height=shape[0], fps=30.0,
            frame_count=n_frames,
        )

    @property
    def metadata(self) -> SourceMetadata:
        return self._metadata

    def read(self) -> Optional[np.ndarray]:
        if self._remaining <= 0:
            return None
        self._remaining -= 1
        return np.full(self._shape, 255, dtype=np.uint8)


class BrokenWebcam(ArraySource):
    is_live = True

    def read(self):
        raise SourceUnavailableError("camera unplugged")


class StepClock:
    """Advances by ``step`` milliseconds on every call."""

    def __init__(self, step: float = 100.0):
        self._now = -step
        self._step = step

    def __call__(self) -> float:
        self._now += self._step
        return self._now


def make_session(script, n_frames=None, config=None, tmp_path=None, **kwargs):
    config = config or get_default_config()
    detector = ScriptedDetector(script, **kwargs)
    source = ArraySource(n_frames if n_frames is not None else len(script))
    exporter = CropExporter(tmp_path or "unused", save_images=tmp_path is not None)
    session = HarvestSession(
        detector, source, config=config, exporter=exporter,
        renderer=OpenCVRenderer(config.output), clock=StepClock(),
    )
    return session, detector, exporter


class TestFrameOrchestrator:
    """Tests for per-frame classification."""

    def test_first_detection_is_harvested(self):
        orchestrator = FrameOrchestrator()

        result = orchestrator.process([det("cat", (10, 10, 50, 50), 0.7)], now=0)

        assert len(result.new_objects) == 1
        request = result.new_objects[0]
        assert request.track_id == 1
        assert request.class_name == "cat"
        assert request.score == pytest.approx(0.7)
        np.testing.assert_array_almost_equal(request.bbox, [10, 10, 50, 50])

        assert orchestrator.tracker.live_ids == [1]
        # Default stream padding of 30px, clamped at the frame origin
        np.testing.assert_array_almost_equal(orchestrator.occlusion.regions, [[0, 0, 90, 90]])

    def test_still_image_has_no_padding(self):
        orchestrator = FrameOrchestrator(is_static=True)

        result = orchestrator.process([det("cat", (10, 10, 50, 50), 0.7)], now=0)

        assert result.clear_first
        np.testing.assert_array_almost_equal(orchestrator.occlusion.regions, [[10, 10, 50, 50]])

    def test_redetection_in_harvested_region_is_dropped(self):
        orchestrator = FrameOrchestrator()
        orchestrator.process([det("cat", (10, 10, 50, 50), 0.7)], now=0)

        result = orchestrator.process([det("cat", (12, 11, 50, 50), 0.72)], now=100)

        assert result.new_objects == []
        assert len(result.occluded) == 1
        assert result.visible == []
        assert len(orchestrator.tracker) == 1
        assert len(orchestrator.occlusion) == 1

    def test_new_objects_are_hidden_from_render(self):
        orchestrator = FrameOrchestrator()

        result = orchestrator.process([
            det("cat", (10, 10, 50, 50), 0.7),
            det("dog", (200, 100, 40, 40), 0.8),
        ], now=0)

        assert [r.track_id for r in result.new_objects] == [1, 2]
        assert result.visible == []

    def test_duplicate_refreshes_without_harvest(self):
        config = get_default_config()
        config.occlusion.threshold = 0.9
        config.occlusion.stream_padding = 0
        config.tracker.motion_compensation = False
        orchestrator = FrameOrchestrator(config)
        orchestrator.process([det("cat", (0, 0, 100, 100), 0.7)], now=0)

        # 60% covered (below 0.9), IoU 0.43 with the tracked box
        moved = det("cat", (40, 0, 100, 100), 0.72)
        result = orchestrator.process([moved], now=500)

        assert result.new_objects == []
        assert result.duplicates == [1]
        assert len(result.visible) == 1
        assert result.visible[0] is moved
        assert len(orchestrator.occlusion) == 1

        tracked = orchestrator.tracker.get(1)
        np.testing.assert_array_almost_equal(tracked.bbox, [40, 0, 100, 100])
        assert tracked.last_seen == 500

    def test_motion_shift_is_removed_for_matching_and_restored_for_crops(self):
        orchestrator = FrameOrchestrator(is_static=True)
        orchestrator.process([det("cat", (100, 100, 20, 20), 0.7)], now=0)

        result = orchestrator.process([
            det("cat", (105, 103, 20, 20), 0.7),
            det("dog", (300, 200, 40, 40), 0.9),
        ], now=100)

        assert result.shift == pytest.approx((5.0, 3.0))
        assert len(result.occluded) == 1
        assert len(result.new_objects) == 1

        request = result.new_objects[0]
        np.testing.assert_array_almost_equal(request.bbox, [300, 200, 40, 40])
        np.testing.assert_array_almost_equal(
            orchestrator.tracker.get(request.track_id).bbox, [295, 197, 40, 40])
        np.testing.assert_array_almost_equal(
            orchestrator.occlusion.regions[-1], [300, 200, 40, 40])

    def test_motion_compensation_can_be_disabled(self):
        config = get_default_config()
        config.tracker.motion_compensation = False
        orchestrator = FrameOrchestrator(config)
        orchestrator.process([det("cat", (100, 100, 20, 20), 0.7)], now=0)

        result = orchestrator.process([det("cat", (105, 103, 20, 20), 0.7)], now=100)

        assert result.shift == (0.0, 0.0)

    def test_degenerate_boxes_are_skipped(self):
        orchestrator = FrameOrchestrator()

        result = orchestrator.process([
            det("cat", (10, 10, 0, 50), 0.7),
            det("cat", (10, 10, float("nan"), 50), 0.7),
            det("dog", (200, 100, 40, 40), 0.8),
        ], now=0)

        assert len(result.skipped) == 2
        assert [r.class_name for r in result.new_objects] == ["dog"]
        assert orchestrator.motion.previous_centers == [(220.0, 120.0)]

    def test_object_held_still_is_harvested_once(self):
        orchestrator = FrameOrchestrator()
        cup = det("cup", (100, 100, 50, 50), 0.8)

        harvested = []
        for frame in range(250):
            result = orchestrator.process([cup], now=frame * 100)
            harvested.extend(r.track_id for r in result.new_objects)
            assert result.expired == []

        assert harvested == [1]
        assert orchestrator.tracker.live_ids == [1]
        assert orchestrator.tracker.get(1).last_seen == 24_900
        assert [r.track_id for r in orchestrator.occlusion] == [1]

    def test_other_class_in_region_does_not_keep_track_alive(self):
        orchestrator = FrameOrchestrator()
        orchestrator.process([det("cup", (100, 100, 50, 50), 0.8)], now=0)

        orchestrator.process([det("cat", (110, 110, 30, 30), 0.8)], now=5_000)

        assert orchestrator.tracker.get(1).last_seen == 0

    def test_expired_object_is_harvested_again(self):
        orchestrator = FrameOrchestrator()
        orchestrator.process([det("cat", (10, 10, 50, 50), 0.7)], now=0)

        result = orchestrator.process([det("cat", (10, 10, 50, 50), 0.7)], now=11_000)

        assert result.expired == [1]
        assert [r.track_id for r in result.new_objects] == [2]
        assert orchestrator.tracker.live_ids == [2]
        assert [r.track_id for r in orchestrator.occlusion] == [2]

    def test_regions_kept_without_compaction(self):
        config = get_default_config()
        config.occlusion.compact_expired = False
        orchestrator = FrameOrchestrator(config)
        orchestrator.process([det("cat", (10, 10, 50, 50), 0.7)], now=0)

        result = orchestrator.process([det("cat", (10, 10, 50, 50), 0.7)], now=11_000)

        assert result.expired == [1]
        assert result.new_objects == []
        assert len(result.occluded) == 1

    def test_ids_unique_over_many_frames(self):
        orchestrator = FrameOrchestrator()
        rng = np.random.RandomState(0)

        for frame in range(50):
            detections = [
                det("cat", (rng.randint(0, 600), rng.randint(0, 400), 30, 30), rng.rand())
                for _ in range(3)
            ]
            orchestrator.process(detections, now=frame * 500)
            ids = orchestrator.tracker.live_ids
            assert len(ids) == len(set(ids))

    def test_reset(self):
        orchestrator = FrameOrchestrator()
        orchestrator.process([det("cat", (10, 10, 50, 50), 0.7)], now=0)

        orchestrator.reset()

        assert len(orchestrator.tracker) == 0
        assert len(orchestrator.occlusion) == 0
        assert orchestrator.motion.previous_centers == []


class TestHarvestSession:
    """Tests for the asynchronous tick loop."""

    def test_object_harvested_once(self, tmp_path):
        cat = det("cat", (10, 10, 50, 50), 0.7)
        session, detector, exporter = make_session([[cat], [cat], [cat]], tmp_path=tmp_path)

        stats = asyncio.run(session.run())

        assert detector.calls == 3
        assert stats.ticks == 3
        assert stats.harvested == 1
        assert stats.occluded == 2
        assert len(exporter.history) == 1
        assert (tmp_path / "cat_0001.jpg").exists()
        assert session.exhausted

    def test_object_in_view_past_expiry_is_harvested_once(self, tmp_path):
        cup = det("cup", (100, 100, 50, 50), 0.8)
        # 150 ticks of 100ms cover 15s, past the 10s expiry window
        session, _, exporter = make_session([[cup]] * 150, tmp_path=tmp_path)

        stats = asyncio.run(session.run())

        assert stats.ticks == 150
        assert stats.harvested == 1
        assert len(exporter.history) == 1
        assert session.orchestrator.tracker.live_ids == [1]

    def test_detector_receives_configured_limits(self):
        config = get_default_config()
        config.detector.max_results = 5
        config.detector.min_score = 0.4
        session, detector, _ = make_session([[]], config=config)

        asyncio.run(session.run())

        assert detector.arguments == [(5, 0.4)]

    def test_detector_failure_is_logged_with_traceback(self, caplog):
        session, _, _ = make_session([[]], fail_on=(0,))

        with caplog.at_level(logging.ERROR, logger="object_harvester.pipeline"):
            asyncio.run(session.run())

        record = caplog.records[-1]
        assert "model crashed" in record.getMessage()
        assert record.exc_info is not None
        assert isinstance(record.exc_info[1], RuntimeError)

    def test_detector_failure_skips_tick(self):
        cat = det("cat", (10, 10, 50, 50), 0.7)
        dog = det("dog", (200, 100, 40, 40), 0.8)
        session, detector, _ = make_session([[cat], [], [cat, dog]], fail_on=(1,))

        stats = asyncio.run(session.run())

        assert stats.ticks == 3
        assert stats.failed_ticks == 1
        assert stats.harvested == 2
        assert isinstance(stats.last_error, DetectionCallFailedError)
        assert isinstance(stats.last_error.__cause__, RuntimeError)

    def test_reset_during_detection_discards_tick(self):
        cat = det("cat", (10, 10, 50, 50), 0.7)
        session, detector, exporter = make_session([[cat], [cat]])

        async def scenario():
            first = await session.tick()
            detector.on_detect = lambda index: session.reset()
            second = await session.tick()
            return first, second

        first, second = asyncio.run(scenario())

        assert len(first.new_objects) == 1
        assert second is None
        assert session.stats.stale_ticks == 1
        assert session.generation == 1
        assert len(session.orchestrator.tracker) == 0
        assert exporter.history == []

    def test_reset_clears_state_between_ticks(self):
        cat = det("cat", (10, 10, 50, 50), 0.7)
        session, _, exporter = make_session([[cat], [cat]])

        async def scenario():
            await session.tick()
            session.reset()
            return await session.tick()

        result = asyncio.run(scenario())

        assert [r.track_id for r in result.new_objects] == [1]
        assert len(exporter.history) == 1

    def test_max_frames(self):
        session, detector, _ = make_session([], n_frames=10)

        stats = asyncio.run(session.run(max_frames=4))

        assert stats.ticks == 4
        assert detector.calls == 4

    def test_box_outside_frame_is_tracked_but_not_cropped(self):
        far = det("cat", (1000, 1000, 10, 10), 0.7)
        session, _, exporter = make_session([[far]])

        asyncio.run(session.run())

        assert session.orchestrator.tracker.live_ids == [1]
        assert session.stats.harvested == 0
        assert exporter.history == []

    def test_render_masks_harvested_regions(self):
        cat = det("cat", (10, 10, 50, 50), 0.7)
        session, _, _ = make_session([[cat]])

        asyncio.run(session.run())

        canvas = session.renderer.canvas
        assert canvas is not None
        assert canvas[50, 50].tolist() == [0, 0, 0]
        assert canvas[200, 200].tolist() == [255, 255, 255]

    def test_source_failure_is_fatal(self):
        session = HarvestSession(
            ScriptedDetector([]), BrokenWebcam(5), clock=StepClock())

        with pytest.raises(SourceUnavailableError):
            asyncio.run(session.run())
