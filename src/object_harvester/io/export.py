"""
Export utilities for harvested objects.

This module crops newly confirmed objects out of frames, writes them to
disk together with a JSON manifest, and draws the visible detections for
display.
"""

import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import cv2
import numpy as np

from ..config import OutputConfig
from ..detection.base import Detection
from ..errors import DegenerateGeometryError

logger = logging.getLogger(__name__)


@dataclass
class Artifact:
    """
    A cropped object image.

    Attributes:
        data: BGR crop as numpy array (h, w, 3)
        class_name: Detector class label
        score: Detection confidence
        bbox: Crop rectangle actually used, (x, y, w, h) in frame pixels
    """
    data: np.ndarray
    class_name: str
    score: float
    bbox: tuple

    def encode(self, ext: str = ".jpg") -> bytes:
        """Encode the crop as an image file in memory."""
        ok, buffer = cv2.imencode(ext, self.data)
        if not ok:
            raise ValueError(f"Failed to encode crop as {ext}")
        return buffer.tobytes()


class Cropper:
    """Cuts detection boxes out of frames, clamped to the frame bounds."""

    def crop(
        self,
        frame: np.ndarray,
        x: float,
        y: float,
        w: float,
        h: float,
        class_name: str,
        score: float
    ) -> Artifact:
        """
        Crop a region of the frame.

        Raises:
            DegenerateGeometryError: If the region lies outside the frame
        """
        frame_h, frame_w = frame.shape[:2]
        x1 = int(max(0, np.floor(x)))
        y1 = int(max(0, np.floor(y)))
        x2 = int(min(frame_w, np.ceil(x + w)))
        y2 = int(min(frame_h, np.ceil(y + h)))

        if x2 <= x1 or y2 <= y1:
            raise DegenerateGeometryError(
                f"Crop ({x:.1f}, {y:.1f}, {w:.1f}, {h:.1f}) is outside "
                f"the {frame_w}x{frame_h} frame"
            )

        return Artifact(
            data=frame[y1:y2, x1:x2].copy(),
            class_name=class_name,
            score=float(score),
            bbox=(x1, y1, x2 - x1, y2 - y1),
        )


@dataclass
class HarvestRecord:
    """Manifest entry for one harvested object."""
    id: int
    track_id: int
    class_name: str
    score: float
    bbox: List[float]  # [x, y, width, height]
    frame_index: int
    file_name: Optional[str] = None


class HarvestManifest:
    """
    JSON manifest of all harvested objects in a session.

    Example:
        >>> manifest = HarvestManifest()
        >>> manifest.add(artifact, track_id=1, frame_index=0, file_name="cat_0001.jpg")
        >>> manifest.save("output/harvest.json")
    """

    def __init__(self, source_name: Optional[str] = None):
        self._source_name = source_name
        self._records: List[HarvestRecord] = []
        self._record_id = 1

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> List[HarvestRecord]:
        return list(self._records)

    def add(
        self,
        artifact: Artifact,
        track_id: int,
        frame_index: int,
        file_name: Optional[str] = None
    ) -> HarvestRecord:
        """Record a harvested artifact."""
        record = HarvestRecord(
            id=self._record_id,
            track_id=track_id,
            class_name=artifact.class_name,
            score=artifact.score,
            bbox=[float(v) for v in artifact.bbox],
            frame_index=frame_index,
            file_name=file_name,
        )
        self._record_id += 1
        self._records.append(record)
        return record

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        counts: Dict[str, int] = {}
        for record in self._records:
            counts[record.class_name] = counts.get(record.class_name, 0) + 1

        return {
            "source": self._source_name,
            "objects": [asdict(r) for r in self._records],
            "class_counts": counts,
        }

    def save(self, path: Union[str, Path], indent: int = 2) -> None:
        """
        Save to JSON file.

        Args:
            path: Output file path
            indent: JSON indentation level
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=indent)

        logger.info(f"Saved harvest manifest: {path} ({len(self._records)} objects)")

    def reset(self) -> None:
        """Clear all records."""
        self._records.clear()
        self._record_id = 1


class CropExporter:
    """
    Writes harvested crops to disk and keeps the crop history.

    Args:
        output_dir: Directory for crop images
        manifest: Manifest to record every saved crop in
        save_images: If False, only the history and manifest are kept
    """

    def __init__(
        self,
        output_dir: Union[str, Path],
        manifest: Optional[HarvestManifest] = None,
        save_images: bool = True
    ):
        self._output_dir = Path(output_dir)
        self._manifest = manifest if manifest is not None else HarvestManifest()
        self._save_images = save_images
        self._history: List[Artifact] = []

    @property
    def history(self) -> List[Artifact]:
        """Artifacts exported since the last reset."""
        return list(self._history)

    @property
    def manifest(self) -> HarvestManifest:
        return self._manifest

    def export(self, artifact: Artifact, track_id: int, frame_index: int) -> Optional[Path]:
        """
        Save an artifact and record it.

        Returns:
            Path of the written image, or None when images are not saved
        """
        path = None
        if self._save_images:
            safe_name = artifact.class_name.replace(" ", "_")
            path = self._output_dir / f"{safe_name}_{track_id:04d}.jpg"
            path.parent.mkdir(parents=True, exist_ok=True)
            cv2.imwrite(str(path), artifact.data)

        self._history.append(artifact)
        self._manifest.add(
            artifact,
            track_id=track_id,
            frame_index=frame_index,
            file_name=path.name if path else None,
        )
        logger.info(
            f"Harvested {artifact.class_name} #{track_id} "
            f"(score={artifact.score:.2f}) at frame {frame_index}"
        )
        return path

    def reset(self) -> None:
        """Forget the crop history."""
        self._history.clear()
        self._manifest.reset()


class OpenCVRenderer:
    """
    Draw visible detections on frames, optionally in a window.

    Harvested regions are blacked out before boxes are drawn so they are
    not presented as fresh candidates.

    Args:
        config: Output configuration for drawing parameters
        window_name: Window title used when ``show_window`` is enabled
    """

    def __init__(
        self,
        config: Optional[OutputConfig] = None,
        window_name: str = "Object Harvester"
    ):
        self._config = config or OutputConfig()
        self._window_name = window_name
        self._canvas: Optional[np.ndarray] = None

    @property
    def canvas(self) -> Optional[np.ndarray]:
        """The last rendered image."""
        return self._canvas

    def render(
        self,
        frame: np.ndarray,
        visible: Sequence[Detection],
        clear_first: bool = True,
        masks: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """
        Draw a frame with its visible detections.

        Args:
            frame: BGR image
            visible: Detections to annotate
            clear_first: Start from a fresh canvas instead of reusing the
                previous one
            masks: Regions (N, 4) to black out before drawing

        Returns:
            The rendered canvas
        """
        if clear_first or self._canvas is None or self._canvas.shape != frame.shape:
            self._canvas = frame.copy()
        else:
            np.copyto(self._canvas, frame)

        canvas = self._canvas
        if masks is not None:
            for x, y, w, h in np.asarray(masks).reshape(-1, 4):
                cv2.rectangle(
                    canvas,
                    (int(x), int(y)),
                    (int(x + w), int(y + h)),
                    (0, 0, 0),
                    -1
                )

        color = tuple(int(c) for c in self._config.box_color)
        thickness = self._config.visualization_line_thickness
        font_scale = self._config.visualization_font_scale
        font = cv2.FONT_HERSHEY_SIMPLEX

        for detection in visible:
            x, y, w, h = (int(v) for v in detection.bbox)
            cv2.rectangle(canvas, (x, y), (x + w, y + h), color, thickness)

            # Label above the box, pinned inside the frame near the top edge
            label_y = y - 5 if y > 10 else 10
            cv2.putText(
                canvas,
                detection.class_name,
                (x, label_y),
                font,
                font_scale,
                color,
                thickness
            )

        if self._config.show_window:
            cv2.imshow(self._window_name, canvas)

        return canvas

    def poll_key(self, delay_ms: int = 1) -> Optional[str]:
        """Pump the window event loop and return a pressed key, if any."""
        if not self._config.show_window:
            return None
        key = cv2.waitKey(delay_ms) & 0xFF
        return chr(key) if key != 0xFF else None

    def save_frame(self, path: Union[str, Path]) -> None:
        """Save the last rendered canvas to disk."""
        if self._canvas is None:
            raise RuntimeError("Nothing has been rendered yet")
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        cv2.imwrite(str(path), self._canvas)

    def close(self) -> None:
        if self._config.show_window:
            cv2.destroyWindow(self._window_name)
