"""
Frame sources.

This module provides the frame sources the harvester can run on: still
images, video files and webcams. Frames are BGR numpy arrays, as OpenCV
delivers them; the pipeline only reads their size and hands them on to
the detector, cropper and renderer.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from ..config import SourceConfig
from ..errors import SourceUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class SourceMetadata:
    """Metadata about a frame source."""
    name: str
    width: int
    height: int
    fps: float
    frame_count: Optional[int] = None  # None for live sources

    def __str__(self) -> str:
        frames = f"{self.frame_count} frames" if self.frame_count is not None else "live"
        return (
            f"Source({self.name}: {self.width}x{self.height}, "
            f"{self.fps:.2f}fps, {frames})"
        )


class FrameSource(ABC):
    """
    Abstract frame source.

    ``read`` returns the next frame, or None once a finite source is
    exhausted. Live sources raise SourceUnavailableError instead when the
    stream stops.
    """

    #: Still images get no occlusion padding and a full redraw
    is_static: bool = False
    #: Live sources run until stopped rather than until exhausted
    is_live: bool = False

    @property
    @abstractmethod
    def metadata(self) -> SourceMetadata:
        """Source metadata."""
        pass

    @abstractmethod
    def read(self) -> Optional[np.ndarray]:
        """Read the next BGR frame."""
        pass

    def close(self) -> None:
        """Release any underlying resources."""

    @property
    def width(self) -> int:
        return self.metadata.width

    @property
    def height(self) -> int:
        return self.metadata.height

    def __enter__(self) -> "FrameSource":
        return self

    def __exit__(self, *args) -> None:
        self.close()


class ImageSource(FrameSource):
    """
    A single still image, scaled down to the display width.

    Detections on the scaled image are in display coordinates, so crops
    and boxes line up with what is shown.

    Args:
        path: Path to the image file
        config: Source configuration for display width and formats
    """

    is_static = True

    def __init__(
        self,
        path: Union[str, Path],
        config: Optional[SourceConfig] = None
    ):
        self._path = Path(path)
        self._config = config or SourceConfig()
        self._image = self._load()
        self._consumed = False

        h, w = self._image.shape[:2]
        self._metadata = SourceMetadata(
            name=self._path.name, width=w, height=h, fps=0.0, frame_count=1
        )
        logger.info(f"Loaded image: {self._metadata}")

    def _load(self) -> np.ndarray:
        if not self._path.exists():
            raise SourceUnavailableError(f"Image file not found: {self._path}")

        image = cv2.imread(str(self._path), cv2.IMREAD_COLOR)
        if image is None:
            raise SourceUnavailableError(f"Failed to read image: {self._path}")

        height, width = image.shape[:2]
        display_width = min(self._config.display_width, width)
        if display_width != width:
            scale = display_width / width
            image = cv2.resize(
                image,
                (display_width, max(1, round(height * scale))),
                interpolation=cv2.INTER_AREA,
            )
            logger.debug(f"Scaled image by {scale:.3f} to width {display_width}")
        return image

    @property
    def metadata(self) -> SourceMetadata:
        return self._metadata

    def read(self) -> Optional[np.ndarray]:
        """Return the image once, then None."""
        if self._consumed:
            return None
        self._consumed = True
        return self._image.copy()


class _CaptureSource(FrameSource):
    """Shared cv2.VideoCapture handling."""

    def __init__(self):
        self._cap: Optional[cv2.VideoCapture] = None
        self._metadata: Optional[SourceMetadata] = None

    def _open_capture(self, target, name: str) -> cv2.VideoCapture:
        cap = cv2.VideoCapture(target)
        if not cap.isOpened():
            cap.release()
            raise SourceUnavailableError(f"Failed to open {name}")
        return cap

    def _load_metadata(self, name: str, live: bool) -> SourceMetadata:
        fps = self._cap.get(cv2.CAP_PROP_FPS)
        frame_count = int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT))
        return SourceMetadata(
            name=name,
            width=int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            fps=fps if fps > 0 else 30.0,
            frame_count=None if live else max(frame_count, 0),
        )

    @property
    def metadata(self) -> SourceMetadata:
        """Get source metadata."""
        if self._metadata is None:
            raise RuntimeError("Source metadata not loaded")
        return self._metadata

    def close(self) -> None:
        """Release video capture."""
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def __del__(self) -> None:
        self.close()


class VideoFileSource(_CaptureSource):
    """
    Sequential reader for a video file.

    Args:
        path: Path to video file
        config: Source configuration for supported formats

    Example:
        >>> with VideoFileSource("video.mp4") as source:
        ...     frame = source.read()
    """

    def __init__(
        self,
        path: Union[str, Path],
        config: Optional[SourceConfig] = None
    ):
        super().__init__()
        self._path = Path(path)
        self._config = config or SourceConfig()

        self._validate_path()
        self._cap = self._open_capture(str(self._path), f"video: {self._path}")
        self._metadata = self._load_metadata(self._path.name, live=False)
        logger.info(f"Loaded video: {self._metadata}")

    def _validate_path(self) -> None:
        """Validate video file exists and has supported format."""
        if not self._path.exists():
            raise SourceUnavailableError(f"Video file not found: {self._path}")

        suffix = self._path.suffix.lower()
        if suffix not in self._config.video_formats:
            raise ValueError(
                f"Unsupported video format: {suffix}. "
                f"Supported: {self._config.video_formats}"
            )

    def read(self) -> Optional[np.ndarray]:
        """Read the next frame, or None at the end of the video."""
        if self._cap is None:
            return None

        ret, frame = self._cap.read()
        if not ret:
            logger.info(f"Reached end of {self._path.name}")
            return None
        return frame


class WebcamSource(_CaptureSource):
    """
    Live webcam capture.

    Args:
        index: Camera device index. Uses config default if None.
        config: Source configuration for the requested resolution
    """

    is_live = True

    def __init__(
        self,
        index: Optional[int] = None,
        config: Optional[SourceConfig] = None
    ):
        super().__init__()
        self._config = config or SourceConfig()
        self._index = self._config.webcam_index if index is None else index

        self._cap = self._open_capture(self._index, f"webcam {self._index}")
        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._config.webcam_width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._config.webcam_height)
        self._metadata = self._load_metadata(f"webcam:{self._index}", live=True)
        logger.info(f"Opened webcam: {self._metadata}")

    def read(self) -> Optional[np.ndarray]:
        """Read the next frame; a stopped stream is an error."""
        if self._cap is None:
            raise SourceUnavailableError(f"Webcam {self._index} is closed")

        ret, frame = self._cap.read()
        if not ret:
            raise SourceUnavailableError(f"Webcam {self._index} stopped delivering frames")
        return frame


def open_source(
    target: Union[str, Path, int],
    config: Optional[SourceConfig] = None
) -> FrameSource:
    """
    Open the right frame source for a path or webcam index.

    Args:
        target: Image or video path, or an integer webcam index
        config: Source configuration

    Returns:
        An opened FrameSource
    """
    config = config or SourceConfig()

    if isinstance(target, int):
        return WebcamSource(target, config)

    path = Path(target)
    suffix = path.suffix.lower()
    if suffix in config.image_formats:
        return ImageSource(path, config)
    if suffix in config.video_formats:
        return VideoFileSource(path, config)

    raise ValueError(
        f"Unsupported input: {path}. Supported: "
        f"{config.image_formats + config.video_formats}"
    )
