"""
I/O module for Object Harvester.

This module provides frame sources, crop export and rendering.

Example:
    >>> from object_harvester.io import open_source, Cropper
    >>> source = open_source("video.mp4")
    >>> frame = source.read()
"""

from .sources import (
    FrameSource,
    SourceMetadata,
    ImageSource,
    VideoFileSource,
    WebcamSource,
    open_source,
)
from .export import (
    Artifact,
    Cropper,
    CropExporter,
    HarvestManifest,
    HarvestRecord,
    OpenCVRenderer,
)

__all__ = [
    # Sources
    "FrameSource",
    "SourceMetadata",
    "ImageSource",
    "VideoFileSource",
    "WebcamSource",
    "open_source",
    # Export
    "Artifact",
    "Cropper",
    "CropExporter",
    "HarvestManifest",
    "HarvestRecord",
    "OpenCVRenderer",
]
