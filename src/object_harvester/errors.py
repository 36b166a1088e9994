"""
Exception types raised by Object Harvester.

Fatal errors (detector or source unavailable) stop a session before or
while it runs. Per-tick and per-detection errors are recovered locally by
the pipeline.
"""


class HarvesterError(Exception):
    """Base class for all Object Harvester errors."""


class DetectorUnavailableError(HarvesterError, RuntimeError):
    """The detection model failed to initialize."""


class DetectionCallFailedError(HarvesterError, RuntimeError):
    """A single detector call failed; the tick is skipped."""


class DegenerateGeometryError(HarvesterError, ValueError):
    """A bounding box has zero area or non-finite coordinates."""


class SourceUnavailableError(HarvesterError, RuntimeError):
    """A frame source could not be opened or a live stream stopped."""
