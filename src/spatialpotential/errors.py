"""
Error kinds raised by the potentials engine.

Every failure is reported synchronously at the point of detection. All kinds
derive from `ValueError` so callers that already guard numeric input with
`except ValueError` keep working.
"""

from __future__ import annotations


class PotentialError(ValueError):
    """Base class for every error raised by spatialpotential."""


class InvalidReferenceFrame(PotentialError):
    """Known points and targets use incompatible coordinate frames."""


class InvalidParameter(PotentialError):
    """A parameter is out of range (span, beta, resolution, breaks, ...)."""


class InvalidDistance(PotentialError):
    """A distance value is negative or not finite."""


class InvalidGrid(PotentialError):
    """A raster passed to the contour step is not a regular grid."""


class ResourceLimitExceeded(PotentialError):
    """The requested grid or distance matrix would be too large."""
