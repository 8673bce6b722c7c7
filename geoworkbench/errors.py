# geoworkbench/errors.py
"""
Error taxonomy for the analysis engines.

Validation problems are raised before any computation, per-feature geometry
problems are skipped and reported through AnalysisResult.skipped, and the
remaining classes mark failures of a whole operation.
"""


class AnalysisError(Exception):
    """Base class for every failure raised by geoworkbench."""


class ValidationError(AnalysisError, ValueError):
    """Bad or missing parameters."""


class DegenerateGeometryError(AnalysisError, ValueError):
    """A geometry result cannot be formed from the given input."""


class EmptyResultError(AnalysisError):
    """The input had features but the operation produced none."""


class MissingMetadataError(AnalysisError, RuntimeError):
    """A precondition such as a layer timestamp is missing."""


class RemoteSamplingError(AnalysisError, RuntimeError):
    """The point sampling service failed or returned an unusable answer."""
