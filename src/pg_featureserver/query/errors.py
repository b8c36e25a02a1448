"""
Error taxonomy for the query pipeline.

Validation errors (400/404) are raised before any database call.
Execution errors (5xx) carry the driver exception as __cause__.
GeometryConversionFailed is per-row and never reaches the client.
"""


class FeatureServerError(Exception):
    """Base class for errors reported to GeoServices clients."""

    status_code = 500

    def __init__(self, message: str, details: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict:
        """Esri JSON error envelope."""
        return {
            "error": {
                "code": self.status_code,
                "message": self.message,
                "details": self.details,
            }
        }


class InvalidField(FeatureServerError):
    """Unknown or unsafe field identifier."""

    status_code = 400


class InvalidWhereClause(InvalidField):
    """Attribute filter that cannot be tokenized safely."""


class InvalidExtent(FeatureServerError):
    status_code = 400


class InvalidParameter(FeatureServerError):
    status_code = 400


class UnknownLayer(FeatureServerError):
    status_code = 404


class UnknownService(FeatureServerError):
    status_code = 404


class QueryExecutionFailed(FeatureServerError):
    status_code = 500


class QueryTimeout(QueryExecutionFailed):
    """The per-request deadline or the pool acquire timeout expired."""

    status_code = 504


class InvariantViolation(FeatureServerError):
    """Internal inconsistency, e.g. columns of unequal length."""

    status_code = 500


class GeometryConversionFailed(Exception):
    """A single row's geometry could not be converted."""
