"""
Error taxonomy for the siting pipeline.

DataError and ServiceError are failures scoped to one rule (or to the
universe, for the region loader). UnevaluatedRule is not a failure: it is
raised by an evaluator to report that a criterion exists but cannot be
computed from the available data, and the pipeline records it as a gap.
"""


class SitingError(Exception):
    """Base error for siting pipeline operations."""


class DataError(SitingError):
    """Input dataset is missing, empty, or holds invalid geometry."""


class ConfigError(SitingError):
    """Pipeline configuration is malformed."""


class ServiceError(SitingError):
    """External routing/geocoding call failed.

    Attributes:
        transient: True when the failure may succeed on retry
            (connection errors, timeouts, HTTP 429/5xx).
    """

    def __init__(self, message: str, transient: bool = False) -> None:
        self.transient = transient
        super().__init__(message)


class UnevaluatedRule(Exception):
    """Criterion could not be computed from available data.

    Attributes:
        reason: Human-readable explanation surfaced in the export.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)
