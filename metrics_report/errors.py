"""Exception hierarchy shared by the aggregation engine and its edges.

Fatal conditions derive from ``ValidationError`` and abort a run before any
report is produced. Recoverable inconsistencies are never raised; they are
returned as ``AggregationWarning`` records next to the report.
"""


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class MetricsReportError(Exception):
    """Base exception for all metrics-report errors."""


class ValidationError(MetricsReportError):
    """Raised when the input cannot produce a trustworthy report."""


class ThresholdsError(ValidationError):
    """Raised when a thresholds payload is malformed."""


class DuplicateElementError(ValidationError):
    """Raised when one document reports the same symbol twice with conflicting data."""

    def __init__(self, document: str, identity: str, reason: str) -> None:
        self.document = document
        self.identity = identity
        self.reason = reason
        super().__init__(
            f"Document '{document}' reports '{identity}' more than once with {reason}"
        )


class DocumentFormatError(MetricsReportError):
    """Raised when an interchange JSON file cannot be decoded."""
