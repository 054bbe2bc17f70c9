"""
Error types for the finance service.

Validation problems are rejected at the boundary, store failures are
propagated unchanged, and computation errors signal a broken invariant.
"""


class FinanceError(Exception):
    """Base class for all service errors"""


class ValidationError(FinanceError, ValueError):
    """Malformed or out-of-range input (bad date, unknown category, etc.)"""


class UpstreamFetchError(FinanceError):
    """The record store failed to return data"""


class RecordNotFoundError(FinanceError):
    def __init__(self, kind: str, record_id: int):
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class ComputationError(FinanceError):
    """An impossible state was reached, e.g. a negative total"""


class ConfigurationError(FinanceError):
    """Required configuration is missing or invalid"""
