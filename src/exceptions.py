"""Custom exceptions for the ICU risk scoring pipeline."""


class IcuRiskError(Exception):
    """Base exception for all pipeline errors."""
    pass


class DimensionMismatchError(IcuRiskError):
    """Embedding vectors in one store (or a query) differ in length."""
    pass


class DuplicatePatientError(IcuRiskError):
    """A patient id appears more than once in a store."""
    pass


class SearchTimeoutError(IcuRiskError):
    """A neighbor query exceeded its time budget; the batch was aborted."""
    pass


class DegenerateLabelSetError(IcuRiskError):
    """Training labels contain a single class."""
    pass


class SnapshotWriteError(IcuRiskError):
    """An output snapshot could not be committed."""
    pass
