from typing import Optional
from .enums import ErrorCode


class AnchorError(Exception):
    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.code = code or ErrorCode.INTERNAL_ERROR


class RecordEncodingError(AnchorError):
    """Raised when a record cannot be canonically serialized."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.RECORD_ENCODING_ERROR)


class RecordNotFoundError(AnchorError):
    """Raised when a record identity is unknown to the repository."""

    def __init__(self, identity: str):
        super().__init__(f"Record not found: {identity}", ErrorCode.RECORD_NOT_FOUND)
        self.identity = identity


class BatchNotFoundError(AnchorError):
    def __init__(self, batch_id: int):
        super().__init__(f"Batch not found: {batch_id}", ErrorCode.BATCH_NOT_FOUND)
        self.batch_id = batch_id


class UnsupportedAlgorithmError(AnchorError):
    def __init__(self, algo_id: str):
        super().__init__(f"Unsupported hash algorithm: {algo_id}", ErrorCode.UNSUPPORTED_ALGORITHM)
        self.algo_id = algo_id


class TransientLedgerError(AnchorError):
    """Ledger call failed in a way that may succeed on retry."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.TRANSIENT_LEDGER_ERROR)


class LedgerRejectedError(AnchorError):
    """Ledger definitively refused the submission."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.LEDGER_REJECTED)


class CommitFailedError(AnchorError):
    """Raised when the retry budget is exhausted."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message, ErrorCode.COMMIT_FAILED)
        self.attempts = attempts


class StorageError(AnchorError):
    def __init__(self, message: str):
        super().__init__(message, ErrorCode.STORAGE_ERROR)


class InvariantViolationError(AnchorError):
    """Raised when batch construction detects inconsistent state."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.INVARIANT_VIOLATION)
