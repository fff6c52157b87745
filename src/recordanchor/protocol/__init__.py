from .enums import ErrorCode, LedgerMode, StorageMode
from .errors import (
    AnchorError,
    BatchNotFoundError,
    CommitFailedError,
    InvariantViolationError,
    LedgerRejectedError,
    RecordEncodingError,
    RecordNotFoundError,
    StorageError,
    TransientLedgerError,
    UnsupportedAlgorithmError,
)

__all__ = [
    "ErrorCode",
    "LedgerMode",
    "StorageMode",
    "AnchorError",
    "BatchNotFoundError",
    "CommitFailedError",
    "InvariantViolationError",
    "LedgerRejectedError",
    "RecordEncodingError",
    "RecordNotFoundError",
    "StorageError",
    "TransientLedgerError",
    "UnsupportedAlgorithmError",
]
