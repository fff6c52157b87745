from enum import Enum


class ErrorCode(str, Enum):
    RECORD_ENCODING_ERROR = "record_encoding_error"
    RECORD_NOT_FOUND = "record_not_found"
    BATCH_NOT_FOUND = "batch_not_found"
    UNSUPPORTED_ALGORITHM = "unsupported_algorithm"
    TRANSIENT_LEDGER_ERROR = "transient_ledger_error"
    LEDGER_REJECTED = "ledger_rejected"
    COMMIT_FAILED = "commit_failed"
    STORAGE_ERROR = "storage_error"
    INVARIANT_VIOLATION = "invariant_violation"
    INVALID_REQUEST = "invalid_request"
    HTTP_ERROR = "http_error"
    INTERNAL_ERROR = "internal_error"


class StorageMode(str, Enum):
    MEMORY = "memory"
    FILE = "file"


class LedgerMode(str, Enum):
    MEMORY = "memory"
    HTTP = "http"
