from recordanchor.store.batches import (
    Batch,
    BatchStore,
    InclusionProof,
    InMemoryBatchStore,
    JsonFileBatchStore,
)
from recordanchor.store.records import (
    JsonFileRecordRepository,
    RecordRepository,
)

__all__ = [
    "Batch",
    "BatchStore",
    "InclusionProof",
    "InMemoryBatchStore",
    "JsonFileBatchStore",
    "JsonFileRecordRepository",
    "RecordRepository",
]
