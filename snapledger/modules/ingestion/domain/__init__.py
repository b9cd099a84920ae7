from .contract import ChildCollection, ResourceContract
from .diff import ChangeKind, Classification, CollectionChange, classify
from .snapshot import CanonicalSnapshot, ResourceState, normalize_blob
from .version_store import VersionStore
from .reconciler import ReconcileResult, StalenessReconciler
from .transaction import BatchResult, TransactionCoordinator
from .service import IngestionRunResult, IngestionService, SkippedItem

__all__ = [
    "ChildCollection",
    "ResourceContract",
    "ChangeKind",
    "Classification",
    "CollectionChange",
    "classify",
    "CanonicalSnapshot",
    "ResourceState",
    "normalize_blob",
    "VersionStore",
    "ReconcileResult",
    "StalenessReconciler",
    "BatchResult",
    "TransactionCoordinator",
    "IngestionRunResult",
    "IngestionService",
    "SkippedItem",
]
