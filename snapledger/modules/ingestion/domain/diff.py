"""
Diff engine.

Pure classification of an incoming snapshot against the stored current state.
No I/O; the version store decides what to write from the result.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from snapledger.modules.ingestion.domain.contract import ChildCollection, ResourceContract
from snapledger.modules.ingestion.domain.snapshot import (
    CanonicalSnapshot,
    ResourceState,
    blob_key,
)
from snapledger.shared.core.exceptions import SnapshotContractError


class ChangeKind(str, Enum):
    NEW = "new"
    UNCHANGED = "unchanged"
    SCALAR_CHANGED = "scalar_changed"
    CHILD_ONLY_CHANGED = "child_only_changed"


class CollectionChange(str, Enum):
    UNCHANGED = "unchanged"
    CHANGED = "changed"


@dataclass(frozen=True)
class Classification:
    kind: ChangeKind
    collections: Mapping[str, CollectionChange] = field(default_factory=dict)

    @property
    def has_any_change(self) -> bool:
        return self.kind is not ChangeKind.UNCHANGED

    def changed_collections(self) -> list[str]:
        return [
            name
            for name, change in self.collections.items()
            if change is CollectionChange.CHANGED
        ]


def values_equal(old: Any, new: Any) -> bool:
    """Nil-safe equality: two nils are equal, one nil never equals a value."""
    if old is None or new is None:
        return old is None and new is None
    return bool(old == new)


def blobs_equal(old: Any, new: Any) -> bool:
    """Byte equality for raw bytes, structural equality for decoded JSON."""
    if old is None or new is None:
        return old is None and new is None
    if isinstance(old, (bytes, bytearray)) or isinstance(new, (bytes, bytearray)):
        return isinstance(old, (bytes, bytearray)) and isinstance(
            new, (bytes, bytearray)
        ) and bytes(old) == bytes(new)
    return blob_key(old) == blob_key(new)


def _item_key(collection: ChildCollection, item: Mapping[str, Any]) -> tuple[str, ...]:
    return tuple(blob_key(item.get(name)) for name in collection.identity_fields)


def diff_collection(
    collection: ChildCollection,
    old_items: Iterable[Mapping[str, Any]],
    new_items: Iterable[Mapping[str, Any]],
) -> CollectionChange:
    """Compare two child collections as unordered sets of keys."""
    old_list = list(old_items)
    new_list = list(new_items)
    if len(old_list) != len(new_list):
        return CollectionChange.CHANGED

    old_keys = {_item_key(collection, item) for item in old_list}
    new_keys = {_item_key(collection, item) for item in new_list}
    if old_keys != new_keys:
        return CollectionChange.CHANGED
    return CollectionChange.UNCHANGED


def scalars_changed(
    contract: ResourceContract,
    old: Mapping[str, Any],
    new: Mapping[str, Any],
) -> bool:
    for name in contract.scalar_fields:
        if not values_equal(old.get(name), new.get(name)):
            return True
    for name in contract.blob_fields:
        if not blobs_equal(old.get(name), new.get(name)):
            return True
    return False


def validate_snapshot(contract: ResourceContract, incoming: CanonicalSnapshot) -> None:
    if not incoming.resource_id:
        raise SnapshotContractError(
            f"Snapshot for {contract.resource_type} has an empty resource_id",
            details={"resource_type": contract.resource_type},
        )
    if incoming.collected_at.tzinfo is None:
        raise SnapshotContractError(
            f"Snapshot {incoming.resource_id} has a naive collected_at",
            details={"resource_type": contract.resource_type, "resource_id": incoming.resource_id},
        )
    unknown = set(incoming.attributes) - set(contract.attribute_fields)
    if unknown:
        raise SnapshotContractError(
            f"Snapshot {incoming.resource_id} carries unknown attributes {sorted(unknown)}",
            details={"resource_type": contract.resource_type, "resource_id": incoming.resource_id},
        )
    for name, items in incoming.children.items():
        collection = contract.child(name)
        for item in items:
            extra = set(item) - set(collection.fields)
            if extra:
                raise SnapshotContractError(
                    f"Item in '{name}' of {incoming.resource_id} carries unknown fields {sorted(extra)}",
                    details={"resource_type": contract.resource_type, "resource_id": incoming.resource_id},
                )


def classify(
    contract: ResourceContract,
    existing: Optional[ResourceState],
    incoming: CanonicalSnapshot,
) -> Classification:
    """
    Classify ``incoming`` against ``existing``.

    Every collection gets a sub-result. For a new resource all collections
    count as changed; otherwise collections are compared whether or not the
    scalars moved, so the store knows which current child rows to replace.
    """
    validate_snapshot(contract, incoming)

    if existing is None:
        return Classification(
            kind=ChangeKind.NEW,
            collections={child.name: CollectionChange.CHANGED for child in contract.children},
        )

    collections = {
        child.name: diff_collection(
            child,
            existing.children.get(child.name, []),
            incoming.children.get(child.name, []),
        )
        for child in contract.children
    }

    if scalars_changed(contract, existing.attributes, incoming.attributes):
        kind = ChangeKind.SCALAR_CHANGED
    elif any(change is CollectionChange.CHANGED for change in collections.values()):
        kind = ChangeKind.CHILD_ONLY_CHANGED
    else:
        kind = ChangeKind.UNCHANGED

    return Classification(kind=kind, collections=collections)
