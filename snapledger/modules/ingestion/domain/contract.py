"""
Resource contracts.

A ``ResourceContract`` is everything the generic engine needs to know about one
resource type: its four tables and which of their columns carry scalar
attributes, blobs, scope, and nested collections.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping

from snapledger.shared.core.exceptions import SnapshotContractError


def _column_names(model: type[Any]) -> set[str]:
    return {column.key for column in model.__table__.columns}


@dataclass(frozen=True)
class ChildCollection:
    """A nested collection with no stable id of its own."""

    name: str
    current_model: type[Any]
    history_model: type[Any]
    fields: tuple[str, ...]
    blob_fields: tuple[str, ...] = ()
    # Declared composite key; when empty the full attribute bag is the key.
    key_fields: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        unknown_keys = set(self.key_fields) - set(self.fields)
        if unknown_keys:
            raise SnapshotContractError(
                f"Key fields {sorted(unknown_keys)} are not fields of collection '{self.name}'",
                details={"collection": self.name},
            )
        unknown_blobs = set(self.blob_fields) - set(self.fields)
        if unknown_blobs:
            raise SnapshotContractError(
                f"Blob fields {sorted(unknown_blobs)} are not fields of collection '{self.name}'",
                details={"collection": self.name},
            )
        for model in (self.current_model, self.history_model):
            missing = set(self.fields) - _column_names(model)
            if missing:
                raise SnapshotContractError(
                    f"{model.__name__} is missing columns {sorted(missing)}",
                    details={"collection": self.name, "model": model.__name__},
                )

    @property
    def identity_fields(self) -> tuple[str, ...]:
        return self.key_fields or self.fields


@dataclass(frozen=True)
class ResourceContract:
    resource_type: str
    current_model: type[Any]
    history_model: type[Any]
    scalar_fields: tuple[str, ...]
    blob_fields: tuple[str, ...] = ()
    # Subset of scalar_fields that identify the owning context (project, org).
    scope_fields: tuple[str, ...] = ()
    children: tuple[ChildCollection, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        overlap = set(self.scalar_fields) & set(self.blob_fields)
        if overlap:
            raise SnapshotContractError(
                f"Fields {sorted(overlap)} are declared both scalar and blob",
                details={"resource_type": self.resource_type},
            )
        unknown_scope = set(self.scope_fields) - set(self.scalar_fields)
        if unknown_scope:
            raise SnapshotContractError(
                f"Scope fields {sorted(unknown_scope)} must be scalar fields",
                details={"resource_type": self.resource_type},
            )
        for model in (self.current_model, self.history_model):
            missing = set(self.attribute_fields) - _column_names(model)
            if missing:
                raise SnapshotContractError(
                    f"{model.__name__} is missing columns {sorted(missing)}",
                    details={"resource_type": self.resource_type, "model": model.__name__},
                )
        names = [child.name for child in self.children]
        if len(names) != len(set(names)):
            raise SnapshotContractError(
                "Child collection names must be unique",
                details={"resource_type": self.resource_type},
            )

    @property
    def attribute_fields(self) -> tuple[str, ...]:
        return self.scalar_fields + self.blob_fields

    def child(self, name: str) -> ChildCollection:
        for collection in self.children:
            if collection.name == name:
                return collection
        raise SnapshotContractError(
            f"Unknown child collection '{name}' for {self.resource_type}",
            details={"resource_type": self.resource_type, "collection": name},
        )

    def validate_scope(self, scope: Mapping[str, Any]) -> None:
        unknown = set(scope) - set(self.scope_fields)
        if unknown:
            raise SnapshotContractError(
                f"Scope keys {sorted(unknown)} are not scope fields of {self.resource_type}",
                details={"resource_type": self.resource_type},
            )
