"""
Version Store

Applies one canonical snapshot to the current, history and child tables of a
resource type inside the caller's transaction. Keeps at most one open history
row per resource id; a history row is never modified except to stamp
``valid_to`` when it closes.
"""

from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from snapledger.modules.ingestion.domain.contract import ChildCollection, ResourceContract
from snapledger.modules.ingestion.domain.diff import (
    ChangeKind,
    Classification,
    classify,
)
from snapledger.modules.ingestion.domain.snapshot import CanonicalSnapshot, ResourceState
from snapledger.shared.core.exceptions import ConsistencyViolationError

logger = structlog.get_logger()


class VersionStore:
    def __init__(self, contract: ResourceContract):
        self.contract = contract

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _load_child_rows(
        self, db: AsyncSession, resource_id: str
    ) -> dict[str, list[Any]]:
        rows: dict[str, list[Any]] = {}
        for child in self.contract.children:
            model = child.current_model
            result = await db.execute(
                select(model)
                .where(model.parent_resource_id == resource_id)
                .order_by(model.id)
            )
            rows[child.name] = list(result.scalars().all())
        return rows

    async def load_state(
        self, db: AsyncSession, resource_id: str
    ) -> tuple[Optional[Any], Optional[ResourceState]]:
        """Return the current row (if any) and its plain state view."""
        row = await db.get(self.contract.current_model, resource_id)
        if row is None:
            return None, None

        child_rows = await self._load_child_rows(db, resource_id)
        state = ResourceState(
            resource_id=row.resource_id,
            attributes={name: getattr(row, name) for name in self.contract.attribute_fields},
            collected_at=row.collected_at,
            first_collected_at=row.first_collected_at,
            children={
                child.name: [
                    {name: getattr(r, name) for name in child.fields}
                    for r in child_rows[child.name]
                ]
                for child in self.contract.children
            },
        )
        return row, state

    async def find_open_history(
        self, db: AsyncSession, resource_id: str
    ) -> Optional[Any]:
        model = self.contract.history_model
        result = await db.execute(
            select(model).where(
                model.resource_id == resource_id,
                model.valid_to.is_(None),
            )
        )
        open_rows = list(result.scalars().all())
        if len(open_rows) > 1:
            raise ConsistencyViolationError(
                f"{len(open_rows)} open history records for {self.contract.resource_type} {resource_id}",
                details={
                    "resource_type": self.contract.resource_type,
                    "resource_id": resource_id,
                    "history_ids": [r.history_id for r in open_rows],
                },
            )
        return open_rows[0] if open_rows else None

    # ------------------------------------------------------------------
    # Row builders
    # ------------------------------------------------------------------

    def _attribute_values(self, incoming: CanonicalSnapshot) -> dict[str, Any]:
        return {
            name: incoming.attributes.get(name)
            for name in self.contract.attribute_fields
        }

    @staticmethod
    def _child_values(
        child: ChildCollection, incoming: CanonicalSnapshot
    ) -> list[dict[str, Any]]:
        return [
            {name: item.get(name) for name in child.fields}
            for item in incoming.children.get(child.name, [])
        ]

    async def _replace_current_children(
        self,
        db: AsyncSession,
        child: ChildCollection,
        incoming: CanonicalSnapshot,
    ) -> None:
        model = child.current_model
        await db.execute(
            delete(model).where(model.parent_resource_id == incoming.resource_id)
        )
        for values in self._child_values(child, incoming):
            db.add(model(parent_resource_id=incoming.resource_id, **values))

    def _open_child_history(
        self,
        db: AsyncSession,
        child: ChildCollection,
        incoming: CanonicalSnapshot,
        parent_history_id: int,
        valid_from: datetime,
    ) -> None:
        for values in self._child_values(child, incoming):
            db.add(
                child.history_model(
                    parent_history_id=parent_history_id,
                    valid_from=valid_from,
                    valid_to=None,
                    **values,
                )
            )

    @staticmethod
    async def _close_child_history(
        db: AsyncSession,
        child: ChildCollection,
        parent_history_id: int,
        closed_at: datetime,
    ) -> None:
        model = child.history_model
        await db.execute(
            update(model)
            .where(
                model.parent_history_id == parent_history_id,
                model.valid_to.is_(None),
            )
            .values(valid_to=closed_at)
        )

    async def _open_history(
        self,
        db: AsyncSession,
        incoming: CanonicalSnapshot,
        first_collected_at: datetime,
        valid_from: datetime,
    ) -> Any:
        history = self.contract.history_model(
            resource_id=incoming.resource_id,
            valid_from=valid_from,
            valid_to=None,
            collected_at=incoming.collected_at,
            first_collected_at=first_collected_at,
            **self._attribute_values(incoming),
        )
        db.add(history)
        # history_id is needed before child history rows can point at it.
        await db.flush()
        for child in self.contract.children:
            self._open_child_history(db, child, incoming, history.history_id, valid_from)
        return history

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def close_history(
        self, db: AsyncSession, resource_id: str, closed_at: datetime
    ) -> bool:
        """
        Close the open history row of ``resource_id`` and its open child rows.

        Returns False when nothing was open.
        """
        open_history = await self.find_open_history(db, resource_id)
        if open_history is None:
            return False
        closed_at = max(closed_at, open_history.valid_from)
        for child in self.contract.children:
            await self._close_child_history(db, child, open_history.history_id, closed_at)
        open_history.valid_to = closed_at
        return True

    async def upsert_snapshot(
        self,
        db: AsyncSession,
        incoming: CanonicalSnapshot,
        now: Optional[datetime] = None,
    ) -> Classification:
        """
        Apply ``incoming`` and return its classification.

        ``now`` stamps version boundaries and defaults to the snapshot's
        ``collected_at``. Must run inside an open transaction; any error leaves
        rollback to the caller.
        """
        version_at = now or incoming.collected_at
        row, state = await self.load_state(db, incoming.resource_id)
        classification = classify(self.contract, state, incoming)
        kind = classification.kind

        if kind is ChangeKind.UNCHANGED:
            row.collected_at = incoming.collected_at

        elif kind is ChangeKind.NEW:
            await self._insert_new(db, incoming, version_at)

        elif kind is ChangeKind.SCALAR_CHANGED:
            await self._apply_scalar_change(db, row, incoming, classification, version_at)

        else:
            await self._apply_child_change(db, row, incoming, classification, version_at)

        await db.flush()
        logger.debug(
            "snapshot_stored",
            resource_type=self.contract.resource_type,
            resource_id=incoming.resource_id,
            classification=kind.value,
        )
        return classification

    async def _insert_new(
        self, db: AsyncSession, incoming: CanonicalSnapshot, version_at: datetime
    ) -> None:
        # A leftover open version would make this the second one.
        if await self.find_open_history(db, incoming.resource_id) is not None:
            raise ConsistencyViolationError(
                f"{self.contract.resource_type} {incoming.resource_id} has an open "
                "history record but no current record",
                details={
                    "resource_type": self.contract.resource_type,
                    "resource_id": incoming.resource_id,
                },
            )

        db.add(
            self.contract.current_model(
                resource_id=incoming.resource_id,
                collected_at=incoming.collected_at,
                first_collected_at=incoming.collected_at,
                **self._attribute_values(incoming),
            )
        )
        await db.flush()
        for child in self.contract.children:
            for values in self._child_values(child, incoming):
                db.add(child.current_model(parent_resource_id=incoming.resource_id, **values))

        await self._open_history(db, incoming, incoming.collected_at, version_at)

    async def _require_open_history(self, db: AsyncSession, resource_id: str) -> Any:
        open_history = await self.find_open_history(db, resource_id)
        if open_history is None:
            raise ConsistencyViolationError(
                f"No open history record for existing {self.contract.resource_type} {resource_id}",
                details={
                    "resource_type": self.contract.resource_type,
                    "resource_id": resource_id,
                },
            )
        return open_history

    async def _apply_scalar_change(
        self,
        db: AsyncSession,
        row: Any,
        incoming: CanonicalSnapshot,
        classification: Classification,
        version_at: datetime,
    ) -> None:
        open_history = await self._require_open_history(db, incoming.resource_id)
        version_at = max(version_at, open_history.valid_from)

        for name, value in self._attribute_values(incoming).items():
            setattr(row, name, value)
        row.collected_at = incoming.collected_at
        for name in classification.changed_collections():
            await self._replace_current_children(db, self.contract.child(name), incoming)

        # The parent version is superseded wholesale, children included.
        for child in self.contract.children:
            await self._close_child_history(db, child, open_history.history_id, version_at)
        open_history.valid_to = version_at
        await db.flush()

        await self._open_history(db, incoming, row.first_collected_at, version_at)

    async def _apply_child_change(
        self,
        db: AsyncSession,
        row: Any,
        incoming: CanonicalSnapshot,
        classification: Classification,
        version_at: datetime,
    ) -> None:
        open_history = await self._require_open_history(db, incoming.resource_id)
        version_at = max(version_at, open_history.valid_from)

        row.collected_at = incoming.collected_at
        for name in classification.changed_collections():
            child = self.contract.child(name)
            await self._replace_current_children(db, child, incoming)
            await self._close_child_history(db, child, open_history.history_id, version_at)
            self._open_child_history(
                db, child, incoming, open_history.history_id, version_at
            )
