"""
Transaction Coordinator

Wraps a whole storage batch, or a whole reconciliation pass, in one database
transaction: either every snapshot of the batch becomes visible or none does.
"""

from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Mapping, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from snapledger.modules.ingestion.domain.contract import ResourceContract
from snapledger.modules.ingestion.domain.diff import Classification
from snapledger.modules.ingestion.domain.reconciler import (
    ReconcileResult,
    StalenessReconciler,
)
from snapledger.modules.ingestion.domain.snapshot import CanonicalSnapshot
from snapledger.modules.ingestion.domain.version_store import VersionStore
from snapledger.shared.db.session import get_session_factory

logger = structlog.get_logger()


@dataclass
class BatchResult:
    resource_type: str
    resource_ids: list[str] = field(default_factory=list)
    # Last classification per id.
    classifications: dict[str, Classification] = field(default_factory=dict)
    # Every upsert in submission order; an id repeated in one batch appears twice.
    applied: list[Classification] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.resource_ids)

    def counts_by_kind(self) -> dict[str, int]:
        return dict(Counter(c.kind.value for c in self.applied))


class TransactionCoordinator:
    def __init__(
        self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    ):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    @asynccontextmanager
    async def unit_of_work(self, name: str = "unit_of_work") -> AsyncIterator[AsyncSession]:
        """
        Yield a session inside an open transaction.

        Commits when the block exits cleanly; rolls back and re-raises on any
        error, cancellation included.
        """
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except BaseException as exc:
                logger.warning(
                    "unit_of_work_rolled_back",
                    unit=name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise

    async def store_batch(
        self,
        contract: ResourceContract,
        snapshots: Sequence[CanonicalSnapshot],
        now: Optional[datetime] = None,
    ) -> BatchResult:
        """Apply every snapshot atomically; the first error aborts the whole batch."""
        outcome = BatchResult(resource_type=contract.resource_type)
        if not snapshots:
            return outcome

        store = VersionStore(contract)
        async with self.unit_of_work(f"store_batch:{contract.resource_type}") as db:
            for snapshot in snapshots:
                classification = await store.upsert_snapshot(db, snapshot, now=now)
                if snapshot.resource_id not in outcome.classifications:
                    outcome.resource_ids.append(snapshot.resource_id)
                outcome.classifications[snapshot.resource_id] = classification
                outcome.applied.append(classification)

        logger.info(
            "snapshot_batch_committed",
            resource_type=contract.resource_type,
            count=outcome.count,
            classifications=outcome.counts_by_kind(),
        )
        return outcome

    async def reconcile(
        self,
        contract: ResourceContract,
        scope: Mapping[str, Any],
        cutoff: datetime,
        now: Optional[datetime] = None,
    ) -> ReconcileResult:
        async with self.unit_of_work(f"reconcile:{contract.resource_type}") as db:
            return await StalenessReconciler(contract).reconcile(
                db, scope, cutoff, now=now
            )
