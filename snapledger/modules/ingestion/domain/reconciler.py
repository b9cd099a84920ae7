"""
Staleness Reconciler

After a full run over a scope, any current record in that scope whose
``collected_at`` predates the run was not seen again and is retired: its open
history (and open child history) is closed and its current rows are deleted.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from snapledger.modules.ingestion.domain.contract import ResourceContract
from snapledger.modules.ingestion.domain.version_store import VersionStore

logger = structlog.get_logger()


@dataclass
class ReconcileResult:
    resource_type: str
    retired_ids: list[str] = field(default_factory=list)
    closed_versions: int = 0

    @property
    def retired_count(self) -> int:
        return len(self.retired_ids)


class StalenessReconciler:
    def __init__(self, contract: ResourceContract):
        self.contract = contract
        self.store = VersionStore(contract)

    async def find_stale(
        self, db: AsyncSession, scope: Mapping[str, Any], cutoff: datetime
    ) -> list[Any]:
        self.contract.validate_scope(scope)
        model = self.contract.current_model
        filters = [model.collected_at < cutoff]
        filters.extend(getattr(model, name) == value for name, value in scope.items())
        result = await db.execute(
            select(model).where(*filters).order_by(model.resource_id)
        )
        return list(result.scalars().all())

    async def reconcile(
        self,
        db: AsyncSession,
        scope: Mapping[str, Any],
        cutoff: datetime,
        now: Optional[datetime] = None,
    ) -> ReconcileResult:
        """
        Retire every current record in ``scope`` last collected before ``cutoff``.

        Runs inside the caller's transaction. Closing time is ``now`` (wall
        clock by default) but never earlier than ``cutoff``.
        """
        closed_at = max(now or datetime.now(timezone.utc), cutoff)
        outcome = ReconcileResult(resource_type=self.contract.resource_type)

        for row in await self.find_stale(db, scope, cutoff):
            resource_id = row.resource_id
            if await self.store.close_history(db, resource_id, closed_at):
                outcome.closed_versions += 1
            else:
                logger.warning(
                    "stale_resource_without_open_history",
                    resource_type=self.contract.resource_type,
                    resource_id=resource_id,
                )

            # Deleted explicitly; SQLite does not enforce ON DELETE CASCADE by default.
            for child in self.contract.children:
                model = child.current_model
                await db.execute(
                    delete(model).where(model.parent_resource_id == resource_id)
                )
            await db.delete(row)
            outcome.retired_ids.append(resource_id)

        await db.flush()
        if outcome.retired_ids:
            logger.info(
                "stale_resources_retired",
                resource_type=self.contract.resource_type,
                scope=dict(scope),
                count=outcome.retired_count,
                cutoff=cutoff.isoformat(),
            )
        return outcome
