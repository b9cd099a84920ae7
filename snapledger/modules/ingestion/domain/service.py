"""
Ingestion Service

Runs one ingestion pass for one resource type over one scope: fetch raw items,
convert them to canonical snapshots, store them as a single atomic batch, then
retire whatever in the scope was not seen again.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    Any,
    AsyncIterable,
    Awaitable,
    Callable,
    Iterable,
    Mapping,
    Optional,
    Protocol,
    Union,
)

import structlog

from snapledger.modules.ingestion.domain.contract import ResourceContract
from snapledger.modules.ingestion.domain.snapshot import CanonicalSnapshot
from snapledger.modules.ingestion.domain.transaction import TransactionCoordinator
from snapledger.shared.core.async_utils import iterate_items, maybe_await
from snapledger.shared.core.config import Settings, get_settings
from snapledger.shared.core.exceptions import SnapLedgerException
from snapledger.shared.core.ops_metrics import (
    INGESTION_ITEMS_SKIPPED,
    INGESTION_RUN_DURATION,
    RECONCILIATION_FAILURES,
    SNAPSHOTS_STORED,
    STALE_RESOURCES_RETIRED,
)

logger = structlog.get_logger()

STAGE_CONVERT = "convert"
STAGE_SCOPE = "scope"


class SnapshotSource(Protocol):
    """Lists raw provider items for a scope. Sync or async iterables both work."""

    def fetch(
        self, scope: Mapping[str, Any]
    ) -> Union[Iterable[Any], AsyncIterable[Any], Awaitable[Iterable[Any]]]: ...


Converter = Callable[
    [Any, Mapping[str, Any], datetime],
    Union[CanonicalSnapshot, Awaitable[CanonicalSnapshot]],
]


@dataclass(frozen=True)
class SkippedItem:
    index: int
    stage: str
    error: str
    resource_id: Optional[str] = None


@dataclass
class IngestionRunResult:
    resource_type: str
    scope: dict[str, Any]
    collected_at: datetime
    count: int = 0
    resource_ids: list[str] = field(default_factory=list)
    duration_millis: int = 0
    classifications: dict[str, int] = field(default_factory=dict)
    skipped_count: int = 0
    skipped: list[SkippedItem] = field(default_factory=list)
    retired_ids: list[str] = field(default_factory=list)
    reconcile_error: Optional[str] = None


class IngestionService:
    def __init__(
        self,
        contract: ResourceContract,
        source: SnapshotSource,
        converter: Converter,
        coordinator: Optional[TransactionCoordinator] = None,
        settings: Optional[Settings] = None,
    ):
        self.contract = contract
        self.source = source
        self.converter = converter
        self.coordinator = coordinator or TransactionCoordinator()
        self.settings = settings or get_settings()

    def _skip(self, result: IngestionRunResult, item: SkippedItem) -> None:
        result.skipped_count += 1
        if len(result.skipped) < self.settings.INGESTION_SKIPPED_ITEM_SAMPLE_SIZE:
            result.skipped.append(item)
        INGESTION_ITEMS_SKIPPED.labels(
            resource_type=self.contract.resource_type, stage=item.stage
        ).inc()
        logger.warning(
            "ingestion_item_skipped",
            index=item.index,
            stage=item.stage,
            resource_id=item.resource_id,
            error=item.error,
        )

    def _scope_mismatch(
        self, snapshot: CanonicalSnapshot, scope: Mapping[str, Any]
    ) -> Optional[str]:
        for name, expected in scope.items():
            actual = snapshot.attributes.get(name)
            if actual != expected:
                return f"{name}={actual!r} outside requested scope {name}={expected!r}"
        return None

    async def _collect(
        self,
        scope: Mapping[str, Any],
        collected_at: datetime,
        result: IngestionRunResult,
    ) -> list[CanonicalSnapshot]:
        snapshots: list[CanonicalSnapshot] = []
        items = await maybe_await(self.source.fetch(scope))
        index = -1
        async for raw in iterate_items(items):
            index += 1
            try:
                snapshot = await maybe_await(self.converter(raw, scope, collected_at))
            except SnapLedgerException as exc:
                self._skip(result, SkippedItem(index=index, stage=STAGE_CONVERT, error=exc.message))
                continue
            except Exception as exc:
                self._skip(
                    result,
                    SkippedItem(
                        index=index,
                        stage=STAGE_CONVERT,
                        error=f"{type(exc).__name__}: {exc}",
                    ),
                )
                continue

            if not isinstance(snapshot, CanonicalSnapshot):
                self._skip(
                    result,
                    SkippedItem(
                        index=index,
                        stage=STAGE_CONVERT,
                        error=f"converter returned {type(snapshot).__name__}",
                    ),
                )
                continue

            if not snapshot.resource_id:
                self._skip(
                    result,
                    SkippedItem(index=index, stage=STAGE_CONVERT, error="empty resource_id"),
                )
                continue

            mismatch = self._scope_mismatch(snapshot, scope)
            if mismatch:
                self._skip(
                    result,
                    SkippedItem(
                        index=index,
                        stage=STAGE_SCOPE,
                        error=mismatch,
                        resource_id=snapshot.resource_id,
                    ),
                )
                continue

            snapshots.append(snapshot)
        return snapshots

    async def run_ingestion(self, scope: Mapping[str, Any]) -> IngestionRunResult:
        """
        Fetch, convert, store and reconcile one scope.

        A failing listing or storage batch raises and leaves the store as it
        was. Reconciliation runs in its own transaction after the batch has
        committed; its failure is logged and reported on the result only.
        """
        self.contract.validate_scope(scope)
        collected_at = datetime.now(timezone.utc)
        started = time.perf_counter()
        resource_type = self.contract.resource_type
        result = IngestionRunResult(
            resource_type=resource_type,
            scope=dict(scope),
            collected_at=collected_at,
        )

        with structlog.contextvars.bound_contextvars(
            resource_type=resource_type,
            run_collected_at=collected_at.isoformat(),
        ):
            logger.info("ingestion_run_started", scope=dict(scope))
            try:
                snapshots = await self._collect(scope, collected_at, result)
                batch = await self.coordinator.store_batch(
                    self.contract, snapshots, now=collected_at
                )
            except Exception as exc:
                INGESTION_RUN_DURATION.labels(
                    resource_type=resource_type, status="failed"
                ).observe(time.perf_counter() - started)
                logger.error(
                    "ingestion_run_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise

            result.count = batch.count
            result.resource_ids = list(batch.resource_ids)
            result.classifications = batch.counts_by_kind()
            for kind, n in result.classifications.items():
                SNAPSHOTS_STORED.labels(
                    resource_type=resource_type, classification=kind
                ).inc(n)

            if self.settings.INGESTION_RECONCILE_ENABLED:
                await self._reconcile(scope, collected_at, result)

            elapsed = time.perf_counter() - started
            result.duration_millis = int(elapsed * 1000)
            INGESTION_RUN_DURATION.labels(
                resource_type=resource_type, status="success"
            ).observe(elapsed)
            logger.info(
                "ingestion_run_completed",
                count=result.count,
                classifications=result.classifications,
                skipped_count=result.skipped_count,
                retired_count=len(result.retired_ids),
                reconcile_error=result.reconcile_error,
                duration_millis=result.duration_millis,
            )
        return result

    async def _reconcile(
        self,
        scope: Mapping[str, Any],
        cutoff: datetime,
        result: IngestionRunResult,
    ) -> None:
        try:
            outcome = await self.coordinator.reconcile(self.contract, scope, cutoff)
        except Exception as exc:
            RECONCILIATION_FAILURES.labels(
                resource_type=self.contract.resource_type
            ).inc()
            logger.warning(
                "stale_reconciliation_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            result.reconcile_error = str(exc) or type(exc).__name__
            return

        result.retired_ids = list(outcome.retired_ids)
        if outcome.retired_ids:
            STALE_RESOURCES_RETIRED.labels(
                resource_type=self.contract.resource_type
            ).inc(len(outcome.retired_ids))
