from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from snapledger.models.gcp_compute_firewall import (
    GcpComputeFirewall,
    GcpComputeFirewallAllowed,
    GcpComputeFirewallAllowedHistory,
    GcpComputeFirewallHistory,
)
from snapledger.modules.ingestion.adapters.gcp.firewall import FIREWALL_CONTRACT
from snapledger.modules.ingestion.domain.reconciler import StalenessReconciler
from snapledger.modules.ingestion.domain.version_store import VersionStore
from snapledger.shared.core.exceptions import SnapshotContractError

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(hours=1)
T2 = T0 + timedelta(hours=2)


@pytest.fixture
def reconciler():
    return StalenessReconciler(FIREWALL_CONTRACT)


async def _seed(db, firewall_snapshot, *snapshots):
    store = VersionStore(FIREWALL_CONTRACT)
    for kwargs in snapshots:
        await store.upsert_snapshot(db, firewall_snapshot(**kwargs))


@pytest.mark.asyncio
async def test_stale_resource_is_retired(db_session, reconciler, firewall_snapshot):
    await _seed(
        db_session,
        firewall_snapshot,
        {"resource_id": "old", "collected_at": T0},
        {"resource_id": "fresh", "collected_at": T1},
    )

    outcome = await reconciler.reconcile(db_session, {"project_id": "proj-a"}, cutoff=T1, now=T2)

    assert outcome.retired_ids == ["old"]
    assert outcome.closed_versions == 1
    assert await db_session.get(GcpComputeFirewall, "old") is None
    assert await db_session.get(GcpComputeFirewall, "fresh") is not None

    (history,) = (
        await db_session.execute(
            select(GcpComputeFirewallHistory).where(GcpComputeFirewallHistory.resource_id == "old")
        )
    ).scalars().all()
    assert history.valid_to == T2

    children = (
        await db_session.execute(
            select(GcpComputeFirewallAllowedHistory).where(
                GcpComputeFirewallAllowedHistory.parent_history_id == history.history_id
            )
        )
    ).scalars().all()
    assert [c.valid_to for c in children] == [T2]

    remaining = (
        await db_session.execute(
            select(GcpComputeFirewallAllowed.parent_resource_id)
        )
    ).scalars().all()
    assert remaining == ["fresh"]


@pytest.mark.asyncio
async def test_fresh_resource_history_is_untouched(db_session, reconciler, firewall_snapshot):
    await _seed(db_session, firewall_snapshot, {"resource_id": "fresh", "collected_at": T1})

    outcome = await reconciler.reconcile(db_session, {"project_id": "proj-a"}, cutoff=T1, now=T2)

    assert outcome.retired_ids == []
    (history,) = (await db_session.execute(select(GcpComputeFirewallHistory))).scalars().all()
    assert history.valid_to is None


@pytest.mark.asyncio
async def test_other_scopes_are_not_touched(db_session, reconciler, firewall_snapshot):
    await _seed(
        db_session,
        firewall_snapshot,
        {"resource_id": "a", "collected_at": T0, "project_id": "proj-a"},
        {"resource_id": "b", "collected_at": T0, "project_id": "proj-b"},
    )

    outcome = await reconciler.reconcile(db_session, {"project_id": "proj-a"}, cutoff=T1, now=T2)

    assert outcome.retired_ids == ["a"]
    assert await db_session.get(GcpComputeFirewall, "b") is not None


@pytest.mark.asyncio
async def test_closing_time_is_never_before_cutoff(db_session, reconciler, firewall_snapshot):
    await _seed(db_session, firewall_snapshot, {"resource_id": "old", "collected_at": T0})

    await reconciler.reconcile(db_session, {"project_id": "proj-a"}, cutoff=T2, now=T1)

    (history,) = (await db_session.execute(select(GcpComputeFirewallHistory))).scalars().all()
    assert history.valid_to == T2


@pytest.mark.asyncio
async def test_missing_history_is_tolerated(db_session, reconciler, firewall_snapshot):
    await _seed(db_session, firewall_snapshot, {"resource_id": "old", "collected_at": T0})
    (history,) = (await db_session.execute(select(GcpComputeFirewallHistory))).scalars().all()
    history.valid_to = T0
    await db_session.flush()

    outcome = await reconciler.reconcile(db_session, {"project_id": "proj-a"}, cutoff=T1, now=T2)

    assert outcome.retired_ids == ["old"]
    assert outcome.closed_versions == 0
    assert await db_session.get(GcpComputeFirewall, "old") is None


@pytest.mark.asyncio
async def test_unknown_scope_key_is_rejected(db_session, reconciler):
    with pytest.raises(SnapshotContractError):
        await reconciler.reconcile(db_session, {"region": "us-east1"}, cutoff=T1)
