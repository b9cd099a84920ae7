from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from snapledger.models.gcp_compute_firewall import GcpComputeFirewall, GcpComputeFirewallHistory
from snapledger.modules.ingestion.adapters.gcp.firewall import FIREWALL_CONTRACT
from snapledger.shared.core.exceptions import ConsistencyViolationError, SnapshotContractError

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(hours=1)


async def _ids(session_factory):
    async with session_factory() as session:
        result = await session.execute(
            select(GcpComputeFirewall.resource_id).order_by(GcpComputeFirewall.resource_id)
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_store_batch_commits_every_snapshot(coordinator, session_factory, firewall_snapshot):
    batch = await coordinator.store_batch(
        FIREWALL_CONTRACT,
        [firewall_snapshot(resource_id="b"), firewall_snapshot(resource_id="a")],
    )

    assert batch.resource_ids == ["b", "a"]
    assert batch.count == 2
    assert batch.counts_by_kind() == {"new": 2}
    assert await _ids(session_factory) == ["a", "b"]


@pytest.mark.asyncio
async def test_empty_batch_is_a_no_op(coordinator):
    batch = await coordinator.store_batch(FIREWALL_CONTRACT, [])
    assert batch.count == 0
    assert batch.counts_by_kind() == {}


@pytest.mark.asyncio
async def test_failed_snapshot_rolls_back_whole_batch(coordinator, session_factory, firewall_snapshot):
    with pytest.raises(SnapshotContractError):
        await coordinator.store_batch(
            FIREWALL_CONTRACT,
            [firewall_snapshot(resource_id="a"), firewall_snapshot(resource_id="")],
        )
    assert await _ids(session_factory) == []


@pytest.mark.asyncio
async def test_consistency_violation_rolls_back_batch(coordinator, session_factory, firewall_snapshot):
    await coordinator.store_batch(FIREWALL_CONTRACT, [firewall_snapshot(resource_id="x", collected_at=T0)])
    async with coordinator.unit_of_work("break_history") as session:
        (history,) = (await session.execute(select(GcpComputeFirewallHistory))).scalars().all()
        history.valid_to = T0

    with pytest.raises(ConsistencyViolationError):
        await coordinator.store_batch(
            FIREWALL_CONTRACT,
            [
                firewall_snapshot(resource_id="y", collected_at=T1),
                firewall_snapshot(resource_id="x", collected_at=T1, priority=1),
            ],
        )

    assert await _ids(session_factory) == ["x"]
    async with session_factory() as session:
        current = await session.get(GcpComputeFirewall, "x")
        assert current.priority == 1000
        assert current.collected_at == T0


@pytest.mark.asyncio
async def test_unit_of_work_rolls_back_and_logs(coordinator, session_factory, firewall_snapshot):
    from unittest.mock import patch

    with patch("snapledger.modules.ingestion.domain.transaction.logger") as mock_logger:
        with pytest.raises(RuntimeError):
            async with coordinator.unit_of_work("explode") as session:
                session.add(
                    GcpComputeFirewall(
                        resource_id="z",
                        collected_at=T0,
                        first_collected_at=T0,
                        name="fw-z",
                        priority=1000,
                        disabled=False,
                        project_id="proj-a",
                    )
                )
                await session.flush()
                raise RuntimeError("boom")

    mock_logger.warning.assert_called_once()
    assert mock_logger.warning.call_args.kwargs["unit"] == "explode"
    assert await _ids(session_factory) == []


@pytest.mark.asyncio
async def test_reconcile_runs_in_its_own_unit(coordinator, session_factory, firewall_snapshot):
    await coordinator.store_batch(FIREWALL_CONTRACT, [firewall_snapshot(resource_id="x", collected_at=T0)])

    outcome = await coordinator.reconcile(FIREWALL_CONTRACT, {"project_id": "proj-a"}, cutoff=T1)

    assert outcome.retired_ids == ["x"]
    assert await _ids(session_factory) == []
    async with session_factory() as session:
        (history,) = (await session.execute(select(GcpComputeFirewallHistory))).scalars().all()
        assert history.valid_to is not None
        assert history.valid_to >= T1


@pytest.mark.asyncio
async def test_repeated_id_in_batch_counts_every_application(coordinator, firewall_snapshot):
    batch = await coordinator.store_batch(
        FIREWALL_CONTRACT,
        [
            firewall_snapshot(resource_id="x", collected_at=T0),
            firewall_snapshot(resource_id="x", collected_at=T1, priority=1),
        ],
    )

    assert batch.resource_ids == ["x"]
    assert batch.count == 1
    assert batch.classifications["x"].kind.value == "scalar_changed"
    assert batch.counts_by_kind() == {"new": 1, "scalar_changed": 1}
    assert [c.kind.value for c in batch.applied] == ["new", "scalar_changed"]
