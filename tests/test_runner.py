import asyncio
import logging

import pytest

from conftest import FEE, RESERVES, FakeLedger, Sleeper
from wasabi_workload.budget import estimate
from wasabi_workload.config import settings
from wasabi_workload.constants import REFUND_RESERVE, WorkloadKind
from wasabi_workload.errors import BatchExecutionError
from wasabi_workload.funding import FundingGuard
from wasabi_workload.ledger import SeedAccountSource
from wasabi_workload.models import WorkloadDescriptor
from wasabi_workload.runner import RunDriver, run, workload_from_settings

WORKLOAD = WorkloadDescriptor(kind=WorkloadKind.PAYMENT, agent_count=2, transfers_per_agent=1)


class FixedSource:
    def __init__(self, wallet) -> None:
        self.wallet = wallet

    async def funding_account(self, client):
        return self.wallet


class DrainingBatch:
    """Spends the whole process balance, so every iteration needs a top-up."""

    def __init__(self, ledger, process_account, on_run=None) -> None:
        self.ledger = ledger
        self.process_account = process_account
        self.on_run = on_run

    async def run(self) -> None:
        self.ledger.events.append("batch")
        self.ledger.balances[(0, self.process_account.address)] = 0
        if self.on_run is not None:
            self.on_run()


def draining_factory(ledger, on_run=None):
    def factory(client, process_account, workload):
        return DrainingBatch(ledger, process_account, on_run)
    return factory


class IdleBatch:
    async def run(self) -> None:
        pass


class FailingBatch:
    async def run(self) -> None:
        raise BatchExecutionError("1 of 2 payment agents failed")


@pytest.mark.asyncio
async def test_driver_funds_before_every_batch(ledger, funder, process_account, sleeper, caplog):
    caplog.set_level(logging.INFO, logger="wasabi_workload")
    guard = FundingGuard(ledger, funder, sleep=sleeper)
    driver = RunDriver(
        ledger, funder, process_account, WORKLOAD, loops=3, guard=guard, executor_factory=draining_factory(ledger)
    )

    assert await driver.run() == 3

    fund = f"transfer:{funder.address}->{process_account.address}"
    assert ledger.events == [fund, "batch"] * 3
    started = [r.getMessage() for r in caplog.records if r.getMessage().startswith("starting wasabi run")]
    assert started == [f"starting wasabi run {i}..." for i in range(3)]
    assert sum("completed" in r.getMessage() for r in caplog.records) == 3


@pytest.mark.asyncio
async def test_driver_skips_funding_while_balance_lasts(ledger, funder, process_account, sleeper):
    batches = []

    def factory(client, account, workload):
        batches.append(account.address)
        return IdleBatch()

    guard = FundingGuard(ledger, funder, sleep=sleeper)
    driver = RunDriver(ledger, funder, process_account, WORKLOAD, loops=4, guard=guard, executor_factory=factory)

    assert await driver.run() == 4
    assert len(ledger.transfers) == 1
    assert batches == [process_account.address] * 4


@pytest.mark.asyncio
async def test_driver_stop_finishes_current_iteration(ledger, funder, process_account, sleeper):
    stop = asyncio.Event()
    guard = FundingGuard(ledger, funder, sleep=sleeper, stop=stop)
    driver = RunDriver(
        ledger, funder, process_account, WORKLOAD,
        loops=None, guard=guard, stop=stop, executor_factory=draining_factory(ledger, on_run=stop.set),
    )

    assert await driver.run() == 1
    assert ledger.events.count("batch") == 1


@pytest.mark.asyncio
async def test_driver_stop_while_funding_ends_run(ledger, funder, process_account):
    stop = asyncio.Event()
    ledger.fail_receipts = 1
    guard = FundingGuard(ledger, funder, sleep=Sleeper(on_sleep=stop.set), stop=stop)
    driver = RunDriver(
        ledger, funder, process_account, WORKLOAD,
        loops=5, guard=guard, stop=stop, executor_factory=draining_factory(ledger),
    )

    assert await driver.run() == 0
    assert "batch" not in ledger.events


@pytest.mark.asyncio
async def test_driver_zero_loops_does_nothing(ledger, funder, process_account):
    driver = RunDriver(ledger, funder, process_account, WORKLOAD, loops=0, executor_factory=draining_factory(ledger))

    assert await driver.run() == 0
    assert ledger.events == []


@pytest.mark.asyncio
async def test_run_once_records_elapsed(ledger, funder, process_account, sleeper):
    ticks = iter([10.0, 12.5])
    guard = FundingGuard(ledger, funder, sleep=sleeper)
    driver = RunDriver(
        ledger, funder, process_account, WORKLOAD,
        loops=1, guard=guard, executor_factory=draining_factory(ledger), clock=lambda: next(ticks),
    )

    iteration = await driver.run_once(0)

    assert iteration.elapsed == 2.5
    assert iteration.funding_spec.top_up == ledger.transfers[0][0]


@pytest.mark.asyncio
async def test_run_refunds_and_closes_after_batch_failure(ledger, funder, sleeper):
    s = settings(loops=2, budget={"refund_reserve": 0})

    with pytest.raises(BatchExecutionError):
        await run(s, client=ledger, account_source=FixedSource(funder),
                  executor_factory=lambda *args: FailingBatch(), sleep=sleeper)

    funding, refunded = ledger.transfers
    assert funding[1] == funder.address
    assert refunded[1:3] == (funding[2], funder.address)
    assert refunded[0] == funding[0] - RESERVES[0] - FEE
    assert ledger.closed


@pytest.mark.asyncio
async def test_run_closes_client_when_funding_account_is_unavailable(ledger):
    class Broken:
        async def funding_account(self, client):
            raise RuntimeError("no seed")

    with pytest.raises(RuntimeError):
        await run(settings(loops=1), client=ledger, account_source=Broken())
    assert ledger.closed
    assert ledger.transfers == []


@pytest.mark.asyncio
async def test_run_uses_funding_seed(ledger, funder, sleeper):
    ledger.balances[(0, funder.address)] = 10**16
    s = settings(loops=0, funding_seed=funder.seed)

    assert await run(s, client=ledger, sleep=sleeper) == 0
    assert ledger.closed


@pytest.mark.asyncio
async def test_payment_run_end_to_end(funder, sleeper):
    """2 agents x 5 native payments, one loop, starting from an empty process account."""
    ledger = FakeLedger({funder.address: 10**16})
    s = settings(kind="payment", agents=2, transfers=5, concurrency=2, assets=[0], loops=1,
                 budget={"refund_reserve": 1_000})
    expected = await estimate(ledger, "payment", 2, 5, [0], loops=1)

    assert await run(s, client=ledger, account_source=SeedAccountSource(funder.seed), sleep=sleeper) == 1

    process = ledger.transfers[0][2]
    from_funder = [t for t in ledger.transfers if t[1] == funder.address]
    assert from_funder == [(expected.top_up, funder.address, process, 0)]

    # Each agent keeps its base reserve plus the fee held back for its return payment.
    base, _ = RESERVES
    left = expected.top_up - 2 * (base + FEE)
    refunded = ledger.transfers[-1]
    assert refunded == (left - base - FEE - 1_000, process, funder.address, 0)
    assert ledger.balance(process) == base + FEE + 1_000
    assert sleeper.calls == []
    assert ledger.closed


@pytest.mark.asyncio
async def test_default_budget_returns_leftovers(funder, sleeper):
    ledger = FakeLedger({funder.address: 10**16})
    s = settings(kind="payment", agents=2, transfers=5, loops=1)
    expected = await estimate(ledger, "payment", 2, 5, [0], loops=1)

    assert await run(s, client=ledger, account_source=FixedSource(funder), sleep=sleeper) == 1

    # a few XRP for a small batch
    assert expected.top_up < 100 * 10**6
    base, _ = RESERVES
    process = ledger.transfers[0][2]
    left = expected.top_up - 2 * (base + FEE)
    assert ledger.transfers[-1] == (left - base - FEE - REFUND_RESERVE, process, funder.address, 0)
    assert ledger.balance(process) == base + FEE + REFUND_RESERVE
    assert ledger.balance(funder.address) == 10**16 - 2 * (base + FEE) - base - FEE - REFUND_RESERVE


def test_workload_from_settings():
    s = settings(kind="uniswap", agents=3, transfers=4, concurrency=2, assets=[0, 2])
    w = workload_from_settings(s)
    assert w.kind is WorkloadKind.UNISWAP_SWAP
    assert (w.agent_count, w.transfers_per_agent, w.concurrency, w.asset_ids) == (3, 4, 2, (0, 2))
    assert w.params == s.agent
