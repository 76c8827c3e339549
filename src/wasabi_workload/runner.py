import asyncio
import itertools
import logging
import time
from collections.abc import Callable

from xrpl.utils import drops_to_xrp
from xrpl.wallet import Wallet

import wasabi_workload.constants as C
from wasabi_workload.agents import AgentBatchExecutor, executor_for
from wasabi_workload.budget import estimate_workload
from wasabi_workload.config import Settings, cfg
from wasabi_workload.errors import RunCancelled
from wasabi_workload.funding import FundingGuard
from wasabi_workload.ledger import AccountSource, HostAccountSource, LedgerClient, SeedAccountSource, XrplLedgerClient
from wasabi_workload.models import RunIteration, WorkloadDescriptor
from wasabi_workload.refund import refund

log = logging.getLogger("wasabi_workload.runner")

ExecutorFactory = Callable[[LedgerClient, Wallet, WorkloadDescriptor], AgentBatchExecutor]


def default_executor_factory(client: LedgerClient, process_account: Wallet, workload: WorkloadDescriptor) -> AgentBatchExecutor:
    return executor_for(workload.kind)(client, process_account, workload)


def workload_from_settings(settings: Settings) -> WorkloadDescriptor:
    return WorkloadDescriptor(
        kind=settings.kind,
        agent_count=settings.agents,
        transfers_per_agent=settings.transfers,
        asset_ids=tuple(settings.assets),
        concurrency=settings.concurrency,
        params=settings.agent,
    )


class RunDriver:
    """Runs `loops` iterations (forever if None) of: budget, fund, execute batch, time it."""

    def __init__(
        self,
        client: LedgerClient,
        funding_source: Wallet,
        process_account: Wallet,
        workload: WorkloadDescriptor,
        *,
        loops: int | None = None,
        guard: FundingGuard | None = None,
        executor_factory: ExecutorFactory = default_executor_factory,
        stop: asyncio.Event | None = None,
        clock: Callable[[], float] = time.perf_counter,
        base_transfer_cost: int = C.BASE_TRANSFER_COST,
        buffer_percent_per_loop: int = C.BUFFER_PERCENT_PER_LOOP,
        default_buffer_loops: int = C.DEFAULT_BUFFER_LOOPS,
    ) -> None:
        self.client = client
        self.funding_source = funding_source
        self.process_account = process_account
        self.workload = workload
        self.loops = loops
        self.stop = stop
        self.guard = guard or FundingGuard(client, funding_source, stop=stop)
        self.executor_factory = executor_factory
        self.clock = clock
        self.budget = dict(
            base_transfer_cost=base_transfer_cost,
            buffer_percent_per_loop=buffer_percent_per_loop,
            default_buffer_loops=default_buffer_loops,
        )
        self.completed = 0

    async def run_once(self, index: int) -> RunIteration:
        log.info("starting wasabi run %s...", index)
        started = self.clock()

        # Recomputed every iteration; `loops` sizes the buffer, it is not a countdown.
        spec = await estimate_workload(self.client, self.workload, self.loops, **self.budget)
        iteration = RunIteration(index=index, started_at=started, funding_spec=spec)

        await self.guard.ensure_funded(self.process_account, spec)

        executor = self.executor_factory(self.client, self.process_account, self.workload)
        await executor.run()

        iteration.finished_at = self.clock()
        log.info("test run %s completed: %.3fs.", index, iteration.elapsed)
        return iteration

    async def run(self) -> int:
        """Returns the number of iterations that completed."""
        self.completed = 0
        indices = range(self.loops) if self.loops is not None else itertools.count()
        for index in indices:
            if self.stop is not None and self.stop.is_set():
                log.info("Stop requested, not starting run %s.", index)
                break
            try:
                await self.run_once(index)
            except RunCancelled as e:
                log.info("Run %s cancelled: %s", index, e)
                break
            self.completed += 1
        return self.completed


async def run(
    settings: Settings,
    *,
    client: LedgerClient | None = None,
    account_source: AccountSource | None = None,
    executor_factory: ExecutorFactory = default_executor_factory,
    stop: asyncio.Event | None = None,
    sleep=asyncio.sleep,
) -> int:
    """Process lifetime: connect, fund and run the iterations, refund, close.

    The refund is attempted however the iterations end (completion, stop, or a batch
    failure, which is re-raised afterwards). The client is always closed last.
    """
    if client is None:
        xrpl_client = XrplLedgerClient(
            str(settings.rpc_url),
            ws_url=str(settings.ws_url),
            currencies=settings.currencies,
            confirmations=settings.confirmations,
            receipt_timeout=settings.receipt_timeout,
        )
        await xrpl_client.connect(
            probe_retries=settings.probe_retries,
            probe_delay=settings.probe_delay,
            ledgers=settings.initial_ledgers,
            timeout=settings.startup_timeout,
        )
        client = xrpl_client

    try:
        if account_source is None:
            if settings.funding_seed:
                account_source = SeedAccountSource(settings.funding_seed)
            else:
                account_source = HostAccountSource(cfg["funding_account"]["seed"])
        funding_account = await account_source.funding_account(client)

        funding_balance = await client.get_balance(C.NATIVE_ASSET, funding_account.address)
        log.info("primary funding account: %s (%s XRP)", funding_account.address, drops_to_xrp(str(funding_balance)))

        # A unique account for this process, so our transactions never race other processes.
        process_account = await client.create_account()
        log.info("process account: %s", process_account.address)

        budget = settings.budget
        guard = FundingGuard(client, funding_account, backoff=budget.funding_backoff, sleep=sleep, stop=stop)
        driver = RunDriver(
            client,
            funding_account,
            process_account,
            workload_from_settings(settings),
            loops=settings.loops,
            guard=guard,
            executor_factory=executor_factory,
            stop=stop,
            base_transfer_cost=budget.base_transfer_cost,
            buffer_percent_per_loop=budget.buffer_percent_per_loop,
            default_buffer_loops=budget.default_buffer_loops,
        )
        try:
            return await driver.run()
        finally:
            await refund(client, process_account, funding_account.address, budget.refund_reserve)
    finally:
        await client.close()
