import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import ClassVar, Protocol

from xrpl.models.amounts import IssuedCurrencyAmount
from xrpl.models.transactions import TrustSet
from xrpl.models.transactions.transaction import Transaction
from xrpl.wallet import Wallet

import wasabi_workload.constants as C
from wasabi_workload.constants import WorkloadKind
from wasabi_workload.errors import BatchExecutionError, LedgerError, UnsupportedWorkloadKind
from wasabi_workload.ledger import LedgerClient, Receipt
from wasabi_workload.models import WorkloadDescriptor

log = logging.getLogger("wasabi_workload.agents")

Sleep = Callable[[float], Awaitable[None]]


class AgentBatchExecutor(Protocol):
    @classmethod
    async def estimate_funding(cls, client: LedgerClient, workload: WorkloadDescriptor) -> int: ...

    @classmethod
    async def batch_overhead(cls, client: LedgerClient, workload: WorkloadDescriptor) -> int: ...

    async def run(self) -> None: ...


REGISTRY: dict[WorkloadKind, type["AgentManager"]] = {}


def register_executor(kind: WorkloadKind):
    """
    Decorator to register an agent manager as the executor for a workload kind.
    """
    def wrap(cls: type["AgentManager"]) -> type["AgentManager"]:
        cls.kind = kind
        REGISTRY[kind] = cls
        return cls
    return wrap


def executor_for(kind: WorkloadKind | str) -> type["AgentManager"]:
    kind = WorkloadKind.parse(kind)
    try:
        return REGISTRY[kind]
    except KeyError:
        raise UnsupportedWorkloadKind(kind) from None


class Agent:
    """One simulated actor: a fresh wallet funded by the process account.

    `run()` funds the wallet, calls `act()`, then sends whatever is left above the
    account's reserves back to the process account. Reserves locked by the account and
    its ledger objects are not recoverable and are the expected per-iteration loss.
    """

    def __init__(self, manager: "AgentManager", index: int, funding: int) -> None:
        self.manager = manager
        self.client = manager.client
        self.funder = manager.process_account
        self.sleep = manager.sleep
        self.workload = manager.workload
        self.index = index
        self.funding = funding
        self.wallet: Wallet | None = None
        self.owner_objects = 0  # trust lines, escrows, offers; each holds an owner reserve

    def __str__(self):
        return f"{type(self).__name__}[{self.index}] {self.address}"

    @property
    def address(self) -> str | None:
        return self.wallet.address if self.wallet else None

    async def submit_and_wait(self, txn: Transaction, wallet: Wallet | None = None) -> Receipt:
        tx_hash = await self.client.submit(txn, wallet or self.wallet)
        receipt = await self.client.await_receipt(tx_hash)
        if not receipt.status:
            raise BatchExecutionError(f"{self}: {txn.transaction_type.value} {tx_hash} failed: {receipt.result}")
        return receipt

    async def pay(
        self, amount: int, sender: Wallet, destination: str, *, asset_id: int = C.NATIVE_ASSET, issuer: str | None = None
    ) -> Receipt:
        tx_hash = await self.client.transfer(amount, sender, destination, asset_id=asset_id, issuer=issuer)
        receipt = await self.client.await_receipt(tx_hash)
        if not receipt.status:
            raise BatchExecutionError(f"{self}: payment {tx_hash} of {amount} to {destination} failed: {receipt.result}")
        return receipt

    async def trust(self, currency: str, limit: int) -> Receipt:
        """Open a trust line to the process account for `currency`."""
        txn = TrustSet(
            account=self.address,
            limit_amount=IssuedCurrencyAmount(currency=currency, issuer=self.funder.address, value=str(limit)),
        )
        receipt = await self.submit_and_wait(txn)
        self.owner_objects += 1
        return receipt

    async def setup(self) -> None:
        self.wallet = await self.client.create_account()
        log.debug("Funding agent %s with %s drops", self, self.funding)
        await self.pay(self.funding, self.funder, self.wallet.address)

    async def act(self) -> None:
        raise NotImplementedError

    async def teardown(self) -> int:
        base, inc = await self.client.reserves()
        fee = await self.client.fee()
        balance = await self.client.get_balance(C.NATIVE_ASSET, self.wallet.address)
        value = balance - base - inc * self.owner_objects - fee
        if value <= 0:
            return 0
        await self.pay(value, self.wallet, self.funder.address)
        log.debug("%s returned %s drops", self, value)
        return value

    async def run(self) -> None:
        await self.setup()
        try:
            await self.act()
        finally:
            try:
                await self.teardown()
            except (LedgerError, BatchExecutionError, TimeoutError) as e:
                log.warning("%s could not return its funds: %s", self, e)


class AgentManager:
    """Runs one batch of agents for a workload kind against the process account."""

    kind: ClassVar[WorkloadKind]
    agent_cls: ClassVar[type[Agent]] = Agent

    def __init__(
        self, client: LedgerClient, process_account: Wallet, workload: WorkloadDescriptor, *, sleep: Sleep = asyncio.sleep
    ) -> None:
        self.client = client
        self.sleep = sleep
        self.process_account = process_account
        self.workload = workload
        self.agents: list[Agent] = []
        self.failures: list[Exception] = []

    @classmethod
    async def estimate_funding(cls, client: LedgerClient, workload: WorkloadDescriptor) -> int:
        """Drops each agent is funded with."""
        raise NotImplementedError

    @classmethod
    async def batch_overhead(cls, client: LedgerClient, workload: WorkloadDescriptor) -> int:
        """Drops the batch spends from the process account beyond the agents themselves."""
        return 0

    async def setup(self) -> None:
        pass

    async def teardown(self) -> None:
        pass

    async def _run_agent(self, sem: asyncio.Semaphore, agent: Agent) -> None:
        async with sem:
            try:
                await agent.run()
            except Exception as e:
                log.error("Agent %s failed: %s", agent.index, e)
                self.failures.append(e)

    async def run(self) -> None:
        w = self.workload
        funding = await type(self).estimate_funding(self.client, w)
        self.agents = [self.agent_cls(self, i, funding) for i in range(w.agent_count)]
        self.failures = []
        log.info(
            "Running %s %s agents (%s transfers each, concurrency %s)",
            w.agent_count, w.kind.value, w.transfers_per_agent, w.concurrency,
        )

        await self.setup()
        try:
            sem = asyncio.Semaphore(w.concurrency)
            async with asyncio.TaskGroup() as tg:
                for agent in self.agents:
                    tg.create_task(self._run_agent(sem, agent), name=f"agent-{agent.index}")
        finally:
            await self.teardown()

        if self.failures:
            raise BatchExecutionError(
                f"{len(self.failures)} of {len(self.agents)} {w.kind.value} agents failed: {self.failures[0]}"
            ) from ExceptionGroup("agent failures", self.failures)
