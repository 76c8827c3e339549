"""Fixed-term vault workload built on escrows.

Each agent locks `vault_deposit` drops in an escrow to itself, waits out `vault_term`
seconds and finishes the escrow, once per transfer. The manager also makes one manual
payment from the process account to a throwaway account per batch.
"""
import logging
from datetime import datetime, timezone

from xrpl.models.transactions import EscrowCreate, EscrowFinish
from xrpl.utils import datetime_to_ripple_time

from wasabi_workload.agents.base import Agent, AgentManager, register_executor
from wasabi_workload.constants import WorkloadKind
from wasabi_workload.errors import BatchExecutionError
from wasabi_workload.ledger import LedgerClient
from wasabi_workload.models import WorkloadDescriptor

log = logging.getLogger("wasabi_workload.agents.vault")

NOT_YET = "tecNO_PERMISSION"
REDEEM_ATTEMPTS = 5
CLOSE_GRACE = 4.0  # ledger close times lag wall clock


def ripple_now() -> int:
    return datetime_to_ripple_time(datetime.now(timezone.utc))


class VaultAgent(Agent):
    async def deposit(self) -> tuple[int | None, int]:
        p = self.workload.params
        finish_after = ripple_now() + p.vault_term
        create = EscrowCreate(
            account=self.address,
            destination=self.address,
            amount=str(p.vault_deposit),
            finish_after=finish_after,
        )
        receipt = await self.submit_and_wait(create)
        self.owner_objects += 1
        return receipt.sequence, finish_after

    async def redeem(self, offer_sequence: int | None, finish_after: int) -> None:
        for attempt in range(1, REDEEM_ATTEMPTS + 1):
            await self.sleep(max(0, finish_after - ripple_now()) + CLOSE_GRACE)
            finish = EscrowFinish(account=self.address, owner=self.address, offer_sequence=offer_sequence)
            tx_hash = await self.client.submit(finish, self.wallet)
            receipt = await self.client.await_receipt(tx_hash)
            if receipt.status:
                self.owner_objects -= 1
                return
            if receipt.result != NOT_YET:
                raise BatchExecutionError(f"{self}: escrow finish {tx_hash} failed: {receipt.result}")
            log.debug("%s escrow %s not finishable yet (attempt %s)", self, offer_sequence, attempt)
        raise BatchExecutionError(f"{self}: escrow {offer_sequence} still locked after {REDEEM_ATTEMPTS} attempts")

    async def act(self) -> None:
        for _ in range(self.workload.transfers_per_agent):
            offer_sequence, finish_after = await self.deposit()
            await self.redeem(offer_sequence, finish_after)


@register_executor(WorkloadKind.ELEMENT_VAULT)
class VaultAgentManager(AgentManager):
    agent_cls = VaultAgent

    @classmethod
    async def estimate_funding(cls, client: LedgerClient, workload: WorkloadDescriptor) -> int:
        base, inc = await client.reserves()
        p = workload.params
        return base + inc + p.vault_deposit + p.vault_fee_allowance

    @classmethod
    async def batch_overhead(cls, client: LedgerClient, workload: WorkloadDescriptor) -> int:
        base, _ = await client.reserves()
        fee = await client.fee()
        return max(workload.params.manual_payment_amount, base) + fee

    async def setup(self) -> None:
        await self.manual_payment()

    async def manual_payment(self) -> None:
        base, _ = await self.client.reserves()
        amount = max(self.workload.params.manual_payment_amount, base)
        recipient = await self.client.create_account()
        tx_hash = await self.client.transfer(amount, self.process_account, recipient.address)
        receipt = await self.client.await_receipt(tx_hash)
        if not receipt.status:
            raise BatchExecutionError(f"manual payment {tx_hash} failed: {receipt.result}")
        log.info("Manual payment of %s drops to %s", amount, recipient.address)
