"""DEX swap workload.

The process account places one standing offer selling its own IOU for XRP. Every agent
opens a trust line and sends immediate-or-cancel offers that cross it.
"""
import logging

from xrpl.models.amounts import IssuedCurrencyAmount
from xrpl.models.transactions import OfferCancel, OfferCreate, OfferCreateFlag

from wasabi_workload.agents.base import Agent, AgentManager, register_executor
from wasabi_workload.constants import WorkloadKind
from wasabi_workload.errors import BatchExecutionError, LedgerError
from wasabi_workload.ledger import LedgerClient
from wasabi_workload.models import WorkloadDescriptor

log = logging.getLogger("wasabi_workload.agents.swap")

UNFILLED = "tecKILLED"


class SwapAgent(Agent):
    async def act(self) -> None:
        p = self.workload.params
        transfers = self.workload.transfers_per_agent
        await self.trust(p.swap_currency, transfers)

        filled = 0
        for _ in range(transfers):
            offer = OfferCreate(
                account=self.address,
                taker_gets=str(p.swap_amount),
                taker_pays=IssuedCurrencyAmount(currency=p.swap_currency, issuer=self.funder.address, value="1"),
                flags=OfferCreateFlag.TF_IMMEDIATE_OR_CANCEL,
            )
            tx_hash = await self.client.submit(offer, self.wallet)
            receipt = await self.client.await_receipt(tx_hash)
            if receipt.status:
                filled += 1
            elif receipt.result != UNFILLED:
                raise BatchExecutionError(f"{self}: swap {tx_hash} failed: {receipt.result}")
        log.debug("%s filled %s/%s swaps", self, filled, transfers)


@register_executor(WorkloadKind.UNISWAP_SWAP)
class SwapAgentManager(AgentManager):
    agent_cls = SwapAgent

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.offer_sequence: int | None = None

    @classmethod
    async def estimate_funding(cls, client: LedgerClient, workload: WorkloadDescriptor) -> int:
        base, inc = await client.reserves()
        fee = await client.fee()
        transfers = workload.transfers_per_agent
        # TrustSet + swaps + the return payment
        return base + inc + transfers * (workload.params.swap_amount + fee) + 2 * fee

    async def setup(self) -> None:
        p = self.workload.params
        units = self.workload.agent_count * self.workload.transfers_per_agent
        offer = OfferCreate(
            account=self.process_account.address,
            taker_gets=IssuedCurrencyAmount(currency=p.swap_currency, issuer=self.process_account.address, value=str(units)),
            taker_pays=str(units * p.swap_amount),
        )
        tx_hash = await self.client.submit(offer, self.process_account)
        receipt = await self.client.await_receipt(tx_hash)
        if not receipt.status:
            raise BatchExecutionError(f"liquidity offer {tx_hash} failed: {receipt.result}")
        self.offer_sequence = receipt.sequence
        log.info("Placed %s %s liquidity offer (seq %s)", units, p.swap_currency, self.offer_sequence)

    async def teardown(self) -> None:
        if self.offer_sequence is None:
            return
        try:
            cancel = OfferCancel(account=self.process_account.address, offer_sequence=self.offer_sequence)
            tx_hash = await self.client.submit(cancel, self.process_account)
            await self.client.await_receipt(tx_hash)
        except (LedgerError, TimeoutError) as e:
            log.warning("Could not cancel liquidity offer %s: %s", self.offer_sequence, e)
        self.offer_sequence = None
