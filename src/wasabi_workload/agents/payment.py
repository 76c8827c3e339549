import logging

import wasabi_workload.constants as C
from wasabi_workload.agents.base import Agent, AgentManager, register_executor
from wasabi_workload.constants import WorkloadKind
from wasabi_workload.ledger import LedgerClient
from wasabi_workload.models import WorkloadDescriptor

log = logging.getLogger("wasabi_workload.agents.payment")


async def per_transfer_cost(client: LedgerClient, asset_id: int, transfers: int, amount: int) -> int:
    """Drops one payment agent needs for `transfers` payments of `amount` in `asset_id`.

    Native payments need the value itself. Issued-asset payments only cost fees plus the
    owner reserve for the trust line; the process account issues the tokens.
    """
    base, inc = await client.reserves()
    fee = await client.fee()
    if asset_id == C.NATIVE_ASSET:
        return base + transfers * (amount + fee) + fee
    # TrustSet, the issuance payment is paid by the process account, one return payment
    return base + inc + (transfers + 2) * fee


class PaymentAgent(Agent):
    async def act(self) -> None:
        p = self.workload.params
        asset = self.workload.asset_ids[0]
        transfers = self.workload.transfers_per_agent
        issuer = None

        if asset != C.NATIVE_ASSET:
            issuer = self.funder.address
            await self.trust(self.client.currency(asset), p.payment_amount * transfers)
            await self.pay(p.payment_amount * transfers, self.funder, self.address, asset_id=asset, issuer=issuer)

        for n in range(transfers):
            await self.pay(p.payment_amount, self.wallet, self.funder.address, asset_id=asset, issuer=issuer)
            log.debug("%s payment %s/%s", self, n + 1, transfers)


@register_executor(WorkloadKind.PAYMENT)
class PaymentAgentManager(AgentManager):
    agent_cls = PaymentAgent

    @classmethod
    async def estimate_funding(cls, client: LedgerClient, workload: WorkloadDescriptor) -> int:
        return await per_transfer_cost(
            client, workload.asset_ids[0], workload.transfers_per_agent, workload.params.payment_amount
        )
