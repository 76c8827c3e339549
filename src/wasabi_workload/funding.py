import asyncio
import logging
from collections.abc import Awaitable, Callable

from xrpl.wallet import Wallet

import wasabi_workload.constants as C
from wasabi_workload.constants import FundingState
from wasabi_workload.errors import LedgerError, RunCancelled, TransientFundingError
from wasabi_workload.ledger import LedgerClient
from wasabi_workload.models import FundingSpec

log = logging.getLogger("wasabi_workload.funding")

Sleep = Callable[[float], Awaitable[None]]


class FundingGuard:
    """Keeps the process account at or above a funding threshold.

    Several processes may be funding their own accounts from the same source at once,
    so a top-up can fail on a sequence race. Failures are retried after a fixed backoff,
    and the balance is always re-read before another attempt: a transfer we saw fail,
    or someone else's top-up, may already have done the job. Once the process account is
    funded its own transactions no longer contend with other processes.

    There is no attempt limit. The loop ends when the threshold is met, or when `stop`
    is set while backing off.
    """

    def __init__(
        self,
        client: LedgerClient,
        source: Wallet,
        *,
        backoff: float = C.FUNDING_BACKOFF,
        sleep: Sleep = asyncio.sleep,
        stop: asyncio.Event | None = None,
        asset_id: int = C.NATIVE_ASSET,
    ) -> None:
        self.client = client
        self.source = source
        self.backoff = backoff
        self.sleep = sleep
        self.stop = stop
        self.asset_id = asset_id
        self.state = FundingState.SATISFIED
        self.attempts = 0

    def _stopping(self) -> bool:
        return self.stop is not None and self.stop.is_set()

    async def _top_up(self, account: Wallet, amount: int) -> None:
        log.info("funding process address %s with %s drops...", account.address, amount)
        tx_hash = await self.client.transfer(amount, self.source, account.address, asset_id=self.asset_id)
        receipt = await self.client.await_receipt(tx_hash)
        if not receipt.status:
            raise TransientFundingError(f"receipt status is false ({receipt.result}) for {tx_hash}")

    async def ensure_funded(self, account: Wallet, spec: FundingSpec) -> None:
        self.attempts = 0
        self.state = FundingState.POLLING

        while self.state is not FundingState.SATISFIED:
            if self.state is FundingState.POLLING:
                try:
                    balance = await self.client.get_balance(self.asset_id, account.address)
                except (LedgerError, TimeoutError) as e:
                    log.warning("failed to read balance of %s, will retry: %s", account.address, e)
                    self.state = FundingState.BACKOFF
                    continue
                if balance >= spec.threshold:
                    self.state = FundingState.SATISFIED
                else:
                    log.debug("balance %s below threshold %s", balance, spec.threshold)
                    self.state = FundingState.ATTEMPTING

            elif self.state is FundingState.ATTEMPTING:
                self.attempts += 1
                try:
                    await self._top_up(account, spec.top_up)
                except (LedgerError, TransientFundingError, TimeoutError) as e:
                    log.warning("failed to fund process address, will retry: %s", e)
                    self.state = FundingState.BACKOFF
                else:
                    self.state = FundingState.SATISFIED

            elif self.state is FundingState.BACKOFF:
                if self._stopping():
                    raise RunCancelled(f"stopped while funding {account.address}")
                await self.sleep(self.backoff)
                if self._stopping():
                    raise RunCancelled(f"stopped while funding {account.address}")
                self.state = FundingState.POLLING

        log.debug("process address %s funded after %s attempt(s)", account.address, self.attempts)
