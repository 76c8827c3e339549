import logging

from xrpl.wallet import Wallet

import wasabi_workload.constants as C
from wasabi_workload.errors import LedgerError, RefundTransferError
from wasabi_workload.ledger import LedgerClient

log = logging.getLogger("wasabi_workload.refund")


async def refund(client: LedgerClient, account: Wallet, destination: str, reserve: int = C.REFUND_RESERVE) -> int:
    """Send what `account` holds beyond its ledger reserve, the refund fee and `reserve` back to `destination`.

    Best effort: one attempt, failures are logged and never raised. Returns the amount
    refunded, 0 if nothing was sent.
    """
    try:
        base, _ = await client.reserves()
        fee = await client.fee()
        balance = await client.get_balance(C.NATIVE_ASSET, account.address)
        value = balance - base - fee - reserve
        if value <= 0:
            log.info("Nothing to refund from %s (balance %s drops, keeping %s).", account.address, balance, base + fee + reserve)
            return 0

        log.info("refunding funding address %s with %s drops...", destination, value)
        tx_hash = await client.transfer(value, account, destination)
        receipt = await client.await_receipt(tx_hash)
        if not receipt.status:
            raise RefundTransferError(f"refund {tx_hash} failed: {receipt.result}")
    except (LedgerError, RefundTransferError, TimeoutError) as e:
        log.error("Refund from %s to %s failed, not retrying: %s", account.address, destination, e)
        return 0
    return value
