"""Shared fixtures: an in-memory ledger and a recording sleep."""
import itertools
from collections import defaultdict

import pytest
from xrpl.wallet import Wallet

from wasabi_workload.errors import LedgerRequestError
from wasabi_workload.ledger import Receipt

FEE = 10
RESERVES = (1_000_000, 200_000)


class FakeLedger:
    """Balances in a dict, every submission validated immediately.

    Failure injection:
      fail_receipts   next N transfers get a failed receipt and move nothing
      balance_errors  next N balance reads raise LedgerRequestError
      transfer_error  raised by every transfer while set
      submit_results  results for the next submissions, in order; anything but tesSUCCESS fails
    """

    def __init__(self, balances: dict[str, int] | None = None, *, fee: int = FEE, reserves=RESERVES) -> None:
        self.balances: dict[tuple[int, str], int] = defaultdict(int)
        for address, amount in (balances or {}).items():
            self.balances[(0, address)] = amount
        self._fee = fee
        self._reserves = reserves
        self._hashes = itertools.count(1)
        self.receipts: dict[str, Receipt] = {}
        self.transfers: list[tuple[int, str, str, int]] = []
        self.submitted: list = []
        self.events: list[str] = []
        self.fail_receipts = 0
        self.balance_errors = 0
        self.transfer_error: Exception | None = None
        self.submit_results: list[str] = []
        self.closed = False

    def balance(self, address: str, asset_id: int = 0) -> int:
        return self.balances[(asset_id, address)]

    def _receipt(self, status: bool = True, result: str = "tesSUCCESS") -> str:
        n = next(self._hashes)
        tx_hash = f"{n:064X}"
        self.receipts[tx_hash] = Receipt(tx_hash=tx_hash, status=status, result=result, ledger_index=100 + n, sequence=n)
        return tx_hash

    async def get_balance(self, asset_id: int, address: str, *, issuer: str | None = None) -> int:
        if self.balance_errors:
            self.balance_errors -= 1
            raise LedgerRequestError("account_info failed: timeout")
        return self.balances[(asset_id, address)]

    async def transfer(self, amount, sender, destination, *, asset_id=0, issuer=None) -> str:
        if self.transfer_error is not None:
            raise self.transfer_error
        self.transfers.append((amount, sender.address, destination, asset_id))
        self.events.append(f"transfer:{sender.address}->{destination}")
        if self.fail_receipts:
            self.fail_receipts -= 1
            return self._receipt(False, "tecUNFUNDED_PAYMENT")
        # Issued assets are minted by their issuer.
        if not (asset_id and sender.address == issuer):
            self.balances[(asset_id, sender.address)] -= amount
        self.balances[(asset_id, destination)] += amount
        return self._receipt()

    async def submit(self, transaction, wallet) -> str:
        self.submitted.append(transaction)
        self.events.append(f"submit:{transaction.transaction_type.value}")
        if self.submit_results:
            result = self.submit_results.pop(0)
            return self._receipt(result == "tesSUCCESS", result)
        return self._receipt()

    async def await_receipt(self, tx_hash: str) -> Receipt:
        return self.receipts[tx_hash]

    async def create_account(self, secret: str | None = None) -> Wallet:
        if secret:
            return Wallet.from_seed(secret)
        return Wallet.create()

    async def fee(self) -> int:
        return self._fee

    async def reserves(self) -> tuple[int, int]:
        return self._reserves

    def currency(self, asset_id: int) -> str | None:
        return None if asset_id == 0 else ["USD", "EUR", "BTC", "ETH"][asset_id - 1]

    async def close(self) -> None:
        self.closed = True


class Sleeper:
    """Stands in for asyncio.sleep; records delays and runs `on_sleep` each time."""

    def __init__(self, on_sleep=None) -> None:
        self.calls: list[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        if self.on_sleep is not None:
            self.on_sleep()


@pytest.fixture
def funder() -> Wallet:
    return Wallet.create()


@pytest.fixture
def process_account() -> Wallet:
    return Wallet.create()


@pytest.fixture
def ledger(funder) -> FakeLedger:
    return FakeLedger({funder.address: 10**16})


@pytest.fixture
def sleeper() -> Sleeper:
    return Sleeper()
