import pytest

from conftest import FEE, RESERVES, FakeLedger
from wasabi_workload.constants import REFUND_RESERVE
from wasabi_workload.errors import LedgerSubmitError
from wasabi_workload.refund import refund


@pytest.fixture
def bare_ledger(funder) -> FakeLedger:
    """A ledger with no account reserve and free transactions."""
    return FakeLedger({funder.address: 10**16}, fee=0, reserves=(0, 0))


@pytest.mark.asyncio
async def test_refund_sends_everything_above_reserve(bare_ledger, funder, process_account):
    bare_ledger.balances[(0, process_account.address)] = 1_000

    sent = await refund(bare_ledger, process_account, funder.address, reserve=420)

    assert sent == 580
    assert bare_ledger.transfers == [(580, process_account.address, funder.address, 0)]
    assert bare_ledger.balance(process_account.address) == 420


@pytest.mark.asyncio
@pytest.mark.parametrize("balance", [0, 300, 420])
async def test_nothing_to_refund_within_reserve(bare_ledger, funder, process_account, balance):
    bare_ledger.balances[(0, process_account.address)] = balance

    assert await refund(bare_ledger, process_account, funder.address, reserve=420) == 0
    assert bare_ledger.transfers == []


@pytest.mark.asyncio
async def test_account_reserve_and_fee_are_kept(ledger, funder, process_account):
    base, _ = RESERVES
    ledger.balances[(0, process_account.address)] = 3_000_000

    sent = await refund(ledger, process_account, funder.address, reserve=420)

    assert sent == 3_000_000 - base - FEE - 420
    assert ledger.balance(process_account.address) == base + FEE + 420


@pytest.mark.asyncio
async def test_default_reserve(ledger, funder, process_account):
    base, _ = RESERVES
    ledger.balances[(0, process_account.address)] = base + FEE + REFUND_RESERVE + 7

    assert await refund(ledger, process_account, funder.address) == 7


@pytest.mark.asyncio
async def test_failed_refund_is_not_raised_or_retried(bare_ledger, funder, process_account):
    bare_ledger.balances[(0, process_account.address)] = 1_000
    bare_ledger.fail_receipts = 1

    assert await refund(bare_ledger, process_account, funder.address, reserve=0) == 0
    assert len(bare_ledger.transfers) == 1


@pytest.mark.asyncio
async def test_refund_survives_ledger_errors(bare_ledger, funder, process_account):
    bare_ledger.balances[(0, process_account.address)] = 1_000
    bare_ledger.transfer_error = LedgerSubmitError("tefPAST_SEQ")

    assert await refund(bare_ledger, process_account, funder.address, reserve=0) == 0


@pytest.mark.asyncio
async def test_refund_survives_balance_read_failure(bare_ledger, funder, process_account):
    bare_ledger.balance_errors = 1

    assert await refund(bare_ledger, process_account, funder.address, reserve=0) == 0
    assert bare_ledger.transfers == []
