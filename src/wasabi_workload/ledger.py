"""Ledger access for the harness.

The run loop only talks to the ledger through `LedgerClient`. `XrplLedgerClient` is the
rippled implementation: JSON-RPC for requests and submissions, a WebSocket ledger
subscription at startup to make sure the network is closing ledgers.
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import httpx
from xrpl import CryptoAlgorithm, XRPLException
from xrpl.asyncio.clients import AsyncJsonRpcClient, AsyncWebsocketClient
from xrpl.core.binarycodec import encode
from xrpl.core.keypairs import generate_seed
from xrpl.models import StreamParameter, Subscribe, SubmitOnly, Transaction
from xrpl.models.amounts import IssuedCurrencyAmount
from xrpl.models.requests import AccountInfo, AccountLines, Fee, ServerState, Tx
from xrpl.models.transactions import Payment
from xrpl.transaction import sign
from xrpl.wallet import Wallet

import wasabi_workload.constants as C
from wasabi_workload.errors import LedgerError, LedgerRequestError, LedgerSubmitError
from wasabi_workload.fee_info import FeeInfo

log = logging.getLogger("wasabi_workload.ledger")

RECEIPT_POLL = 0.5


@dataclass(frozen=True, slots=True)
class Receipt:
    tx_hash: str
    status: bool
    result: str
    ledger_index: int | None = None
    sequence: int | None = None


class LedgerClient(Protocol):
    async def get_balance(self, asset_id: int, address: str, *, issuer: str | None = None) -> int: ...
    async def transfer(
        self, amount: int, sender: Wallet, destination: str, *, asset_id: int = C.NATIVE_ASSET, issuer: str | None = None
    ) -> str: ...
    async def submit(self, transaction: Transaction, wallet: Wallet) -> str: ...
    async def await_receipt(self, tx_hash: str) -> Receipt: ...
    async def create_account(self, secret: str | None = None) -> Wallet: ...
    async def fee(self) -> int: ...
    async def reserves(self) -> tuple[int, int]: ...
    def currency(self, asset_id: int) -> str | None: ...
    async def close(self) -> None: ...


class AccountSource(Protocol):
    async def funding_account(self, client: LedgerClient) -> Wallet: ...


class SeedAccountSource:
    def __init__(self, seed: str) -> None:
        self.seed = seed

    async def funding_account(self, client: LedgerClient) -> Wallet:
        return await client.create_account(self.seed)


class HostAccountSource:
    """Funding account provided by the host: `$WASABI_FUNDING_SEED`, else the network's genesis seed."""

    def __init__(self, default_seed: str | None = C.GENESIS["seed"], env_var: str = "WASABI_FUNDING_SEED") -> None:
        self.default_seed = default_seed
        self.env_var = env_var

    async def funding_account(self, client: LedgerClient) -> Wallet:
        seed = os.getenv(self.env_var) or self.default_seed
        if not seed:
            raise LedgerError(f"No funding account: set {self.env_var} or pass a funding seed")
        return await client.create_account(seed)


@dataclass
class AccountRecord:
    lock: asyncio.Lock
    next_seq: int | None = None


def update_transaction(transaction: Transaction, **kwargs) -> Transaction:
    payload = transaction.to_xrpl()
    payload.update(kwargs)
    return type(transaction).from_xrpl(payload)


def _accepted(engine_result: str | None) -> bool:
    # tec results are applied (fee and sequence consumed); the receipt reports the failure.
    if not engine_result:
        return False
    return engine_result.startswith(("tes", "tec")) or engine_result == "terQUEUED"


async def probe_rippled(url: str, max_retries: int = 30, retry_delay: float = 2.0) -> None:
    """Probe the rippled RPC endpoint with retries until it responds.

    Args:
        url: RPC endpoint URL
        max_retries: Maximum number of attempts
        retry_delay: Seconds to wait between attempts
    """
    payload = {"method": "server_info", "params": [{}]}

    for attempt in range(1, max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=C.RPC_TIMEOUT + 1) as http:
                r = await http.post(url, json=payload)
                r.raise_for_status()
                log.info("RPC endpoint responding (attempt %s/%s)", attempt, max_retries)
                return
        except httpx.HTTPError as e:
            if attempt < max_retries:
                log.info("RPC not ready yet (attempt %s/%s): %s - retrying in %ss...", attempt, max_retries, e.__class__.__name__, retry_delay)
                await asyncio.sleep(retry_delay)
            else:
                log.error("RPC failed after %s attempts", max_retries)
                raise LedgerRequestError(f"{url} not responding") from e


async def wait_for_ledgers(url: str, count: int) -> None:
    """Connect to the rippled WebSocket and wait for `count` ledgers to close."""
    log.info("Connecting to WebSocket %s to wait for %s ledgers...", url, count)
    async with AsyncWebsocketClient(url) as client:
        await client.send(Subscribe(streams=[StreamParameter.LEDGER]))
        ledger_count = 0
        async for msg in client:
            if msg.get("type") == "ledgerClosed":
                ledger_count += 1
                log.info("Ledger %s closed. (%s/%s)", msg.get("ledger_index"), ledger_count, count)
                if ledger_count >= count:
                    log.info("Observed %s ledgers closed. Network is progressing.", ledger_count)
                    break


class XrplLedgerClient:
    def __init__(
        self,
        rpc_url: str,
        *,
        ws_url: str | None = None,
        currencies: list[str] | tuple[str, ...] = (),
        confirmations: int = 1,
        receipt_timeout: float = C.RECEIPT_TIMEOUT,
        rpc_timeout: float = C.RPC_TIMEOUT,
        client: AsyncJsonRpcClient | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.ws_url = ws_url
        self.client = client or AsyncJsonRpcClient(rpc_url)
        self.currencies = list(currencies)
        self.confirmations = confirmations
        self.receipt_timeout = receipt_timeout
        self.rpc_timeout = rpc_timeout

        self.accounts: dict[str, AccountRecord] = {}
        # tx_hash -> LastLedgerSequence, for expiry detection while waiting on receipts
        self._last_ledger: dict[str, int] = {}
        self._reserves: tuple[int, int] | None = None
        self.closed = False

    async def connect(self, *, probe_retries: int = 30, probe_delay: float = 2.0, ledgers: int = 2, timeout: float = 300) -> None:
        """Wait until rippled answers RPC and, if a WebSocket URL is known, is closing ledgers."""
        async with asyncio.timeout(timeout):
            log.info("Probing RPC endpoint %s...", self.rpc_url)
            await probe_rippled(self.rpc_url, probe_retries, probe_delay)
            if self.ws_url and ledgers:
                await wait_for_ledgers(self.ws_url, ledgers)
        log.info("Ledger client synchronised.")

    async def _rpc(self, req, *, t: float | None = None):
        try:
            return await asyncio.wait_for(self.client.request(req), timeout=t or self.rpc_timeout)
        except (httpx.HTTPError, XRPLException, OSError) as e:
            raise LedgerRequestError(f"{req.method} failed: {e.__class__.__name__}: {e}") from e

    def _record_for(self, addr: str) -> AccountRecord:
        rec = self.accounts.get(addr)
        if rec is None:
            rec = AccountRecord(lock=asyncio.Lock(), next_seq=None)
            self.accounts[addr] = rec
        return rec

    def currency(self, asset_id: int) -> str | None:
        """Currency code for an asset id; None for the native asset."""
        if asset_id == C.NATIVE_ASSET:
            return None
        if not 0 < asset_id <= len(self.currencies):
            raise LedgerError(f"Unknown asset id {asset_id}")
        return self.currencies[asset_id - 1]

    def asset_amount(self, amount: int, asset_id: int = C.NATIVE_ASSET, issuer: str | None = None) -> str | IssuedCurrencyAmount:
        currency = self.currency(asset_id)
        if currency is None:
            return str(amount)
        if issuer is None:
            raise ValueError(f"asset {asset_id} ({currency}) needs an issuer")
        return IssuedCurrencyAmount(currency=currency, issuer=issuer, value=str(amount))

    async def get_balance(self, asset_id: int, address: str, *, issuer: str | None = None) -> int:
        currency = self.currency(asset_id)
        if currency is None:
            r = await self._rpc(AccountInfo(account=address, ledger_index="validated"))
        else:
            r = await self._rpc(AccountLines(account=address, ledger_index="validated"))

        if not r.is_successful():
            if r.result.get("error") == "actNotFound":
                return 0
            raise LedgerRequestError(f"balance query for {address} failed: {r.result.get('error')}")

        if currency is None:
            return int(r.result["account_data"]["Balance"])

        total = Decimal(0)
        for line in r.result.get("lines", []):
            if line["currency"] == currency and (issuer is None or line["account"] == issuer):
                total += Decimal(line["balance"])
        return int(total)

    async def _latest_validated_ledger(self) -> int:
        ss = await self._rpc(ServerState())
        return int(ss.result["state"]["validated_ledger"]["seq"])

    async def _account_sequence(self, addr: str) -> int:
        ai = await self._rpc(AccountInfo(account=addr, ledger_index="current", strict=True))
        if not ai.is_successful():
            raise LedgerRequestError(f"account_info {addr} failed: {ai.result.get('error')}")
        return int(ai.result["account_data"]["Sequence"])

    async def get_fee_info(self) -> FeeInfo:
        r = await self._rpc(Fee())
        return FeeInfo.from_fee_result(r.result)

    async def fee(self) -> int:
        """Fee in drops to get a transaction into the queue; refuses to pay past MAX_FEE_DROPS."""
        fee_info = await self.get_fee_info()
        fee = fee_info.minimum_fee
        if fee_info.queue_full:
            log.warning(
                "Queue fees escalated: minimum=%s open_ledger=%s base=%s",
                fee_info.minimum_fee, fee_info.open_ledger_fee, fee_info.base_fee,
            )
        if fee > C.MAX_FEE_DROPS:
            raise LedgerError(f"Fee too high ({fee} drops > {C.MAX_FEE_DROPS} max) - queue is full")
        return fee

    async def reserves(self) -> tuple[int, int]:
        """(base reserve, owner reserve increment) in drops."""
        if self._reserves is None:
            ss = await self._rpc(ServerState())
            vl = ss.result["state"]["validated_ledger"]
            self._reserves = int(vl["reserve_base"]), int(vl["reserve_inc"])
        return self._reserves

    async def create_account(self, secret: str | None = None) -> Wallet:
        if secret:
            algorithm = CryptoAlgorithm.ED25519 if secret.startswith("sEd") else CryptoAlgorithm.SECP256K1
            return Wallet.from_seed(secret, algorithm=algorithm)
        seed = generate_seed(algorithm=CryptoAlgorithm.SECP256K1)
        return Wallet.from_seed(seed, algorithm=CryptoAlgorithm.SECP256K1)

    async def submit(self, transaction: Transaction, wallet: Wallet) -> str:
        """Sign with the account's next sequence and submit; returns the transaction hash.

        Submissions from one account are serialised. A rejected submission forgets the
        cached sequence so the next one re-reads it from the ledger, which is how another
        process spending from the same account is recovered from.
        """
        rec = self._record_for(wallet.address)
        async with rec.lock:
            if rec.next_seq is None:
                rec.next_seq = await self._account_sequence(wallet.address)
            fee = await self.fee()
            last_ledger = await self._latest_validated_ledger() + C.HORIZON
            txn = update_transaction(
                transaction, Sequence=rec.next_seq, Fee=str(fee), LastLedgerSequence=last_ledger
            )
            signed = sign(txn, wallet)
            try:
                r = await self._rpc(SubmitOnly(tx_blob=encode(signed.to_xrpl())))
            except LedgerError:
                rec.next_seq = None
                raise

            engine_result = r.result.get("engine_result")
            if not r.is_successful() or not _accepted(engine_result):
                rec.next_seq = None
                raise LedgerSubmitError(
                    engine_result or r.result.get("error", "unknown"),
                    f"{txn.transaction_type.value} from {wallet.address} rejected: "
                    f"{engine_result or r.result.get('error')} {r.result.get('engine_result_message', '')}".rstrip(),
                )
            rec.next_seq += 1

        tx_hash = signed.get_hash()
        self._last_ledger[tx_hash] = last_ledger
        log.debug("Submitted %s %s seq=%s -> %s", txn.transaction_type.value, tx_hash, txn.sequence, engine_result)
        return tx_hash

    async def transfer(
        self, amount: int, sender: Wallet, destination: str, *, asset_id: int = C.NATIVE_ASSET, issuer: str | None = None
    ) -> str:
        if amount <= 0:
            raise ValueError(f"transfer amount must be positive, got {amount}")
        payment = Payment(
            account=sender.address,
            destination=destination,
            amount=self.asset_amount(amount, asset_id, issuer),
        )
        return await self.submit(payment, sender)

    async def await_receipt(self, tx_hash: str) -> Receipt:
        """Block until the transaction is validated (plus confirmations) or has expired.

        Raises TimeoutError if neither happens within `receipt_timeout`.
        """
        last_ledger = self._last_ledger.get(tx_hash)
        async with asyncio.timeout(self.receipt_timeout):
            while True:
                r = await self._rpc(Tx(transaction=tx_hash))
                result = r.result
                if r.is_successful() and result.get("validated"):
                    break
                if last_ledger is not None and await self._latest_validated_ledger() > last_ledger:
                    self._last_ledger.pop(tx_hash, None)
                    log.warning("tx %s expired (LastLedgerSequence %s passed)", tx_hash, last_ledger)
                    return Receipt(tx_hash=tx_hash, status=False, result=C.EXPIRED)
                await asyncio.sleep(RECEIPT_POLL)

            ledger_index = int(result["ledger_index"])
            while await self._latest_validated_ledger() < ledger_index + self.confirmations - 1:
                await asyncio.sleep(RECEIPT_POLL)

        self._last_ledger.pop(tx_hash, None)
        meta_result = result["meta"]["TransactionResult"]
        tx_json = result.get("tx_json", result)
        return Receipt(
            tx_hash=tx_hash,
            status=meta_result == "tesSUCCESS",
            result=meta_result,
            ledger_index=ledger_index,
            sequence=tx_json.get("Sequence"),
        )

    async def close(self) -> None:
        self.accounts.clear()
        self._last_ledger.clear()
        self.closed = True
        log.debug("Ledger client closed.")
