"""Exceptions raised by the harness.

Funding failures are retried by the guard and refund failures are logged by the
refunder. Batch failures and ledger errors during startup reach the caller of
`runner.run`.
"""


class WasabiError(Exception):
    """Base class for harness errors."""


class UnsupportedWorkloadKind(WasabiError, ValueError):
    def __init__(self, kind: object) -> None:
        self.kind = kind
        super().__init__(f"Unknown agent type: {kind!r}")


class LedgerError(WasabiError):
    """A ledger client call failed (RPC error, transport failure, rejected submission)."""


class LedgerRequestError(LedgerError):
    pass


class LedgerSubmitError(LedgerError):
    def __init__(self, engine_result: str, message: str | None = None) -> None:
        self.engine_result = engine_result
        super().__init__(message or f"submission rejected: {engine_result}")


class TransientFundingError(WasabiError):
    """A top-up transfer was submitted but its receipt reports failure."""


class BatchExecutionError(WasabiError):
    """One or more agents in a workload batch failed."""


class RefundTransferError(WasabiError):
    """The shutdown refund transfer could not be completed."""


class RunCancelled(WasabiError):
    """Stop was requested while the run was waiting to retry."""
