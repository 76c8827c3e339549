from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class FeeInfo:
    """Fee levels in drops from the rippled `fee` command. They move with every ledger; don't cache."""

    base_fee: int
    minimum_fee: int
    open_ledger_fee: int

    @classmethod
    def from_fee_result(cls, result: dict) -> "FeeInfo":
        drops = result["drops"]
        return cls(
            base_fee=int(drops["base_fee"]),
            minimum_fee=int(drops["minimum_fee"]),
            open_ledger_fee=int(drops["open_ledger_fee"]),
        )

    @property
    def queue_full(self) -> bool:
        """Queued transactions are paying above the base fee."""
        return self.minimum_fee > self.base_fee
