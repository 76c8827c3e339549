import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import AnyUrl, BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt, field_validator, model_validator

from wasabi_workload.constants import GENESIS, WorkloadKind

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"

cfg = tomllib.loads(config_file.read_text())
fw = cfg.setdefault("funding_account", {})
cfg["funding_account"]["address"] = fw.get("address", GENESIS["address"])
cfg["funding_account"]["seed"] = fw.get("seed", GENESIS["seed"])

if Path("/.dockerenv").is_file():
    rippled = cfg["rippled"]["docker"]
else:
    rippled = cfg["rippled"]["local"]

rippled_ip = os.getenv("RIPPLED_IP", rippled)
RPC = os.getenv("RPC_URL", f"http://{rippled_ip}:{cfg['rippled']['rpc_port']}")
WS = os.getenv("WS_URL", f"ws://{rippled_ip}:{cfg['rippled']['ws_port']}")


class BudgetSettings(BaseModel):
    base_transfer_cost: PositiveInt
    buffer_percent_per_loop: NonNegativeInt
    default_buffer_loops: NonNegativeInt
    funding_backoff: float = Field(ge=0)
    refund_reserve: NonNegativeInt


class AgentSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    payment_amount: PositiveInt
    swap_currency: str
    swap_amount: PositiveInt
    vault_deposit: PositiveInt
    vault_term: NonNegativeInt
    vault_fee_allowance: NonNegativeInt
    manual_payment_amount: PositiveInt


def agent_defaults() -> AgentSettings:
    return AgentSettings.model_validate(cfg["agents"])


class Settings(BaseModel):
    """Validated process parameters: config.toml, then environment, then CLI."""

    kind: WorkloadKind
    agents: PositiveInt
    transfers: PositiveInt
    concurrency: PositiveInt
    assets: list[NonNegativeInt] = Field(min_length=1)
    rpc_url: AnyUrl
    ws_url: AnyUrl
    confirmations: PositiveInt
    loops: NonNegativeInt | None = None
    funding_seed: str | None = None
    currencies: list[str]
    startup_timeout: float = Field(gt=0)
    probe_retries: PositiveInt
    probe_delay: float = Field(ge=0)
    initial_ledgers: NonNegativeInt
    receipt_timeout: float = Field(gt=0)
    budget: BudgetSettings
    agent: AgentSettings

    @field_validator("kind", mode="before")
    @classmethod
    def _parse_kind(cls, v: Any) -> WorkloadKind:
        return WorkloadKind.parse(v)

    @model_validator(mode="after")
    def _check_assets(self) -> "Settings":
        unknown = [a for a in self.assets if a > len(self.currencies)]
        if unknown:
            raise ValueError(f"asset ids {unknown} have no configured currency (known: 0..{len(self.currencies)})")
        return self


def _defaults() -> dict[str, Any]:
    run = cfg["run"]
    to = cfg["timeout"]
    return {
        "kind": run["kind"],
        "agents": run["agents"],
        "transfers": run["transfers"],
        "concurrency": run["concurrency"],
        "assets": run["assets"],
        "confirmations": run["confirmations"],
        "rpc_url": RPC,
        "ws_url": WS,
        "currencies": cfg["assets"]["codes"],
        "startup_timeout": to["startup"],
        "probe_retries": to["probe_retries"],
        "probe_delay": to["probe_delay"],
        "initial_ledgers": to["initial_ledgers"],
        "receipt_timeout": to["receipt"],
        "budget": dict(cfg["budget"]),
        "agent": dict(cfg["agents"]),
    }


def settings(**overrides: Any) -> Settings:
    """Build Settings from the packaged defaults; overrides that are None are ignored."""
    data = _defaults()
    for k, v in overrides.items():
        if v is None:
            continue
        if isinstance(v, dict) and isinstance(data.get(k), dict):
            data[k] = {**data[k], **v}
        else:
            data[k] = v
    return Settings.model_validate(data)
