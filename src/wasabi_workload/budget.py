"""How much the process account needs before a batch runs.

raw = (base transfer cost + per-agent cost) x agents + batch overhead

The base transfer cost covers the payment that funds one agent (MAX_FEE_DROPS by default).
We expect most, but not all, of an agent's funds back, so we assume about 5% is lost per
loop and pad the top-up by 5% per planned loop. That way one top-up usually covers the
whole run, and we only re-fund when the balance drops below the raw requirement.
"""
import logging
from collections.abc import Sequence

import wasabi_workload.constants as C
from wasabi_workload.agents import executor_for
from wasabi_workload.config import AgentSettings, agent_defaults
from wasabi_workload.constants import WorkloadKind
from wasabi_workload.ledger import LedgerClient
from wasabi_workload.models import FundingSpec, WorkloadDescriptor

log = logging.getLogger("wasabi_workload.budget")


def pad(value: int, loops: int | None, *, buffer_percent_per_loop: int = C.BUFFER_PERCENT_PER_LOOP,
        default_buffer_loops: int = C.DEFAULT_BUFFER_LOOPS) -> FundingSpec:
    buffer_loops = default_buffer_loops if loops is None else loops
    buffer_percent = buffer_percent_per_loop * buffer_loops
    return FundingSpec(threshold=value, top_up=value * (100 + buffer_percent) // 100)


async def estimate_workload(
    client: LedgerClient,
    workload: WorkloadDescriptor,
    loops: int | None = None,
    *,
    base_transfer_cost: int = C.BASE_TRANSFER_COST,
    buffer_percent_per_loop: int = C.BUFFER_PERCENT_PER_LOOP,
    default_buffer_loops: int = C.DEFAULT_BUFFER_LOOPS,
) -> FundingSpec:
    executor = executor_for(workload.kind)
    per_agent = await executor.estimate_funding(client, workload)
    overhead = await executor.batch_overhead(client, workload)
    value = (base_transfer_cost + per_agent) * workload.agent_count + overhead

    spec = pad(value, loops, buffer_percent_per_loop=buffer_percent_per_loop, default_buffer_loops=default_buffer_loops)
    log.debug(
        "%s x%s: per agent %s, overhead %s -> threshold %s, top-up %s",
        workload.kind.value, workload.agent_count, per_agent, overhead, spec.threshold, spec.top_up,
    )
    return spec


async def estimate(
    client: LedgerClient,
    kind: WorkloadKind | str,
    agent_count: int,
    transfers_per_agent: int,
    asset_ids: Sequence[int],
    loops: int | None = None,
    *,
    params: AgentSettings | None = None,
    **budget,
) -> FundingSpec:
    """Funding needed for one batch of `agent_count` agents of `kind`.

    Raises UnsupportedWorkloadKind before touching the ledger if `kind` is unknown.
    """
    kind = WorkloadKind.parse(kind)
    executor_for(kind)
    workload = WorkloadDescriptor(
        kind=kind,
        agent_count=agent_count,
        transfers_per_agent=transfers_per_agent,
        asset_ids=tuple(asset_ids),
        params=params or agent_defaults(),
    )
    return await estimate_workload(client, workload, loops, **budget)
