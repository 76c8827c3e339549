from wasabi_workload.agents.base import (
    REGISTRY,
    Agent,
    AgentBatchExecutor,
    AgentManager,
    executor_for,
    register_executor,
)
from wasabi_workload.agents.payment import PaymentAgentManager
from wasabi_workload.agents.swap import SwapAgentManager
from wasabi_workload.agents.vault import VaultAgentManager

__all__ = [
    "REGISTRY",
    "Agent",
    "AgentBatchExecutor",
    "AgentManager",
    "PaymentAgentManager",
    "SwapAgentManager",
    "VaultAgentManager",
    "executor_for",
    "register_executor",
]
