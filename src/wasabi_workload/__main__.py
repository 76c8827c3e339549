import argparse
import asyncio
import logging
import signal
import sys

from pydantic import ValidationError

from wasabi_workload.config import settings as get_settings
from wasabi_workload.constants import WorkloadKind
from wasabi_workload.errors import BatchExecutionError, LedgerError
from wasabi_workload.logging_config import setup_logging
from wasabi_workload.runner import run

log = logging.getLogger("wasabi_workload.cli")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="wasabi", description="Fund a process account and run workload agents against rippled.")
    parser.add_argument("-k", "--kind",
                        help=f"Agent type: {', '.join(k.value for k in WorkloadKind)}.",
                        )
    parser.add_argument("-a", "--agents",
                        type=int,
                        help="Number of agents per run.",
                        )
    parser.add_argument("-t", "--transfers",
                        type=int,
                        help="Transactions per agent.",
                        )
    parser.add_argument("-c", "--concurrency",
                        type=int,
                        help="Agents running at once.",
                        )
    parser.add_argument("--assets",
                        type=int,
                        nargs="+",
                        help="Asset ids (0 is XRP).",
                        )
    parser.add_argument("-l", "--loops",
                        type=int,
                        help="Number of runs. Runs until interrupted when omitted.",
                        )
    parser.add_argument("--funding-seed",
                        help="Seed of the funding account. Defaults to $WASABI_FUNDING_SEED or the genesis account.",
                        )
    parser.add_argument("--rpc-url",
                        help="rippled JSON-RPC endpoint.",
                        )
    parser.add_argument("--ws-url",
                        help="rippled WebSocket endpoint.",
                        )
    parser.add_argument("--confirmations",
                        type=int,
                        help="Validated ledgers to wait for before a transaction counts as final.",
                        )
    return parser.parse_args(argv)

def overrides(a) -> dict:
    return {
        "kind": a.kind,
        "agents": a.agents,
        "transfers": a.transfers,
        "concurrency": a.concurrency,
        "assets": a.assets,
        "loops": a.loops,
        "funding_seed": a.funding_seed,
        "rpc_url": a.rpc_url,
        "ws_url": a.ws_url,
        "confirmations": a.confirmations,
    }

async def _main(s) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_stop(signame: str) -> None:
        if stop.is_set():
            return
        log.warning("%s received; finishing the current run, then refunding.", signame)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, request_stop, sig.name)

    return await run(s, stop=stop)

def main(argv=None):
    args = parse_args(argv)
    try:
        s = get_settings(**overrides(args))
    except ValidationError as e:
        sys.exit(f"invalid arguments:\n{e}")

    setup_logging()
    try:
        completed = asyncio.run(_main(s))
    except (BatchExecutionError, LedgerError) as e:
        log.error("wasabi failed: %s", e)
        sys.exit(1)
    log.info("wasabi finished %s run(s).", completed)

if __name__ == "__main__":
    main()
