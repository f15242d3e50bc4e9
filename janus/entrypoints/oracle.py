"""Oracle entrypoint.

Serves the JSON-RPC gateway over a filesystem-backed audit ledger and the
EZKL command-line prover until SIGINT/SIGTERM.
"""

import asyncio
import signal
from datetime import timedelta
from pathlib import Path

import bittensor as bt

from janus.config import OracleConfig, load_config
from janus.gateway.http_server import JanusRPCServer
from janus.ledger import AuditLedger, FilesystemLedgerStore
from janus.oracle.orchestrator import VerificationOrchestrator
from janus.prover.artifacts import ArtifactStore
from janus.prover.ezkl import EzklStageRunner


async def _prune_loop(ledger: AuditLedger, config: OracleConfig, stop: asyncio.Event) -> None:
    retention = timedelta(days=config.retention_days)
    while not stop.is_set():
        try:
            await ledger.prune(retention)
        except OSError as e:
            bt.logging.warning({"oracle": {"event": "prune_failed", "error": str(e)}})
        try:
            await asyncio.wait_for(stop.wait(), timeout=config.prune_interval)
        except asyncio.TimeoutError:
            pass


async def serve(config: OracleConfig, stop: asyncio.Event) -> None:
    """Run the oracle until ``stop`` is set."""
    ledger = AuditLedger(FilesystemLedgerStore(config.data_dir))
    await ledger.open()

    orchestrator = VerificationOrchestrator(
        runner=EzklStageRunner(
            ezkl_bin=config.ezkl_bin,
            conf_dir=Path(config.conf_dir) if config.conf_dir else None,
            rpc_url=config.rpc_url,
        ),
        ledger=ledger,
        artifacts=ArtifactStore(config.artifact_dir),
        model_path=config.model_path,
        threshold=config.threshold,
        settlement_tolerance=config.settlement_tolerance,
        lock_timeout=config.lock_timeout,
        stage_timeout=config.stage_timeout,
        run_args=config.run_args,
        verifier_address=config.verifier_address,
    )
    server = JanusRPCServer(orchestrator, host=config.host, port=config.port)
    await server.start()
    pruner = asyncio.create_task(_prune_loop(ledger, config, stop))

    try:
        await stop.wait()
    finally:
        await server.stop()
        await pruner
        await orchestrator.close(timeout=config.stage_timeout)
        await ledger.close()


def main() -> None:
    config, args = load_config()
    if getattr(args, "logging.trace", False):
        bt.logging.set_trace(True)
    elif getattr(args, "logging.debug", False):
        bt.logging.set_debug(True)
    bt.logging.info({"oracle": "starting"})
    bt.logging.info({
        "oracle_config": {
            "host": config.host,
            "port": config.port,
            "threshold": config.threshold,
            "data_dir": config.data_dir,
            "model_path": config.model_path,
            "verifier": bool(config.verifier_address),
        }
    })

    loop = asyncio.new_event_loop()
    stop = asyncio.Event()

    def _signal_handler(sig, frame):
        bt.logging.info({"oracle": "shutdown_signal_received"})
        loop.call_soon_threadsafe(stop.set)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        loop.run_until_complete(serve(config, stop))
    except KeyboardInterrupt:
        bt.logging.info({"oracle": "keyboard_interrupt"})
    finally:
        loop.close()
        bt.logging.info({"oracle": "stopped"})


if __name__ == "__main__":
    main()
