"""ProofStageRunner backed by the ``ezkl`` command line tool.

Each stage becomes one ``ezkl`` invocation: run args first, then the
subcommand and its paths. The process runs without blocking the event
loop; a non-zero exit becomes a StageExecutionError carrying the output.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import bittensor as bt

from janus.oracle.errors import StageExecutionError

from .artifacts import read_json
from .stages import RunArgs, StageKind, StageOutput, StageRequest

_SUBCOMMANDS = {
    StageKind.FORWARD: "forward",
    StageKind.MOCK: "mock",
    StageKind.PROVE: "prove",
    StageKind.VERIFY_AGGREGATE: "verify-aggr",
    StageKind.VERIFY_ON_CHAIN: "verify-evm",
}

# Truncate captured engine output kept on errors
_MAX_OUTPUT = 4000


def run_args_argv(params: RunArgs) -> list[str]:
    argv = [
        "--tolerance", str(params.tolerance),
        "--scale", str(params.scale),
        "--bits", str(params.bits),
        "--logrows", str(params.logrows),
        "--max-rotations", str(params.max_rotations),
    ]
    if params.public_inputs:
        argv.append("--public-inputs")
    if params.public_outputs:
        argv.append("--public-outputs")
    if params.public_params:
        argv.append("--public-params")
    return argv


class EzklStageRunner:
    """Runs proof stages through the ezkl CLI."""

    def __init__(
        self,
        ezkl_bin: str = "ezkl",
        conf_dir: str | None = None,
        rpc_url: str | None = None,
        transcript: str = "evm",
        strategy: str = "single",
    ):
        self.ezkl_bin = ezkl_bin
        self.conf_dir = Path(conf_dir) if conf_dir else None
        self.rpc_url = rpc_url
        self.transcript = transcript
        self.strategy = strategy

    def build_argv(self, request: StageRequest) -> list[str]:
        """Build the full command line for a stage."""
        kind = request.kind
        argv = [self.ezkl_bin, *run_args_argv(request.params), _SUBCOMMANDS[kind]]

        if kind in (StageKind.FORWARD, StageKind.MOCK, StageKind.PROVE):
            if request.input_path is None or request.model_path is None:
                raise ValueError(f"{kind.value} stage requires input and model paths")
            argv += ["-D", str(request.input_path), "-M", str(request.model_path)]

        if kind is StageKind.FORWARD:
            if request.output_path is None:
                raise ValueError("forward stage requires an output_path")
            argv += ["-O", str(request.output_path)]
            return argv

        if kind is StageKind.MOCK:
            return argv

        artifacts = request.artifacts
        if artifacts is None:
            raise ValueError(f"{kind.value} stage requires artifact paths")

        if kind is StageKind.PROVE:
            argv += [
                "--vk-path", str(artifacts.vk),
                "--proof-path", str(artifacts.proof),
                "--params-path", str(artifacts.params),
                "--transcript", self.transcript,
                "--strategy", self.strategy,
            ]
        elif kind is StageKind.VERIFY_AGGREGATE:
            argv += [
                "--proof-path", str(artifacts.proof),
                "--vk-path", str(artifacts.vk),
                "--params-path", str(artifacts.params),
                "--transcript", self.transcript,
            ]
        elif kind is StageKind.VERIFY_ON_CHAIN:
            if not request.verifier_address:
                raise ValueError("verify_on_chain stage requires a verifier contract address")
            argv += ["--proof-path", str(artifacts.proof), "--addr-verifier", request.verifier_address]
            if self.rpc_url:
                argv += ["--rpc-url", self.rpc_url]
        return argv

    def _env(self, kind: StageKind) -> dict[str, str]:
        env = dict(os.environ)
        if self.conf_dir is not None:
            conf = self.conf_dir / f"{kind.value}.json"
            if conf.exists():
                env["EZKLCONF"] = str(conf)
        return env

    async def run(self, request: StageRequest) -> StageOutput:
        try:
            argv = self.build_argv(request)
        except ValueError as e:
            raise StageExecutionError(request.kind.value, str(e)) from e

        bt.logging.debug({"ezkl_stage": {"kind": request.kind.value, "argv": argv[1:]}})
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=self._env(request.kind),
            )
        except OSError as e:
            raise StageExecutionError(request.kind.value, f"cannot start {self.ezkl_bin}: {e}") from e

        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        output = (stdout or b"").decode(errors="replace")[-_MAX_OUTPUT:]
        if proc.returncode != 0:
            raise StageExecutionError(
                request.kind.value,
                f"ezkl exited with status {proc.returncode}",
                output=output,
            )

        if request.kind is StageKind.FORWARD:
            try:
                data = read_json(request.output_path)
            except (OSError, ValueError) as e:
                raise StageExecutionError(request.kind.value, f"unreadable forward output: {e}") from e
            rows = data.get("output_data") if isinstance(data, dict) else data
            if rows is None:
                raise StageExecutionError(request.kind.value, "forward output has no output_data")
            return StageOutput(kind=request.kind, output=rows, detail=output)

        return StageOutput(kind=request.kind, detail=output)


__all__ = ["EzklStageRunner", "run_args_argv"]
