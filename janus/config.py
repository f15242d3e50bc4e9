"""Oracle process configuration.

Values come from the command line (``--oracle.*`` options) and are
overridden by ``JANUS_*`` environment variables. A ``.env`` file is loaded
first unless ``JANUS_TEST_MODE=true``.
"""

from __future__ import annotations

import argparse
import os
from typing import Any, Mapping, Sequence

import bittensor as bt
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from janus.prover.stages import RunArgs


class OracleConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=0, le=65535)
    threshold: float = Field(default=0.1, gt=0)
    settlement_tolerance: float = Field(default=1e-6, ge=0)
    lock_timeout: float = Field(default=30.0, gt=0)
    stage_timeout: float = Field(default=600.0, gt=0)
    data_dir: str = "janus/data"
    artifact_dir: str = "janus/data/artifacts"
    model_path: str = "janus/data/network.ezkl"
    ezkl_bin: str = "ezkl"
    conf_dir: str | None = None
    verifier_address: str | None = None
    rpc_url: str | None = None
    retention_days: int = Field(default=30, ge=1)
    prune_interval: int = Field(default=3600, gt=0)
    run_args: RunArgs = Field(default_factory=RunArgs)


# option name -> (env var, type)
_OPTIONS: dict[str, tuple[str, type]] = {
    "host": ("JANUS_ORACLE__HOST", str),
    "port": ("JANUS_ORACLE__PORT", int),
    "threshold": ("JANUS_ORACLE__THRESHOLD", float),
    "settlement_tolerance": ("JANUS_ORACLE__SETTLEMENT_TOLERANCE", float),
    "lock_timeout": ("JANUS_ORACLE__LOCK_TIMEOUT", float),
    "stage_timeout": ("JANUS_ORACLE__STAGE_TIMEOUT", float),
    "data_dir": ("JANUS_ORACLE__DATA_DIR", str),
    "artifact_dir": ("JANUS_ORACLE__ARTIFACT_DIR", str),
    "model_path": ("JANUS_ORACLE__MODEL_PATH", str),
    "ezkl_bin": ("JANUS_ORACLE__EZKL_BIN", str),
    "conf_dir": ("JANUS_ORACLE__CONF_DIR", str),
    "verifier_address": ("JANUS_ORACLE__VERIFIER_ADDRESS", str),
    "rpc_url": ("JANUS_ORACLE__RPC_URL", str),
    "retention_days": ("JANUS_ORACLE__RETENTION_DAYS", int),
    "prune_interval": ("JANUS_ORACLE__PRUNE_INTERVAL", int),
}

_RUN_ARGS: dict[str, tuple[str, type]] = {
    "tolerance": ("JANUS_RUN_ARGS__TOLERANCE", float),
    "scale": ("JANUS_RUN_ARGS__SCALE", int),
    "bits": ("JANUS_RUN_ARGS__BITS", int),
    "logrows": ("JANUS_RUN_ARGS__LOGROWS", int),
}


def add_args(parser: argparse.ArgumentParser) -> None:
    """Register oracle options (and bittensor logging options) on ``parser``."""
    bt.logging.add_args(parser)
    defaults = OracleConfig()
    for name, (_, kind) in _OPTIONS.items():
        parser.add_argument(f"--oracle.{name}", type=kind, default=getattr(defaults, name))
    for name, (_, kind) in _RUN_ARGS.items():
        parser.add_argument(f"--run_args.{name}", type=kind, default=getattr(defaults.run_args, name))


def _resolve(
    args: argparse.Namespace,
    prefix: str,
    options: dict[str, tuple[str, type]],
    env: Mapping[str, str],
) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name, (var, kind) in options.items():
        raw = env.get(var)
        if raw is not None and raw != "":
            values[name] = kind(raw)
            continue
        value = getattr(args, f"{prefix}.{name}", None)
        if value is not None:
            values[name] = value
    return values


def load_config(
    argv: Sequence[str] | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[OracleConfig, argparse.Namespace]:
    """Parse CLI args, apply env overrides and validate.

    Returns the validated config and the raw namespace (for logging setup).
    """
    if os.environ.get("JANUS_TEST_MODE") != "true":
        load_dotenv()
    env = os.environ if env is None else env

    parser = argparse.ArgumentParser(description="Janus verification oracle")
    add_args(parser)
    args = parser.parse_args(argv)

    values = _resolve(args, "oracle", _OPTIONS, env)
    values["run_args"] = RunArgs(**_resolve(args, "run_args", _RUN_ARGS, env))
    return OracleConfig(**values), args


__all__ = ["OracleConfig", "add_args", "load_config"]
