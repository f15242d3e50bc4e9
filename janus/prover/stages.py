"""Stage descriptors and the ProofStageRunner capability.

The orchestrator only speaks in StageRequest / StageOutput; how a stage
is actually invoked is up to the runner implementation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel


class StageKind(str, Enum):
    FORWARD = "forward"
    MOCK = "mock"
    PROVE = "prove"
    VERIFY_AGGREGATE = "verify_aggregate"
    VERIFY_ON_CHAIN = "verify_on_chain"


class RunArgs(BaseModel):
    """Circuit run parameters passed to every stage."""

    tolerance: float = 0.0
    scale: int = 4
    bits: int = 10
    logrows: int = 12
    public_inputs: bool = False
    public_outputs: bool = True
    public_params: bool = False
    max_rotations: int = 512


@dataclass(frozen=True)
class ArtifactPaths:
    """Proof artifacts for one identity."""

    proof: Path
    vk: Path
    params: Path


@dataclass(frozen=True)
class StageRequest:
    kind: StageKind
    input_path: Path | None = None
    model_path: Path | None = None
    artifacts: ArtifactPaths | None = None
    params: RunArgs = field(default_factory=RunArgs)
    output_path: Path | None = None
    verifier_address: str | None = None


@dataclass(frozen=True)
class StageOutput:
    """Successful stage result. ``output`` is only set for FORWARD."""

    kind: StageKind
    output: Any = None
    detail: str = ""


@runtime_checkable
class ProofStageRunner(Protocol):
    """Runs one proving-engine stage.

    Raises StageExecutionError when the engine reports failure.
    """

    async def run(self, request: StageRequest) -> StageOutput:
        ...


__all__ = [
    "ArtifactPaths",
    "ProofStageRunner",
    "RunArgs",
    "StageKind",
    "StageOutput",
    "StageRequest",
]
