"""Proving-engine boundary: stage descriptors, artifact layout, ezkl runner."""

from .artifacts import ArtifactStore
from .ezkl import EzklStageRunner
from .stages import (
    ArtifactPaths,
    ProofStageRunner,
    RunArgs,
    StageKind,
    StageOutput,
    StageRequest,
)

__all__ = [
    "ArtifactPaths",
    "ArtifactStore",
    "EzklStageRunner",
    "ProofStageRunner",
    "RunArgs",
    "StageKind",
    "StageOutput",
    "StageRequest",
]
