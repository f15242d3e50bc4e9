"""Identity-keyed artifact layout on disk.

  {artifact_dir}/kzg.params                shared setup parameters
  {artifact_dir}/{digest}/model.pf         proof for an identity
  {artifact_dir}/{digest}/model.vk         verification key
  {artifact_dir}/{digest}/input-{id}.json  per-job input document

Per-job files carry a unique suffix so concurrent forward/mock calls for
one identity never share a file.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any

from janus.identity import identity_digest

from .stages import ArtifactPaths


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f)


def read_json(path: Path) -> Any:
    with open(path) as f:
        return json.load(f)


class ArtifactStore:
    """Resolves artifact paths for identities. Does not manage their lifecycle."""

    def __init__(self, artifact_dir: str, params_name: str = "kzg.params", artifact_stem: str = "model"):
        self.base = Path(artifact_dir)
        self.params_path = self.base / params_name
        self.artifact_stem = artifact_stem
        self.base.mkdir(parents=True, exist_ok=True)

    def identity_dir(self, identity: str) -> Path:
        return self.base / identity_digest(identity)

    def paths_for(self, identity: str) -> ArtifactPaths:
        d = self.identity_dir(identity)
        return ArtifactPaths(
            proof=d / f"{self.artifact_stem}.pf",
            vk=d / f"{self.artifact_stem}.vk",
            params=self.params_path,
        )

    def write_input(self, identity: str, data: dict[str, Any]) -> Path:
        """Write a job input document and return its path."""
        path = self.identity_dir(identity) / f"input-{uuid.uuid4().hex}.json"
        _write_json(path, data)
        return path

    def output_path(self, input_path: Path) -> Path:
        return input_path.with_name(input_path.name.replace("input-", "output-", 1))

    def discard(self, *paths: Path | None) -> None:
        for path in paths:
            if path is None:
                continue
            path.unlink(missing_ok=True)


__all__ = ["ArtifactStore", "read_json"]
