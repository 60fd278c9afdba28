"""
Durable artifact storage.

Paths are deterministic per deposit, so a retried reduce rewrites the same
objects. Writes go to a temporary file that atomically replaces the target:
readers never observe a half-written artifact.
"""

import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path


class ArtifactStorage(ABC):
    """Object store addressed by relative path."""

    @abstractmethod
    def write(self, path: str, data: bytes) -> None:
        ...

    @abstractmethod
    def read(self, path: str) -> bytes:
        ...

    @abstractmethod
    def exists(self, path: str) -> bool:
        ...


class LocalArtifactStorage(ArtifactStorage):
    """
    Artifact storage on a local or mounted filesystem.

    Args:
        root: Directory artifacts are stored under
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"Artifact path escapes storage root: {path}")
        return target

    def write(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def read(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()
