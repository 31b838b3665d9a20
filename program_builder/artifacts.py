"""
Locating built binaries.

A binary is looked up in order: the job's own deploy directory, the deploy
directories of every other job (clients sometimes ask by program name with a
stale job id), then the remote object store when one is configured.
"""

from __future__ import annotations

import asyncio
import logging
import stat
from pathlib import Path
from typing import Protocol, Sequence

from program_builder import config
from program_builder.errors import InvalidInput, NotBuilt, StorageError
from program_builder.settings import Settings
from program_builder.workspace import normalize_job_id, sanitize_program_name

logger = logging.getLogger(__name__)

DEPLOY_SUBDIR = Path("target") / "deploy"


def remote_key(job_id: str, program_name: str, ext: str) -> str:
    return f"binaries/{job_id}/{program_name}.{ext}"


class ObjectStore(Protocol):
    async def put(self, key: str, data: bytes) -> None: ...

    async def get(self, key: str) -> bytes | None: ...


class ArtifactSource(Protocol):
    name: str

    async def fetch(self, job_id: str | None, program_name: str) -> bytes | None: ...


class LocalArtifactSource:
    name = "local"

    def __init__(self, root: Path, ext: str) -> None:
        self.root = root
        self.ext = ext

    async def fetch(self, job_id: str | None, program_name: str) -> bytes | None:
        if job_id is None:
            return None
        path = self.root / job_id / DEPLOY_SUBDIR / f"{program_name}.{self.ext}"
        if not path.is_file():
            return None
        return path.read_bytes()


class PeerArtifactSource:
    """Scans other jobs' deploy dirs; newest matching binary wins."""

    name = "peer"

    def __init__(self, root: Path, ext: str) -> None:
        self.root = root
        self.ext = ext

    async def fetch(self, job_id: str | None, program_name: str) -> bytes | None:
        return await asyncio.to_thread(self._scan, job_id, f"{program_name}.{self.ext}")

    def _scan(self, job_id: str | None, filename: str) -> bytes | None:
        try:
            job_dirs = list(self.root.iterdir())
        except (FileNotFoundError, NotADirectoryError):
            return None

        newest: Path | None = None
        newest_mtime = 0.0
        for job_dir in job_dirs:
            if job_dir.name in (job_id, config.SHARED_TARGET_DIRNAME):
                continue
            candidate = job_dir / DEPLOY_SUBDIR / filename
            try:
                st = candidate.stat()
            except (FileNotFoundError, NotADirectoryError):
                # workspace missing the binary or removed mid-scan
                continue
            if not stat.S_ISREG(st.st_mode):
                continue
            if newest is None or st.st_mtime > newest_mtime:
                newest, newest_mtime = candidate, st.st_mtime
        if newest is None:
            return None

        try:
            data = newest.read_bytes()
        except FileNotFoundError:
            return None
        logger.info("resolved %s from peer workspace %s", filename, newest.parents[2].name)
        return data


class RemoteArtifactSource:
    name = "remote"

    def __init__(self, store: ObjectStore, ext: str) -> None:
        self.store = store
        self.ext = ext

    async def fetch(self, job_id: str | None, program_name: str) -> bytes | None:
        if job_id is None:
            return None
        key = remote_key(job_id, program_name, self.ext)
        try:
            return await self.store.get(key)
        except StorageError as exc:
            logger.warning("remote lookup of %s failed: %s", key, exc)
            return None


class ArtifactResolver:
    def __init__(
        self,
        sources: Sequence[ArtifactSource],
        store: ObjectStore | None = None,
        ext: str = "so",
    ) -> None:
        self.sources = list(sources)
        self.store = store
        self.ext = ext

    @classmethod
    def from_settings(
        cls, settings: Settings, store: ObjectStore | None = None
    ) -> "ArtifactResolver":
        root = config.programs_root(settings)
        ext = settings.binary_ext
        sources: list[ArtifactSource] = [
            LocalArtifactSource(root, ext),
            PeerArtifactSource(root, ext),
        ]
        if store is not None:
            sources.append(RemoteArtifactSource(store, ext))
        return cls(sources, store=store, ext=ext)

    async def resolve(self, job_id: str, program_name: str) -> bytes:
        """Return the binary for ``program_name``, trying each source in order."""
        try:
            safe_name = sanitize_program_name(program_name)
        except InvalidInput as exc:
            raise NotBuilt("Program is not built") from exc
        try:
            canonical_id: str | None = normalize_job_id(job_id)
        except InvalidInput:
            # never used as a path component, only the peer scan applies
            canonical_id = None

        for source in self.sources:
            data = await source.fetch(canonical_id, safe_name)
            if data is not None:
                logger.debug(
                    "resolved %s for job %s from %s", safe_name, job_id, source.name
                )
                return data
        raise NotBuilt("Program is not built")

    async def publish(self, job_id: str, program_name: str, data: bytes) -> bool:
        """Upload a fresh binary. Failures are logged, never raised."""
        if self.store is None:
            return False
        key = remote_key(job_id, program_name, self.ext)
        try:
            await self.store.put(key, data)
        except StorageError as exc:
            logger.error("failed to publish %s: %s", key, exc)
            return False
        return True
