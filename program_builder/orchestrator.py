from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncGenerator, Sequence
from uuid import uuid4

from redis.exceptions import RedisError

from program_builder import workspace
from program_builder.artifacts import ArtifactResolver
from program_builder.errors import InvalidInput, ToolchainUnavailable
from program_builder.log_store import LogStore
from program_builder.models import BuildInfo, WorkspacePaths
from program_builder.redis_client import create_redis
from program_builder.remote_store import S3ObjectStore
from program_builder.runner import LineCallback, ToolchainRunner
from program_builder.settings import Settings
from program_builder.tracker import BuildTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmittedBuild:
    job_id: str
    program_name: str
    task: asyncio.Task


class BuildOrchestrator:
    """Admits builds and runs them in the background.

    Staging happens on the caller's path so bad input is rejected before a
    job exists; compilation and artifact upload run as detached tasks.
    """

    def __init__(
        self,
        settings: Settings,
        tracker: BuildTracker | None = None,
        runner: ToolchainRunner | None = None,
        resolver: ArtifactResolver | None = None,
        log_store: LogStore | None = None,
        poll_interval: float = 1.0,
    ) -> None:
        self.settings = settings
        self.tracker = tracker or BuildTracker()
        self.runner = runner or ToolchainRunner(settings)
        self.resolver = resolver or ArtifactResolver.from_settings(settings)
        self.log_store = log_store
        self.poll_interval = poll_interval
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "BuildOrchestrator":
        store = S3ObjectStore.from_settings(settings) if settings.use_remote_store else None
        client = create_redis(settings)
        return cls(
            settings,
            resolver=ArtifactResolver.from_settings(settings, store),
            log_store=LogStore(client) if client is not None else None,
        )

    async def submit_build(
        self,
        program_name: str,
        files: Sequence[tuple[str, str]],
        job_id: str | None = None,
    ) -> SubmittedBuild:
        job_id = workspace.normalize_job_id(job_id) if job_id is not None else str(uuid4())
        safe_name = workspace.sanitize_program_name(program_name)
        workspace.validate_files(files)

        await self.tracker.register(job_id, program_name)
        if self.log_store is not None:
            await self._log_call(job_id, self.log_store.register(job_id))
        try:
            paths = workspace.stage(self.settings, job_id, safe_name, files)
        except Exception as exc:
            logger.exception("job %s: staging failed", job_id)
            message = f"[builder] failed to stage workspace: {exc}\n"
            if self.log_store is not None:
                await self._log_call(job_id, self.log_store.append(job_id, message))
            await self._finish(job_id, message, safe_name, False)
            raise

        task = asyncio.create_task(self._run_build(paths), name=f"build-{job_id}")
        self._track(task)
        return SubmittedBuild(job_id=job_id, program_name=safe_name, task=task)

    async def get_status(self, job_id: str) -> BuildInfo | None:
        try:
            job_id = workspace.normalize_job_id(job_id)
        except InvalidInput:
            return None
        return await self.tracker.get(job_id)

    async def get_artifact(self, job_id: str, program_name: str) -> bytes:
        return await self.resolver.resolve(job_id, program_name)

    async def stream_logs(self, job_id: str) -> AsyncGenerator[str, None]:
        """Yield the build log; live while the job runs when redis is enabled."""
        job_id = workspace.normalize_job_id(job_id)
        if self.log_store is not None:
            async for line in self.log_store.stream(job_id):
                yield line
            return

        info = await self.tracker.get(job_id)
        while info is not None and not info.status.is_terminal:
            await asyncio.sleep(self.poll_interval)
            info = await self.tracker.get(job_id)
        if info is not None and info.stderr:
            yield info.stderr

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self.log_store is not None:
            await self.log_store.redis.aclose()

    async def _run_build(self, paths: WorkspacePaths) -> BuildInfo | None:
        job_id = paths.job_id
        program_name = paths.program_name
        try:
            result = await self.runner.execute(paths, on_line=self._line_sink(job_id))
            diagnostics, success = result.diagnostics, result.success
        except ToolchainUnavailable as exc:
            logger.error("job %s: %s", job_id, exc)
            diagnostics, success = f"[builder] toolchain unavailable: {exc}\n", False
        except asyncio.CancelledError:
            await self._finish(job_id, "[builder] build cancelled\n", program_name, False)
            raise
        except Exception as exc:
            logger.exception("job %s: build crashed", job_id)
            diagnostics, success = f"[builder] internal error: {exc}\n", False

        binary = paths.binary(self.settings.binary_ext)
        if success and not binary.is_file():
            diagnostics += f"[builder] build finished but {binary.name} was not produced\n"
            success = False

        await self._finish(job_id, diagnostics, program_name, success)
        if success and self.resolver.store is not None:
            self._track(
                asyncio.create_task(
                    self._publish(job_id, program_name, binary),
                    name=f"publish-{job_id}",
                )
            )
        return await self.tracker.get(job_id)

    async def _finish(
        self, job_id: str, diagnostics: str, program_name: str, success: bool
    ) -> None:
        await self.tracker.complete(job_id, diagnostics, program_name, success)
        if self.log_store is not None:
            await self._log_call(job_id, self.log_store.mark_complete(job_id))

    async def _publish(self, job_id: str, program_name: str, binary: Path) -> None:
        try:
            data = binary.read_bytes()
        except OSError as exc:
            logger.error("job %s: cannot read %s for upload: %s", job_id, binary, exc)
            return
        await self.resolver.publish(job_id, program_name, data)

    def _line_sink(self, job_id: str) -> LineCallback | None:
        log_store = self.log_store
        if log_store is None:
            return None

        async def sink(stream: str, line: str) -> None:
            await self._log_call(job_id, log_store.append(job_id, line))

        return sink

    @staticmethod
    async def _log_call(job_id: str, call) -> None:
        try:
            await call
        except RedisError as exc:
            logger.warning("job %s: build log store unavailable: %s", job_id, exc)

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
