from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from program_builder.errors import InvalidInput
from program_builder.models import BuildInfo, BuildStatus

logger = logging.getLogger(__name__)


class BuildTracker:
    """In-memory registry of build jobs, keyed by job id.

    Entries are frozen models: an update swaps in a new object under the
    lock, so a reader always holds a complete snapshot.
    """

    def __init__(self) -> None:
        self._builds: dict[str, BuildInfo] = {}
        self._lock = asyncio.Lock()

    async def register(self, job_id: str, program_name: str) -> BuildInfo:
        """Start tracking a build. A finished job id may be reused."""
        info = BuildInfo(
            uuid=job_id,
            program_name=program_name,
            status=BuildStatus.building,
            started_at=self._now(),
        )
        async with self._lock:
            current = self._builds.get(job_id)
            if current is not None and not current.status.is_terminal:
                raise InvalidInput(f"Build {job_id} is already in progress")
            self._builds[job_id] = info
        logger.info("job %s: registered (%s)", job_id, program_name)
        return info

    async def complete(
        self, job_id: str, diagnostics: str, program_name: str, success: bool
    ) -> bool:
        """Record the outcome of a build.

        Returns False without changing anything when the job is unknown or
        has already reached a terminal state.
        """
        async with self._lock:
            info = self._builds.get(job_id)
            if info is None:
                return False
            if info.status.is_terminal:
                logger.warning(
                    "job %s: ignoring completion, already %s", job_id, info.status.value
                )
                return False
            self._builds[job_id] = info.model_copy(
                update={
                    "status": BuildStatus.success if success else BuildStatus.failed,
                    "stderr": diagnostics,
                    "program_name": program_name,
                    "completed_at": self._now(),
                }
            )
        logger.info("job %s: %s", job_id, "success" if success else "failed")
        return True

    async def get(self, job_id: str) -> BuildInfo | None:
        async with self._lock:
            return self._builds.get(job_id)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)
