from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class BuildStatus(str, Enum):
    queued = "queued"
    building = "building"
    success = "success"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BuildStatus.success, BuildStatus.failed)


class BuildRequest(BaseModel):
    program_name: str
    files: list[tuple[str, str]] = Field(default_factory=list)
    uuid: str | None = None


class BuildAccepted(BaseModel):
    uuid: str
    program_name: str
    status: BuildStatus = BuildStatus.building


class BuildInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    uuid: str
    program_name: str
    status: BuildStatus
    stderr: str | None = None
    started_at: datetime
    completed_at: datetime | None = None


class BuildNotFound(BaseModel):
    uuid: str
    status: str = "not_found"


class WorkspacePaths(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    job_id: str
    program_name: str
    root: Path
    src: Path
    manifest: Path
    deploy: Path
    shared_target: Path

    def binary(self, ext: str) -> Path:
        return self.deploy / f"{self.program_name}.{ext}"


class ToolchainResult(BaseModel):
    diagnostics: str
    success: bool
    exit_code: int | None = None
    timed_out: bool = False
