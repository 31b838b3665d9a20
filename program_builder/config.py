from __future__ import annotations

from pathlib import Path

from program_builder.settings import Settings

SHARED_TARGET_DIRNAME = "target"


def programs_root(settings: Settings) -> Path:
    """Root directory for build workspaces (one subdir per job)."""
    return Path(settings.programs_dir).resolve()


def shared_target_dir(settings: Settings) -> Path:
    """Cargo target dir shared by every job to reuse compiled dependencies."""
    return programs_root(settings) / SHARED_TARGET_DIRNAME
