from __future__ import annotations

import logging
import re
import uuid
from pathlib import Path
from typing import Sequence

from program_builder import config
from program_builder.errors import InvalidInput
from program_builder.models import WorkspacePaths
from program_builder.settings import Settings

logger = logging.getLogger(__name__)

MAX_FILE_AMOUNT = 64
MAX_PATH_LENGTH = 128
ALLOWED_PATH = re.compile(r"/src/[\w/-]+\.rs", re.ASCII)

MANIFEST_TEMPLATE = """[package]
name = "{name}"
version = "0.1.0"
edition = "2021"

[lib]
crate-type = ["cdylib"]

[dependencies]
arch_program = "0.3.2"

# Core serialization/encoding
borsh = "=1.5.1"
base64 = { version = "=0.22.1", default-features = false, features = ["alloc"] }
hex = { version = "=0.4.3", default-features = false }
sha256 = { version = "=1.5.0", default-features = false }

# Error handling
thiserror = "=1.0.50"

# Serialization
serde = { version = "=1.0.198", features = ["derive"], default-features = false }

[profile.release]
overflow-checks = true
incremental = true
codegen-units = 256
opt-level = 1
lto = false
debug = false

[profile.release.build-override]
opt-level = 1
incremental = true
codegen-units = 256
"""


def normalize_job_id(job_id: str) -> str:
    """Return the canonical form of a UUID-shaped job id."""
    try:
        return str(uuid.UUID(job_id))
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"Invalid UUID: {job_id!r}") from exc


def sanitize_program_name(program_name: str) -> str:
    safe = "".join(c if c.isalnum() else "_" for c in program_name)
    if not safe:
        raise InvalidInput("program_name must not be empty")
    return safe


def validate_files(files: Sequence[tuple[str, str]]) -> None:
    """Reject the whole file set if any entry breaks the path or encoding rules."""
    if len(files) > MAX_FILE_AMOUNT:
        raise InvalidInput(
            f"Exceeded maximum file amount ({MAX_FILE_AMOUNT}): got {len(files)}"
        )
    for path, _ in files:
        if len(path) > MAX_PATH_LENGTH:
            raise InvalidInput(
                f"Path exceeds {MAX_PATH_LENGTH} characters: {path[:MAX_PATH_LENGTH]}..."
            )
        if ".." in path or "//" in path or not ALLOWED_PATH.fullmatch(path):
            raise InvalidInput(f"Invalid path: {path}")
    for path, content in files:
        try:
            content.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise InvalidInput(
                f"File {path} is not valid UTF-8 text: {exc.reason}"
            ) from exc


def init_programs_root(settings: Settings) -> Path:
    root = config.programs_root(settings)
    config.shared_target_dir(settings).mkdir(parents=True, exist_ok=True)
    logger.info("programs root ready at %s", root)
    return root


def workspace_paths(settings: Settings, job_id: str, program_name: str) -> WorkspacePaths:
    root = config.programs_root(settings) / job_id
    return WorkspacePaths(
        job_id=job_id,
        program_name=program_name,
        root=root,
        src=root / "src",
        manifest=root / "Cargo.toml",
        deploy=root / "target" / "deploy",
        shared_target=config.shared_target_dir(settings),
    )


def stage(
    settings: Settings,
    job_id: str,
    program_name: str,
    files: Sequence[tuple[str, str]],
) -> WorkspacePaths:
    """Write the job's sources and manifest; ``program_name`` must be sanitized."""
    validate_files(files)

    paths = workspace_paths(settings, job_id, program_name)
    for d in (paths.src, paths.deploy, paths.shared_target):
        d.mkdir(parents=True, exist_ok=True)

    # keep the keypair cargo-build-sbf leaves in deploy/, only drop the old binary
    stale = paths.binary(settings.binary_ext)
    if stale.exists():
        stale.unlink()
        logger.debug("job %s: removed stale %s", job_id, stale.name)

    for path, content in files:
        dest = paths.root / path.lstrip("/")
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(content, encoding="utf-8")
        logger.debug("job %s: wrote %s", job_id, dest)

    paths.manifest.write_text(
        MANIFEST_TEMPLATE.replace("{name}", program_name), encoding="utf-8"
    )

    lock_file = paths.root / "Cargo.lock"
    if lock_file.exists():
        lock_file.unlink()

    logger.info("job %s: staged %d file(s) for %s", job_id, len(files), program_name)
    return paths
