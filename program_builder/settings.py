from __future__ import annotations

import os
from dataclasses import dataclass, field


def _flag(name: str) -> bool:
    return os.getenv(name, "").lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    programs_dir: str = field(
        default_factory=lambda: os.getenv("PROGRAMS_DIR", "programs")
    )
    toolchain_command: str = field(
        default_factory=lambda: os.getenv("BUILD_TOOLCHAIN", "cargo-build-sbf")
    )
    toolchain_extra_args: str = field(
        default_factory=lambda: os.getenv(
            "BUILD_TOOLCHAIN_ARGS", "-- -Znext-lockfile-bump"
        )
    )
    # cargo reports warnings on stderr and may exit non-zero after a good build
    success_marker: str = field(
        default_factory=lambda: os.getenv("BUILD_SUCCESS_MARKER", "Finished release")
    )
    build_timeout_sec: float = field(
        default_factory=lambda: float(os.getenv("BUILD_TIMEOUT_SEC", "600"))
    )
    binary_ext: str = field(default_factory=lambda: os.getenv("BINARY_EXT", "so"))

    use_remote_store: bool = field(default_factory=lambda: _flag("USE_REMOTE_STORE"))
    remote_bucket: str = field(
        default_factory=lambda: os.getenv("ARTIFACT_BUCKET", "arch-ide-build-artifacts")
    )
    remote_endpoint_url: str | None = field(
        default_factory=lambda: os.getenv("ARTIFACT_S3_ENDPOINT") or None
    )
    remote_region: str = field(
        default_factory=lambda: os.getenv("ARTIFACT_S3_REGION", "us-east-1")
    )

    redis_url: str | None = field(default_factory=lambda: os.getenv("REDIS_URL") or None)
    use_fake_redis: bool = field(default_factory=lambda: _flag("FAKE_REDIS"))

    client_url: str = field(
        default_factory=lambda: os.getenv("CLIENT_URL", "http://localhost:3000")
    )

    @property
    def log_streaming_enabled(self) -> bool:
        return self.use_fake_redis or self.redis_url is not None


def get_settings() -> Settings:
    return Settings()
