from __future__ import annotations

import asyncio
import logging
import os
import shlex
import signal
from typing import Awaitable, Callable

from program_builder.errors import ToolchainUnavailable
from program_builder.models import ToolchainResult, WorkspacePaths
from program_builder.settings import Settings

logger = logging.getLogger(__name__)

LineCallback = Callable[[str, str], Awaitable[None]]

# cargo can emit very long single lines (e.g. rustc JSON, linker invocations)
STREAM_LIMIT = 1024 * 1024
# grace period for the output pipes to close once the toolchain has exited
DRAIN_TIMEOUT = 5.0


class ToolchainRunner:
    """Runs the external build command for a staged workspace."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def command(self, paths: WorkspacePaths) -> list[str]:
        return [
            *shlex.split(self.settings.toolchain_command),
            "--manifest-path",
            str(paths.manifest.resolve()),
            "--sbf-out-dir",
            str(paths.deploy.resolve()),
            *shlex.split(self.settings.toolchain_extra_args),
        ]

    def environment(self, paths: WorkspacePaths) -> dict[str, str]:
        env = os.environ.copy()
        env.update(
            {
                "CARGO_TARGET_DIR": str(paths.shared_target.resolve()),
                "CARGO_BUILD_INCREMENTAL": "true",
                "CARGO_PROFILE_RELEASE_INCREMENTAL": "true",
                "CARGO_PROFILE_RELEASE_CODEGEN_UNITS": "256",
                "RUST_BACKTRACE": "1",
            }
        )
        return env

    async def execute(
        self, paths: WorkspacePaths, on_line: LineCallback | None = None
    ) -> ToolchainResult:
        """Build the workspace and return the captured diagnostics."""
        job_id = paths.job_id
        cmd = self.command(paths)
        banner = f"[builder] building {paths.program_name} ({job_id})\n"

        logger.info("job %s: running %s", job_id, shlex.join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(paths.root),
                env=self.environment(paths),
                limit=STREAM_LIMIT,
                start_new_session=True,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise ToolchainUnavailable(
                f"failed to spawn {cmd[0]!r}: {exc.strerror or exc}"
            ) from exc

        stdout_lines: list[str] = []
        stderr_lines: list[str] = []

        async def consume(stream: asyncio.StreamReader | None, name: str, sink: list[str]):
            assert stream is not None
            while True:
                try:
                    raw = await stream.readline()
                except ValueError:
                    # readline already dropped the oversized chunk
                    raw = f"[builder] line longer than {STREAM_LIMIT} bytes dropped\n".encode()
                if not raw:
                    break
                line = raw.decode(errors="replace")
                sink.append(line)
                logger.debug("job %s %s: %s", job_id, name, line.rstrip())
                if on_line is not None:
                    await on_line(name, line)

        readers = [
            asyncio.create_task(consume(process.stdout, "stdout", stdout_lines)),
            asyncio.create_task(consume(process.stderr, "stderr", stderr_lines)),
        ]

        timed_out = False
        try:
            await asyncio.wait_for(
                process.wait(), timeout=self.settings.build_timeout_sec
            )
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning(
                "job %s: build exceeded %ss, killing toolchain",
                job_id,
                self.settings.build_timeout_sec,
            )
            _kill(process)
            await process.wait()
        except asyncio.CancelledError:
            _kill(process)
            for reader in readers:
                reader.cancel()
            await process.wait()
            raise

        # descendants that outlive the toolchain keep the pipes open
        try:
            done, pending = await asyncio.wait(readers, timeout=DRAIN_TIMEOUT)
        except asyncio.CancelledError:
            _kill(process)
            for reader in readers:
                reader.cancel()
            raise
        if pending:
            logger.warning("job %s: output still open after exit, killing group", job_id)
            _kill(process)
            for reader in pending:
                reader.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        for reader in done:
            reader.result()

        exit_code = process.returncode
        output = "".join(stdout_lines) + "".join(stderr_lines)
        marker_found = self.settings.success_marker in output
        success = not timed_out and (exit_code == 0 or marker_found)

        trailer: list[str] = []
        if timed_out:
            trailer.append(
                f"[builder] timeout exceeded ({self.settings.build_timeout_sec}s), "
                "process terminated\n"
            )
        elif exit_code != 0 and marker_found:
            trailer.append(
                f"[builder] toolchain exited with code {exit_code} "
                "but reported a finished build\n"
            )
        trailer.append(f"[builder] finished with code {exit_code}\n")

        logger.info(
            "job %s: toolchain exited with %s (success=%s)", job_id, exit_code, success
        )
        return ToolchainResult(
            diagnostics=banner + output + "".join(trailer),
            success=success,
            exit_code=exit_code,
            timed_out=timed_out,
        )


def _kill(process: asyncio.subprocess.Process) -> None:
    """Kill the toolchain together with the cargo and rustc processes it spawned."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
