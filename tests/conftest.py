import shlex
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from program_builder.errors import StorageError  # noqa: E402
from program_builder.settings import Settings  # noqa: E402

# Stands in for cargo-build-sbf: reads the crate name from the manifest,
# writes to both streams and drops a binary into --sbf-out-dir. Env vars
# prefixed FAKE_ steer its behaviour per test.
FAKE_TOOLCHAIN = '''
import os
import re
import subprocess
import sys
import time

args = sys.argv[1:]
manifest = args[args.index("--manifest-path") + 1]
out_dir = args[args.index("--sbf-out-dir") + 1]
with open(manifest) as f:
    name = re.search(r'^name = "(.+)"$', f.read(), re.M).group(1)

print(f"Compiling {name}", flush=True)
print(f"target dir {os.environ['CARGO_TARGET_DIR']}", flush=True)
if os.environ.get("FAKE_LONG_LINE"):
    print("x" * int(os.environ["FAKE_LONG_LINE"]), flush=True)
if os.environ.get("FAKE_CHILD_SLEEP"):
    # like rustc under cargo: a descendant that inherits both pipes
    subprocess.Popen(
        [sys.executable, "-c", f"import time; time.sleep({os.environ['FAKE_CHILD_SLEEP']})"]
    )
sys.stderr.write("warning: unused variable: `x`\\n")
sys.stderr.flush()
time.sleep(float(os.environ.get("FAKE_SLEEP", "0")))
if os.environ.get("FAKE_BINARY", "1") == "1":
    with open(os.path.join(out_dir, name + ".so"), "wb") as f:
        f.write(b"\\x7fELF" + name.encode())
if os.environ.get("FAKE_MARKER", "1") == "1":
    sys.stderr.write("    Finished release [optimized] target(s) in 0.01s\\n")
sys.exit(int(os.environ.get("FAKE_EXIT_CODE", "0")))
'''

LIB_RS = """use arch_program::entrypoint;

entrypoint!(process_instruction);
"""


class MemoryObjectStore:
    """In-memory stand-in for the S3 bucket."""

    def __init__(self, fail: bool = False) -> None:
        self.objects: dict[str, bytes] = {}
        self.fail = fail

    async def put(self, key: str, data: bytes) -> None:
        if self.fail:
            raise StorageError("bucket unreachable")
        self.objects[key] = data

    async def get(self, key: str) -> bytes | None:
        if self.fail:
            raise StorageError("bucket unreachable")
        return self.objects.get(key)


@pytest.fixture
def fake_toolchain(tmp_path):
    script = tmp_path / "fake_build_sbf.py"
    script.write_text(FAKE_TOOLCHAIN, encoding="utf-8")
    return script


@pytest.fixture
def programs_dir(tmp_path):
    return tmp_path / "programs"


@pytest.fixture
def settings(programs_dir, fake_toolchain):
    """Settings pointing at a temp programs dir and the fake toolchain."""
    return Settings(
        programs_dir=str(programs_dir),
        toolchain_command=f"{shlex.quote(sys.executable)} {shlex.quote(str(fake_toolchain))}",
        build_timeout_sec=30,
        use_remote_store=False,
        redis_url=None,
        use_fake_redis=False,
    )


@pytest.fixture
def memory_store():
    return MemoryObjectStore()


@pytest.fixture
def lib_rs():
    return LIB_RS
