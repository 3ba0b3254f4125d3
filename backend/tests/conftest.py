"""
Shared fixtures for the audio extraction tests.

ffmpeg is replaced by small /bin/sh scripts written into tmp_path, so the
suite runs without a real encoder. The scripts receive the exact argument
list the service builds.
"""

import stat
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app

# Copies the -i input to the output path and records the arguments
COPY_SCRIPT = """#!/bin/sh
printf '%s\\n' "$@" > "{args_file}"
prev=""
for arg; do
  if [ "$prev" = "-i" ]; then src="$arg"; fi
  prev="$arg"
  last="$arg"
done
sleep {delay}
cat "$src" > "$last"
"""

FAILING_SCRIPT = """#!/bin/sh
echo "  Invalid data found when processing input  " >&2
exit 1
"""

SILENT_FAILING_SCRIPT = """#!/bin/sh
exit 3
"""

# exec keeps the pid, so killing it kills the sleep itself
HANGING_SCRIPT = """#!/bin/sh
echo $$ > "{pid_file}"
exec sleep 30
"""


@pytest.fixture
def write_script(tmp_path):
    """Factory writing an executable script into tmp_path"""
    def _write(name: str, body: str) -> Path:
        path = tmp_path / name
        path.write_text(body)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path
    return _write


@pytest.fixture
def args_file(tmp_path) -> Path:
    return tmp_path / "ffmpeg_args.txt"


@pytest.fixture
def pid_file(tmp_path) -> Path:
    return tmp_path / "ffmpeg.pid"


@pytest.fixture
def copy_ffmpeg(write_script, args_file) -> Path:
    return write_script("ffmpeg_copy.sh", COPY_SCRIPT.format(args_file=args_file, delay=0))


@pytest.fixture
def slow_copy_ffmpeg(write_script, args_file) -> Path:
    return write_script("ffmpeg_slow_copy.sh", COPY_SCRIPT.format(args_file=args_file, delay="0.3"))


@pytest.fixture
def failing_ffmpeg(write_script) -> Path:
    return write_script("ffmpeg_fail.sh", FAILING_SCRIPT)


@pytest.fixture
def silent_failing_ffmpeg(write_script) -> Path:
    return write_script("ffmpeg_silent_fail.sh", SILENT_FAILING_SCRIPT)


@pytest.fixture
def hanging_ffmpeg(write_script, pid_file) -> Path:
    return write_script("ffmpeg_hang.sh", HANGING_SCRIPT.format(pid_file=pid_file))


@pytest.fixture
def scratch_dir(tmp_path) -> Path:
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def make_settings(tmp_path, scratch_dir, copy_ffmpeg):
    """Factory for test Settings; defaults to a missing default video"""
    def _make(**overrides) -> Settings:
        values = {
            "TMP_DIR": scratch_dir,
            "FFMPEG_PATH": str(copy_ffmpeg),
            "FFMPEG_TIMEOUT_SEC": 10,
            "DEFAULT_VIDEO_PATH": tmp_path / "missing-default.mp4",
            "DISCONNECT_POLL_SEC": 0.05,
        }
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def make_client(make_settings):
    """Factory for a TestClient bound to an app built from test settings"""
    clients = []

    def _make(**overrides) -> TestClient:
        client = TestClient(create_app(make_settings(**overrides)))
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def default_video(tmp_path) -> Path:
    path = tmp_path / "default.mp4"
    path.write_bytes(b"default-video-bytes")
    return path
