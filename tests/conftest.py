import io
import sys
from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).resolve().parent
ROOT = TESTS_DIR.parent
PROJECT_PARENT = ROOT.parent

for path in (TESTS_DIR, ROOT, PROJECT_PARENT):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

from monitoring_fakes import make_config  # noqa: E402
from order_watch.config import Config  # noqa: E402
from order_watch.json_logger import JsonLogger  # noqa: E402


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(log_stream: io.StringIO) -> JsonLogger:
    json_logger = JsonLogger(session_id="test-session", stream=log_stream, log_file_path=None)
    yield json_logger
    json_logger.close()
