"""
Global test fixtures for clipsync tests
"""
import io
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from PIL import Image

from clipsync.config import SyncConfig
from clipsync.common.history import HistoryStore
from fixtures.helpers import free_port
from fixtures.mock_clipboard import MemoryClipboard


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files"""
    path = Path(tempfile.mkdtemp(prefix="clipsync_test_"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def password() -> str:
    return "secret"


@pytest.fixture
def sample_text() -> str:
    """Sample text for clipboard sync testing"""
    return "Hello, this is a clipboard sync test message!"


@pytest.fixture
def sample_image_bytes() -> bytes:
    """Small valid PNG image (4x3) for testing"""
    buffer = io.BytesIO()
    Image.new('RGB', (4, 3), color=(200, 30, 30)).save(buffer, format='PNG')
    return buffer.getvalue()


@pytest.fixture
def fast_config(temp_dir: Path) -> SyncConfig:
    """Config with a free TCP port, no fallbacks and short timers"""
    return SyncConfig(
        tcp_port=free_port(),
        fallback_tcp_ports=(),
        udp_port=free_port(),
        discovery_interval=0.2,
        poll_interval=0.05,
        resume_delay=0.1,
        reconnect_delay=0.05,
        temp_dir=temp_dir / "received",
    )


@pytest.fixture
def clipboard() -> MemoryClipboard:
    return MemoryClipboard()


@pytest.fixture
def history() -> HistoryStore:
    return HistoryStore(max_size=10)
