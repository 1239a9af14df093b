"""
Configuration for LAN Clipboard Sync
"""
import os
import time
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Tuple

from clipsync.common.errors import InvalidConfigError
from clipsync.common.protocol import MAX_BUFFER_SIZE

logger = logging.getLogger(__name__)

# Network Settings
TCP_PORT = 8888
FALLBACK_TCP_PORTS = (8889, 8890, 8891, 8892, 8893)
UDP_PORT = 41234
BUFFER_SIZE = 65536

# Peer Discovery
DISCOVERY_MESSAGE = "CLIPBOARD_SYNC_DISCOVERY"
DISCOVERY_RESPONSE_PREFIX = "CLIPBOARD_SYNC_SERVER"
DISCOVERY_INTERVAL = 5.0  # seconds between discovery broadcasts

# Reconnection
RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY = 3.0

# Clipboard Polling
POLL_INTERVAL = 1.0  # seconds between clipboard checks
RESUME_DELAY = 0.5  # seconds detection stays paused after a synchronized write

# Payloads
MAX_IMAGE_SIZE = 1024 * 1024  # 1MB per image
HISTORY_SIZE = 10

# Security
ENCRYPTION_ALGORITHM = "aes-256-cbc"
DEFAULT_PASSWORD = "clipboard-sync-default-password"

MIN_PORT = 1024
MAX_PORT = 65535

# Paths
if os.name == 'nt':  # Windows
    TEMP_DIR = Path(os.environ.get('TEMP', 'C:/Temp')) / 'clipboard-sync'
else:  # macOS/Linux
    TEMP_DIR = Path('/tmp/clipboard-sync')

TEMP_FOLDER = 'clipboard_sync_temp'

# Logging
LOG_LEVEL = "INFO"
LOG_FILE = TEMP_DIR / "clipboard-sync.log"

# Cleanup settings
TEMP_FILE_MAX_AGE_HOURS = 1  # Delete received images older than this


def _check_port(name: str, port: int) -> None:
    if not isinstance(port, int) or isinstance(port, bool):
        raise InvalidConfigError(f"{name} must be an integer")
    if port < MIN_PORT or port > MAX_PORT:
        raise InvalidConfigError(f"{name} must be between {MIN_PORT} and {MAX_PORT}")


@dataclass(frozen=True)
class SyncConfig:
    """
    Protocol constants shared by every component.

    Instances are never mutated. The ``with_*`` helpers return a new,
    validated copy and raise InvalidConfigError on bad input.
    """

    tcp_port: int = TCP_PORT
    fallback_tcp_ports: Tuple[int, ...] = FALLBACK_TCP_PORTS
    udp_port: int = UDP_PORT
    discovery_interval: float = DISCOVERY_INTERVAL
    poll_interval: float = POLL_INTERVAL
    resume_delay: float = RESUME_DELAY
    max_image_size: int = MAX_IMAGE_SIZE
    history_size: int = HISTORY_SIZE
    discovery_message: str = DISCOVERY_MESSAGE
    discovery_response_prefix: str = DISCOVERY_RESPONSE_PREFIX
    default_password: str = DEFAULT_PASSWORD
    encryption_algorithm: str = ENCRYPTION_ALGORITHM
    reconnect_attempts: int = RECONNECT_ATTEMPTS
    reconnect_delay: float = RECONNECT_DELAY
    buffer_size: int = BUFFER_SIZE
    max_buffer_size: int = MAX_BUFFER_SIZE
    temp_dir: Path = field(default_factory=lambda: TEMP_DIR / TEMP_FOLDER)
    trusted_devices: Tuple[str, ...] = ()

    def validate(self) -> List[str]:
        """Return a list of problems, empty when the config is usable"""
        errors = []
        for name in ('tcp_port', 'udp_port'):
            try:
                _check_port(name, getattr(self, name))
            except InvalidConfigError as e:
                errors.append(str(e))
        for port in self.fallback_tcp_ports:
            try:
                _check_port('fallback_tcp_ports', port)
            except InvalidConfigError as e:
                errors.append(f"{e} (got {port})")
        if self.history_size < 1:
            errors.append("history_size must be at least 1")
        if self.max_image_size <= 0:
            errors.append("max_image_size must be positive")
        if self.poll_interval <= 0:
            errors.append("poll_interval must be positive")
        if self.discovery_interval <= 0:
            errors.append("discovery_interval must be positive")
        if self.reconnect_attempts < 0:
            errors.append("reconnect_attempts cannot be negative")
        if self.reconnect_delay < 0:
            errors.append("reconnect_delay cannot be negative")
        if not self.discovery_message or not self.discovery_response_prefix:
            errors.append("discovery strings cannot be empty")
        if self.discovery_message.startswith(self.discovery_response_prefix):
            errors.append("discovery_message must not start with discovery_response_prefix")
        return errors

    def with_tcp_port(self, port: int) -> 'SyncConfig':
        _check_port('TCP port', port)
        return replace(self, tcp_port=port)

    def with_udp_port(self, port: int) -> 'SyncConfig':
        _check_port('UDP port', port)
        return replace(self, udp_port=port)

    def with_history_size(self, size: int) -> 'SyncConfig':
        if not isinstance(size, int) or size < 1:
            raise InvalidConfigError("history_size must be a positive integer")
        return replace(self, history_size=size)

    def with_trusted_device(self, device_id: str) -> 'SyncConfig':
        """Add a device (IP address) to the trusted list"""
        if device_id in self.trusted_devices:
            return self
        return replace(self, trusted_devices=self.trusted_devices + (device_id,))

    def without_trusted_device(self, device_id: str) -> 'SyncConfig':
        return replace(
            self,
            trusted_devices=tuple(d for d in self.trusted_devices if d != device_id)
        )

    def is_trusted_device(self, device_id: str) -> bool:
        """An empty trusted list means every device is trusted"""
        return not self.trusted_devices or device_id in self.trusted_devices


def cleanup_old_temp_files(temp_dir: Path = None):
    """
    Clean up old received images from the temp directory.
    Called on startup to prevent disk space buildup.
    """
    temp_dir = temp_dir or SyncConfig().temp_dir
    if not temp_dir.exists():
        return

    try:
        max_age_seconds = TEMP_FILE_MAX_AGE_HOURS * 3600
        now = time.time()
        cleaned_count = 0
        cleaned_size = 0

        for item in temp_dir.iterdir():
            # Only clean image_* files written by the watcher
            if item.is_file() and item.name.startswith('image_'):
                try:
                    stat = item.stat()
                    if now - stat.st_mtime > max_age_seconds:
                        item.unlink()
                        cleaned_count += 1
                        cleaned_size += stat.st_size
                except OSError as e:
                    logger.debug(f"Could not clean {item}: {e}")

        if cleaned_count > 0:
            size_kb = cleaned_size / 1024
            logger.info(f"Cleaned up {cleaned_count} old image(s), freed {size_kb:.1f} KB")

    except OSError as e:
        logger.debug(f"Cleanup error: {e}")
