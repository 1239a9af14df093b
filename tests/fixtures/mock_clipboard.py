"""
Mock clipboard for cross-platform testing

Provides an in-memory clipboard backend that can be used in tests
without requiring actual clipboard access.
"""
from typing import List, Optional

from clipsync.platform.base import ClipboardBackend, FORMAT_TEXT, FORMAT_IMAGE


class MemoryClipboard(ClipboardBackend):
    """
    In-memory clipboard backend.

    Holds either text or an image, like a real clipboard. Writes are
    recorded so tests can check what the watcher wrote.
    """

    def __init__(self):
        self._text: str = ''
        self._image: Optional[bytes] = None
        self.fail_writes = False
        self.writes: List[tuple] = []

    def available_formats(self) -> List[str]:
        if self._image is not None:
            return [FORMAT_IMAGE]
        if self._text:
            return [FORMAT_TEXT]
        return []

    def read_text(self) -> str:
        return self._text

    def write_text(self, text: str) -> bool:
        if self.fail_writes:
            return False
        self._text = text
        self._image = None
        self.writes.append(('text', text))
        return True

    def read_image(self) -> Optional[bytes]:
        return self._image

    def write_image(self, png_bytes: bytes) -> bool:
        if self.fail_writes:
            return False
        self._image = png_bytes
        self._text = ''
        self.writes.append(('image', png_bytes))
        return True

    # Simulation methods for testing

    def simulate_text_copy(self, text: str):
        """Simulate user copying text"""
        self._text = text
        self._image = None

    def simulate_image_copy(self, image_data: bytes):
        """Simulate user copying an image"""
        self._image = image_data
        self._text = ''
