"""
Base classes for platform abstraction
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


FORMAT_TEXT = 'text/plain'
FORMAT_IMAGE = 'image/png'


@dataclass
class PlatformInfo:
    """Information about a platform"""
    name: str
    display_name: str
    copy_shortcut: str


class ClipboardBackend(ABC):
    """
    Abstract access to the system clipboard

    The watcher only needs to know which formats are present and to read
    and write text and PNG images.
    """

    @abstractmethod
    def available_formats(self) -> List[str]:
        """
        List the formats currently on the clipboard

        Returns:
            MIME-like names, e.g. ['text/plain'] or ['image/png']
        """
        pass

    @abstractmethod
    def read_text(self) -> str:
        """Read clipboard text ('' when there is none)"""
        pass

    @abstractmethod
    def write_text(self, text: str) -> bool:
        """
        Set text to clipboard

        Returns:
            True if successful
        """
        pass

    @abstractmethod
    def read_image(self) -> Optional[bytes]:
        """Read the clipboard image as PNG bytes, None when there is none"""
        pass

    @abstractmethod
    def write_image(self, png_bytes: bytes) -> bool:
        """
        Set image to clipboard

        Args:
            png_bytes: PNG image bytes

        Returns:
            True if successful
        """
        pass

    def has_image(self) -> bool:
        return any('image' in f for f in self.available_formats())

    def has_text(self) -> bool:
        return any('text' in f or 'string' in f for f in self.available_formats())


__all__ = ['ClipboardBackend', 'PlatformInfo', 'FORMAT_TEXT', 'FORMAT_IMAGE']
