"""
Platform abstraction layer with auto-detection

Provides the clipboard backend and display details for the current platform.
"""
import sys

from .base import ClipboardBackend, PlatformInfo

_PLATFORM = sys.platform

if _PLATFORM == "win32":
    _platform_info = PlatformInfo(
        name="windows",
        display_name="Windows",
        copy_shortcut="Ctrl+C",
    )
elif _PLATFORM == "darwin":
    _platform_info = PlatformInfo(
        name="macos",
        display_name="macOS",
        copy_shortcut="Cmd+C",
    )
else:
    _platform_info = PlatformInfo(
        name="linux",
        display_name="Linux",
        copy_shortcut="Ctrl+C",
    )


def get_platform_info() -> PlatformInfo:
    """Get information about the current platform"""
    return _platform_info


def get_clipboard_backend() -> ClipboardBackend:
    """Create the clipboard backend for the current platform"""
    from .system import SystemClipboard
    return SystemClipboard()


__all__ = [
    'ClipboardBackend',
    'PlatformInfo',
    'get_platform_info',
    'get_clipboard_backend',
]
