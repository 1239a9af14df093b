"""
System clipboard backend

Text goes through pyperclip on every platform. Images are read with
Pillow's ImageGrab and written with the platform's clipboard tool
(wl-copy/xclip on Linux, osascript on macOS, PowerShell on Windows).
"""
import io
import os
import sys
import shutil
import logging
import tempfile
import subprocess
from typing import List, Optional

import pyperclip
from PIL import Image, ImageGrab

from clipsync.platform.base import ClipboardBackend, FORMAT_TEXT, FORMAT_IMAGE

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 2.0


def _run_command(command: List[str], data: bytes = None) -> Optional[bytes]:
    try:
        result = subprocess.run(
            command,
            input=data,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=True,
            timeout=COMMAND_TIMEOUT,
        )
        return result.stdout
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError) as e:
        logger.debug(f"Clipboard command {command[0]} failed: {e}")
        return None


class SystemClipboard(ClipboardBackend):
    """Clipboard of the machine this process runs on"""

    def __init__(self):
        self._platform = sys.platform

    def available_formats(self) -> List[str]:
        if self._platform.startswith('linux'):
            targets = self._linux_targets()
            if targets is not None:
                formats = []
                if any(t.startswith('image/') for t in targets):
                    formats.append(FORMAT_IMAGE)
                if any('text' in t.lower() or 'string' in t.lower() for t in targets):
                    formats.append(FORMAT_TEXT)
                return formats

        formats = []
        if self._grab_image() is not None:
            formats.append(FORMAT_IMAGE)
        if self.read_text():
            formats.append(FORMAT_TEXT)
        return formats

    def _linux_targets(self) -> Optional[List[str]]:
        """Clipboard targets from wl-paste or xclip, None when neither exists"""
        if os.environ.get('WAYLAND_DISPLAY') and shutil.which('wl-paste'):
            output = _run_command(['wl-paste', '--list-types'])
        elif shutil.which('xclip'):
            output = _run_command(['xclip', '-selection', 'clipboard', '-t', 'TARGETS', '-o'])
        else:
            return None
        if output is None:
            return []
        return [line.strip() for line in output.decode('utf-8', errors='ignore').splitlines() if line.strip()]

    def read_text(self) -> str:
        try:
            return pyperclip.paste() or ''
        except pyperclip.PyperclipException as e:
            logger.error(f"Failed to read clipboard text: {e}")
            return ''

    def write_text(self, text: str) -> bool:
        try:
            pyperclip.copy(text)
            logger.info(f"Set text to clipboard ({len(text)} chars)")
            return True
        except pyperclip.PyperclipException as e:
            logger.error(f"Failed to set clipboard text: {e}")
            return False

    def _grab_image(self) -> Optional[Image.Image]:
        try:
            data = ImageGrab.grabclipboard()
        except (OSError, NotImplementedError) as e:
            logger.debug(f"ImageGrab unavailable: {e}")
            return None
        # A list means files were copied, not image data
        if isinstance(data, Image.Image):
            return data
        return None

    def read_image(self) -> Optional[bytes]:
        image = self._grab_image()
        if image is None:
            return None
        buffer = io.BytesIO()
        image.save(buffer, format='PNG')
        return buffer.getvalue()

    def write_image(self, png_bytes: bytes) -> bool:
        if self._platform.startswith('linux'):
            ok = self._write_image_linux(png_bytes)
        else:
            ok = self._write_image_via_file(png_bytes)

        if ok:
            logger.info(f"Set image to clipboard ({len(png_bytes)} bytes)")
        else:
            logger.error("Failed to set clipboard image")
        return ok

    def _write_image_linux(self, png_bytes: bytes) -> bool:
        if os.environ.get('WAYLAND_DISPLAY') and shutil.which('wl-copy'):
            return _run_command(['wl-copy', '--type', FORMAT_IMAGE], png_bytes) is not None
        if shutil.which('xclip'):
            return _run_command(
                ['xclip', '-selection', 'clipboard', '-t', FORMAT_IMAGE, '-i'], png_bytes
            ) is not None
        logger.warning("Neither wl-copy nor xclip is installed")
        return False

    def _write_image_via_file(self, png_bytes: bytes) -> bool:
        fd, path = tempfile.mkstemp(suffix='.png', prefix='clipsync_')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(png_bytes)

            if self._platform == 'darwin':
                script = f'set the clipboard to (read (POSIX file "{path}") as «class PNGf»)'
                command = ['osascript', '-e', script]
            elif self._platform == 'win32':
                script = (
                    "Add-Type -AssemblyName System.Windows.Forms; "
                    "Add-Type -AssemblyName System.Drawing; "
                    f"[System.Windows.Forms.Clipboard]::SetImage([System.Drawing.Image]::FromFile('{path}'))"
                )
                command = ['powershell', '-NoProfile', '-STA', '-Command', script]
            else:
                logger.warning(f"Image clipboard not supported on {self._platform}")
                return False

            return _run_command(command) is not None
        finally:
            try:
                os.unlink(path)
            except OSError:
                pass
