"""
Clipboard watcher

Polls the clipboard backend and reports local changes. Writes coming
from peers go through write_clipboard(), which suppresses detection for
a short window so a synchronized value is not echoed back.
"""
import io
import time
import base64
import binascii
import logging
import threading
from pathlib import Path
from dataclasses import dataclass
from typing import Callable, Optional

from PIL import Image, UnidentifiedImageError

from clipsync.config import SyncConfig
from clipsync.common.crypto import hash_bytes
from clipsync.common.errors import ClipSyncError, PersistenceError
from clipsync.common.history import ClipboardEntry, HistoryStore, IMAGE, TEXT
from clipsync.common.netutils import get_hostname
from clipsync.common.protocol import ImageData
from clipsync.platform.base import ClipboardBackend

logger = logging.getLogger(__name__)


@dataclass
class ClipboardChange:
    """A local clipboard change, ready to be sent to peers"""
    content: str  # text, or base64 PNG for images
    type: str
    source: str
    timestamp: float
    image: Optional[ImageData] = None


class ClipboardWatcher:
    """Detects local clipboard changes and applies remote ones"""

    def __init__(self, backend: ClipboardBackend, history: HistoryStore,
                 config: SyncConfig = None):
        self.backend = backend
        self.history = history
        self.config = config or SyncConfig()
        self.on_change: Optional[Callable[[ClipboardChange], None]] = None

        self.enabled = True
        self.paused = False

        # Last text seen or written, or the MD5 of the last image
        self._last_content = ''
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._resume_timer: Optional[threading.Timer] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, on_change: Callable[[ClipboardChange], None]):
        """
        Start polling the clipboard

        The current clipboard text only primes the change marker, it is
        not reported.
        """
        if self.running:
            self.stop()

        self.on_change = on_change
        try:
            with self._lock:
                self._last_content = self.backend.read_text()
        except Exception as e:
            logger.error(f"Initial clipboard read failed: {e}")

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, daemon=True)
        self._thread.start()
        logger.info(f"Clipboard watcher started (every {self.config.poll_interval}s)")

    def stop(self):
        self._stop_event.set()
        if self._resume_timer:
            # The pause belonged to a guarded write, end it with the timer
            self._resume_timer.cancel()
            self._resume_timer = None
            self.resume()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=2)
        if self._thread:
            self._thread = None
            logger.info("Clipboard watcher stopped")

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def enable(self):
        self.enabled = True

    def disable(self):
        self.enabled = False

    def _poll_loop(self):
        while not self._stop_event.wait(self.config.poll_interval):
            try:
                self.check_clipboard()
            except Exception as e:
                logger.error(f"Error checking clipboard: {e}")

    def check_clipboard(self) -> Optional[ClipboardChange]:
        """
        Run one poll tick

        Returns:
            The change that was reported, if any
        """
        if not self.enabled or self.paused:
            return None

        if self.backend.has_image():
            return self._check_image()
        if self.backend.has_text():
            return self._check_text()
        return None

    def _check_text(self) -> Optional[ClipboardChange]:
        text = self.backend.read_text()
        with self._lock:
            if not text or text == self._last_content:
                return None
            self._last_content = text

        change = ClipboardChange(
            content=text,
            type=TEXT,
            source=get_hostname(),
            timestamp=time.time()
        )
        self.history.add(ClipboardEntry(
            content=text,
            type=TEXT,
            source=change.source,
            timestamp=change.timestamp
        ))
        logger.debug(f"Text clipboard changed ({len(text)} chars)")
        self._emit(change)
        return change

    def _check_image(self) -> Optional[ClipboardChange]:
        png = self.backend.read_image()
        if not png:
            return None

        image_hash = hash_bytes(png)
        with self._lock:
            if image_hash == self._last_content:
                return None
            self._last_content = image_hash

        try:
            with Image.open(io.BytesIO(png)) as img:
                width, height = img.size
        except (UnidentifiedImageError, OSError) as e:
            logger.warning(f"Clipboard image could not be read: {e}")
            return None

        image = ImageData(
            content=base64.b64encode(png).decode('ascii'),
            width=width,
            height=height,
            format='png',
            size=len(png)
        )
        change = ClipboardChange(
            content=image.content,
            type=IMAGE,
            source=get_hostname(),
            timestamp=time.time(),
            image=image
        )
        # Only metadata goes into history
        self.history.add(ClipboardEntry(
            content=image.summary(),
            type=IMAGE,
            source=change.source,
            timestamp=change.timestamp
        ))
        logger.debug(f"Image clipboard changed ({width}x{height}, {len(png)} bytes)")
        self._emit(change)
        return change

    def _emit(self, change: ClipboardChange):
        if self.on_change:
            self.on_change(change)

    def write_clipboard(self, content: str, type: str = TEXT):
        """
        Write a value received from a peer

        Detection is paused during the write and for resume_delay
        afterwards, and the marker is set to the written value so the next
        tick does not report it.

        Raises:
            ClipSyncError: If the backend refuses the write
        """
        was_paused = self.paused
        self.pause()
        try:
            if type == IMAGE:
                try:
                    png = base64.b64decode(content, validate=True)
                except (binascii.Error, ValueError) as e:
                    raise ClipSyncError(f"Invalid image data: {e}")
                ok = self.backend.write_image(png)
                marker = hash_bytes(png)
            else:
                ok = self.backend.write_text(content)
                marker = content
            if not ok:
                raise ClipSyncError(f"Clipboard backend rejected {type} write")
            with self._lock:
                self._last_content = marker
        except Exception as e:
            logger.error(f"Failed to write to clipboard: {e}")
            raise
        finally:
            if not was_paused:
                self._schedule_resume()

    def _schedule_resume(self):
        if self._resume_timer:
            self._resume_timer.cancel()
        self._resume_timer = threading.Timer(self.config.resume_delay, self.resume)
        self._resume_timer.daemon = True
        self._resume_timer.start()

    def save_image(self, image: ImageData) -> Path:
        """
        Write a received image into the temp folder

        Raises:
            PersistenceError: If decoding or writing fails
        """
        temp_dir = Path(self.config.temp_dir)
        file_path = temp_dir / f"image_{int(time.time() * 1000)}.{image.format or 'png'}"
        try:
            data = base64.b64decode(image.content)
            temp_dir.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(data)
        except (binascii.Error, ValueError, OSError) as e:
            raise PersistenceError(f"Failed to save image: {e}")

        logger.info(f"Saved received image to {file_path}")
        return file_path
