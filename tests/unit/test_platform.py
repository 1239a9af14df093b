"""
Unit tests for the platform layer - System clipboard backend
"""
import io
import subprocess

import pytest
import pyperclip
from PIL import Image

from clipsync.platform import get_clipboard_backend, get_platform_info
from clipsync.platform import system
from clipsync.platform.base import FORMAT_IMAGE, FORMAT_TEXT
from clipsync.platform.system import SystemClipboard


class FakeRun:
    """Stands in for subprocess.run and records the commands"""

    def __init__(self, stdout=b"", fail=False):
        self.calls = []
        self.stdout = stdout
        self.fail = fail

    def __call__(self, command, input=None, **kwargs):
        self.calls.append((command, input))
        if self.fail:
            raise subprocess.CalledProcessError(1, command)
        return subprocess.CompletedProcess(command, 0, stdout=self.stdout, stderr=b"")


@pytest.fixture
def linux_clipboard(monkeypatch):
    monkeypatch.delenv("WAYLAND_DISPLAY", raising=False)
    monkeypatch.setattr(system.shutil, "which", lambda name: f"/usr/bin/{name}" if name.startswith("xclip") else None)
    backend = SystemClipboard()
    backend._platform = "linux"
    return backend


class TestPlatformInfo:
    def test_info(self):
        info = get_platform_info()
        assert info.name in ("linux", "macos", "windows")
        assert info.copy_shortcut

    def test_default_backend(self):
        assert isinstance(get_clipboard_backend(), SystemClipboard)


class TestText:
    def test_write_text(self, monkeypatch):
        copied = []
        monkeypatch.setattr(pyperclip, "copy", copied.append)
        assert SystemClipboard().write_text("hello") is True
        assert copied == ["hello"]

    def test_read_text(self, monkeypatch):
        monkeypatch.setattr(pyperclip, "paste", lambda: "pasted")
        assert SystemClipboard().read_text() == "pasted"

    def test_read_text_failure(self, monkeypatch):
        def broken():
            raise pyperclip.PyperclipException("no clipboard mechanism")
        monkeypatch.setattr(pyperclip, "paste", broken)
        assert SystemClipboard().read_text() == ""

    def test_write_text_failure(self, monkeypatch):
        def broken(text):
            raise pyperclip.PyperclipException("no clipboard mechanism")
        monkeypatch.setattr(pyperclip, "copy", broken)
        assert SystemClipboard().write_text("x") is False


class TestImages:
    def test_read_image_as_png(self, monkeypatch):
        monkeypatch.setattr(system.ImageGrab, "grabclipboard", lambda: Image.new("RGB", (5, 2)))
        png = SystemClipboard().read_image()
        with Image.open(io.BytesIO(png)) as img:
            assert img.size == (5, 2)
            assert img.format == "PNG"

    def test_file_list_is_not_an_image(self, monkeypatch):
        monkeypatch.setattr(system.ImageGrab, "grabclipboard", lambda: ["/tmp/a.png"])
        assert SystemClipboard().read_image() is None

    def test_grab_unavailable(self, monkeypatch):
        def broken():
            raise NotImplementedError("ImageGrab.grabclipboard() is not supported")
        monkeypatch.setattr(system.ImageGrab, "grabclipboard", broken)
        assert SystemClipboard().read_image() is None

    def test_write_image_with_xclip(self, linux_clipboard, monkeypatch, sample_image_bytes):
        run = FakeRun()
        monkeypatch.setattr(system.subprocess, "run", run)
        assert linux_clipboard.write_image(sample_image_bytes) is True
        command, data = run.calls[0]
        assert command[:2] == ["xclip", "-selection"]
        assert FORMAT_IMAGE in command
        assert data == sample_image_bytes

    def test_write_image_failure(self, linux_clipboard, monkeypatch, sample_image_bytes):
        monkeypatch.setattr(system.subprocess, "run", FakeRun(fail=True))
        assert linux_clipboard.write_image(sample_image_bytes) is False

    def test_write_image_without_tools(self, monkeypatch, sample_image_bytes):
        monkeypatch.delenv("WAYLAND_DISPLAY", raising=False)
        monkeypatch.setattr(system.shutil, "which", lambda name: None)
        backend = SystemClipboard()
        backend._platform = "linux"
        assert backend.write_image(sample_image_bytes) is False


class TestFormats:
    def test_linux_targets(self, linux_clipboard, monkeypatch):
        monkeypatch.setattr(system.subprocess, "run", FakeRun(stdout=b"TARGETS\nimage/png\nUTF8_STRING\n"))
        assert linux_clipboard.available_formats() == [FORMAT_IMAGE, FORMAT_TEXT]

    def test_linux_text_only(self, linux_clipboard, monkeypatch):
        monkeypatch.setattr(system.subprocess, "run", FakeRun(stdout=b"TARGETS\nUTF8_STRING\ntext/plain\n"))
        assert linux_clipboard.available_formats() == [FORMAT_TEXT]
        assert linux_clipboard.has_text()
        assert not linux_clipboard.has_image()
