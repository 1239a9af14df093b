"""
Protocol for clipboard sync

Every TCP frame is one line:

    hex(iv) ":" hex(ciphertext) "\\n"

The ciphertext decrypts to a JSON object with a ``type`` field and the
fields of that message type:

    auth             password
    auth_success     -
    auth_fail        error
    ping / pong      -
    clipboard_text   content, source, timestamp
    clipboard_image  imageData{content, width, height, format, size}, source, timestamp
"""
import time
import logging
from dataclasses import dataclass, asdict
from typing import List, Optional

from clipsync.common.crypto import EncryptionContext
from clipsync.common.errors import FormatError

logger = logging.getLogger(__name__)

FRAME_DELIMITER = b'\n'
MAX_BUFFER_SIZE = 16 * 1024 * 1024  # 16MB without a delimiter is a protocol error


class MessageType:
    """Message types for the protocol"""
    AUTH = 'auth'
    AUTH_SUCCESS = 'auth_success'
    AUTH_FAIL = 'auth_fail'
    PING = 'ping'
    PONG = 'pong'
    CLIPBOARD_TEXT = 'clipboard_text'
    CLIPBOARD_IMAGE = 'clipboard_image'

    ALL = frozenset({
        AUTH, AUTH_SUCCESS, AUTH_FAIL, PING, PONG, CLIPBOARD_TEXT, CLIPBOARD_IMAGE
    })


# Fields each message type must carry besides 'type'
REQUIRED_FIELDS = {
    MessageType.AUTH: ('password',),
    MessageType.AUTH_SUCCESS: (),
    MessageType.AUTH_FAIL: (),
    MessageType.PING: (),
    MessageType.PONG: (),
    MessageType.CLIPBOARD_TEXT: ('content',),
    MessageType.CLIPBOARD_IMAGE: ('imageData',),
}


@dataclass
class ImageData:
    """Image payload carried by clipboard_image messages"""
    content: str  # base64 PNG
    width: int
    height: int
    format: str = 'png'
    size: int = 0  # decoded byte length

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict):
        return cls(
            content=data['content'],
            width=int(data.get('width', 0)),
            height=int(data.get('height', 0)),
            format=data.get('format', 'png'),
            size=int(data.get('size', 0))
        )

    def summary(self) -> str:
        return f"[Image {self.width}x{self.height}]"


class MessageBuilder:
    """Build protocol messages (plain dicts, encrypted by FrameCodec)"""

    @staticmethod
    def build_auth(password: str) -> dict:
        return {'type': MessageType.AUTH, 'password': password}

    @staticmethod
    def build_auth_success() -> dict:
        return {'type': MessageType.AUTH_SUCCESS}

    @staticmethod
    def build_auth_fail(error: str) -> dict:
        return {'type': MessageType.AUTH_FAIL, 'error': error}

    @staticmethod
    def build_ping() -> dict:
        return {'type': MessageType.PING}

    @staticmethod
    def build_pong() -> dict:
        return {'type': MessageType.PONG}

    @staticmethod
    def build_text(content: str, source: str, timestamp: float = None) -> dict:
        return {
            'type': MessageType.CLIPBOARD_TEXT,
            'content': content,
            'source': source,
            'timestamp': timestamp if timestamp is not None else time.time()
        }

    @staticmethod
    def build_image(image: ImageData, source: str, timestamp: float = None) -> dict:
        return {
            'type': MessageType.CLIPBOARD_IMAGE,
            'imageData': image.to_dict(),
            'source': source,
            'timestamp': timestamp if timestamp is not None else time.time()
        }


def validate_message(message) -> dict:
    """
    Check a decrypted message has a known type and its required fields

    Raises:
        FormatError: If the message is not usable
    """
    if not isinstance(message, dict):
        raise FormatError(f"Message must be a JSON object, got {type(message).__name__}")

    msg_type = message.get('type')
    if msg_type not in MessageType.ALL:
        raise FormatError(f"Unknown message type: {msg_type!r}")

    missing = [k for k in REQUIRED_FIELDS[msg_type] if k not in message]
    if missing:
        raise FormatError(f"Missing keys for {msg_type}: {missing}")

    if msg_type == MessageType.CLIPBOARD_IMAGE:
        image = message['imageData']
        if not isinstance(image, dict) or 'content' not in image:
            raise FormatError("imageData must be an object with content")

    return message


class FrameCodec:
    """Encrypts messages into frames and back, with one password"""

    def __init__(self, password: str, encryption: EncryptionContext = None):
        self.password = password
        self.encryption = encryption or EncryptionContext()

    def encode(self, message: dict) -> bytes:
        """Encode a message as one encrypted, newline-terminated frame"""
        return self.encryption.encrypt_object(message, self.password).encode('ascii') + FRAME_DELIMITER

    def decode(self, frame: bytes) -> dict:
        """
        Decode one frame (without delimiter)

        Raises:
            FormatError: Malformed frame or message
            DecryptionError: Wrong password or corrupted ciphertext
        """
        try:
            text = frame.decode('ascii').strip()
        except UnicodeDecodeError:
            raise FormatError("Frame contains non-ASCII bytes")
        message = self.encryption.decrypt_object(text, self.password)
        return validate_message(message)


class MessageParser:
    """Split a byte stream into frames"""

    def __init__(self, max_buffer_size: int = MAX_BUFFER_SIZE):
        self.buffer = bytearray()
        self.max_buffer_size = max_buffer_size

    def feed(self, data: bytes):
        """
        Feed data into the parser buffer

        Raises:
            FormatError: If the buffer grows past the limit without a delimiter
        """
        self.buffer.extend(data)
        if len(self.buffer) > self.max_buffer_size and FRAME_DELIMITER not in self.buffer:
            self.buffer.clear()
            raise FormatError(f"Frame exceeds {self.max_buffer_size} bytes")

    def parse_one(self) -> Optional[bytes]:
        """
        Pop one complete frame from the buffer

        Returns: frame bytes without delimiter, or None if incomplete
        """
        while True:
            index = self.buffer.find(FRAME_DELIMITER)
            if index == -1:
                return None
            frame = bytes(self.buffer[:index])
            del self.buffer[:index + 1]
            if frame.strip():
                return frame

    def parse_all(self) -> List[bytes]:
        frames = []
        while True:
            frame = self.parse_one()
            if frame is None:
                return frames
            frames.append(frame)
