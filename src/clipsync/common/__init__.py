"""Common modules for clipboard sync"""
from .errors import (
    ClipSyncError,
    FormatError,
    DecryptionError,
    AuthenticationError,
    PortInUseError,
    PeerConnectionError,
    PayloadTooLargeError,
    PersistenceError,
    InvalidConfigError,
)
from .crypto import EncryptionContext
from .protocol import MessageType, MessageBuilder, MessageParser, FrameCodec, ImageData
from .history import ClipboardEntry, HistoryStore

__all__ = [
    'ClipSyncError',
    'FormatError',
    'DecryptionError',
    'AuthenticationError',
    'PortInUseError',
    'PeerConnectionError',
    'PayloadTooLargeError',
    'PersistenceError',
    'InvalidConfigError',
    'EncryptionContext',
    'MessageType',
    'MessageBuilder',
    'MessageParser',
    'FrameCodec',
    'ImageData',
    'ClipboardEntry',
    'HistoryStore',
]
