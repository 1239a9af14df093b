"""
Errors and User-Friendly Error Messages

Defines the exception hierarchy raised by the sync engine and maps
failures to clear, actionable messages for the command line.
"""
from enum import Enum
from dataclasses import dataclass
from typing import Optional


class ClipSyncError(Exception):
    """Base class for all clipboard sync errors"""


class FormatError(ClipSyncError):
    """Encrypted frame is not in the iv:ciphertext format"""


class DecryptionError(ClipSyncError):
    """Frame could not be decrypted (wrong password or corrupted data)"""


class AuthenticationError(ClipSyncError):
    """Password handshake failed"""


class PortInUseError(ClipSyncError):
    """No candidate TCP port could be bound"""

    def __init__(self, ports):
        self.ports = tuple(ports)
        super().__init__(f"All ports in use: {', '.join(str(p) for p in self.ports)}")


class PeerConnectionError(ClipSyncError, ConnectionError):
    """Socket-level failure talking to a peer"""


class PayloadTooLargeError(ClipSyncError):
    """Clipboard payload exceeds the transfer cap"""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Payload of {size} bytes exceeds limit of {limit} bytes")


class PersistenceError(ClipSyncError):
    """Received image could not be written to disk"""


class InvalidConfigError(ClipSyncError, ValueError):
    """Configuration value outside its allowed range"""


@dataclass
class UserError:
    """User-friendly error with message and suggestion"""
    message: str
    suggestion: str
    code: str = ""

    def __str__(self) -> str:
        result = f"Error: {self.message}"
        if self.suggestion:
            result += f"\n  Suggestion: {self.suggestion}"
        return result

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "suggestion": self.suggestion
        }


class ErrorCode(Enum):
    """Error codes for categorization"""
    # Network errors
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_TIMEOUT = "connection_timeout"
    NETWORK_UNREACHABLE = "network_unreachable"
    RECONNECT_EXHAUSTED = "reconnect_exhausted"
    PORT_IN_USE = "port_in_use"

    # Security errors
    AUTH_FAILED = "auth_failed"
    DECRYPTION_FAILED = "decryption_failed"
    INVALID_FORMAT = "invalid_format"

    # Payload errors
    PAYLOAD_TOO_LARGE = "payload_too_large"
    PERSISTENCE_FAILED = "persistence_failed"

    # Configuration errors
    INVALID_CONFIG = "invalid_config"

    # General
    UNKNOWN = "unknown"


ERROR_MESSAGES = {
    ErrorCode.CONNECTION_REFUSED: UserError(
        code="connection_refused",
        message="Connection was refused by the server",
        suggestion="Make sure clipsync is running in server mode on the other device"
    ),

    ErrorCode.CONNECTION_TIMEOUT: UserError(
        code="connection_timeout",
        message="Connection timed out while trying to reach the server",
        suggestion="Check your network connection and firewall settings (TCP 8888 and UDP 41234 must be open)"
    ),

    ErrorCode.NETWORK_UNREACHABLE: UserError(
        code="network_unreachable",
        message="Cannot reach the server on the network",
        suggestion="Verify both devices are connected to the same local network"
    ),

    ErrorCode.RECONNECT_EXHAUSTED: UserError(
        code="reconnect_exhausted",
        message="Gave up reconnecting to the server",
        suggestion="Restart the client once the server is reachable again"
    ),

    ErrorCode.PORT_IN_USE: UserError(
        code="port_in_use",
        message="The sync port and all fallback ports are already in use",
        suggestion="Another instance may be running. Stop it or choose a different port with '--port'"
    ),

    ErrorCode.AUTH_FAILED: UserError(
        code="auth_failed",
        message="Authentication with the server failed",
        suggestion="Use the same password on every device ('--password')"
    ),

    ErrorCode.DECRYPTION_FAILED: UserError(
        code="decryption_failed",
        message="A message could not be decrypted",
        suggestion="Passwords probably differ between devices"
    ),

    ErrorCode.INVALID_FORMAT: UserError(
        code="invalid_format",
        message="Received data is not a valid encrypted message",
        suggestion="Ensure both devices are running the same version of clipsync"
    ),

    ErrorCode.PAYLOAD_TOO_LARGE: UserError(
        code="payload_too_large",
        message="Clipboard image exceeds the maximum transfer size (1 MB)",
        suggestion="Copy a smaller or more compressed image"
    ),

    ErrorCode.PERSISTENCE_FAILED: UserError(
        code="persistence_failed",
        message="Could not save the received image",
        suggestion="Check free disk space and permissions of the temp directory"
    ),

    ErrorCode.INVALID_CONFIG: UserError(
        code="invalid_config",
        message="Configuration contains an invalid value",
        suggestion="Ports must be between 1024 and 65535 and the history size must be positive"
    ),

    ErrorCode.UNKNOWN: UserError(
        code="unknown",
        message="An unexpected error occurred",
        suggestion="Check the log file in the temp directory for more details"
    ),
}


def get_error(code: ErrorCode) -> UserError:
    """Get user-friendly error for a given error code"""
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES[ErrorCode.UNKNOWN])


def get_error_from_exception(exc: Exception) -> UserError:
    """Map exceptions to user-friendly errors"""
    if isinstance(exc, PortInUseError):
        return get_error(ErrorCode.PORT_IN_USE)
    if isinstance(exc, AuthenticationError):
        return get_error(ErrorCode.AUTH_FAILED)
    if isinstance(exc, DecryptionError):
        return get_error(ErrorCode.DECRYPTION_FAILED)
    if isinstance(exc, FormatError):
        return get_error(ErrorCode.INVALID_FORMAT)
    if isinstance(exc, PayloadTooLargeError):
        return get_error(ErrorCode.PAYLOAD_TOO_LARGE)
    if isinstance(exc, PersistenceError):
        return get_error(ErrorCode.PERSISTENCE_FAILED)
    if isinstance(exc, InvalidConfigError):
        return get_error(ErrorCode.INVALID_CONFIG)

    exc_str = str(exc).lower()

    if isinstance(exc, ConnectionRefusedError) or "connection refused" in exc_str:
        return get_error(ErrorCode.CONNECTION_REFUSED)
    if "timed out" in exc_str or "timeout" in exc_str:
        return get_error(ErrorCode.CONNECTION_TIMEOUT)
    if "network is unreachable" in exc_str:
        return get_error(ErrorCode.NETWORK_UNREACHABLE)
    if "address already in use" in exc_str:
        return get_error(ErrorCode.PORT_IN_USE)

    error = get_error(ErrorCode.UNKNOWN)
    # Include original exception type for debugging
    return UserError(
        code=error.code,
        message=f"{error.message}: {type(exc).__name__}",
        suggestion=error.suggestion
    )


def format_error(code: ErrorCode, details: Optional[str] = None) -> str:
    """Format error message for display"""
    error = get_error(code)
    result = str(error)
    if details:
        result = f"{result}\n  Details: {details}"
    return result
