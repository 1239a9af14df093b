"""
TCP client side of the sync transport

Connects to a server, authenticates with the shared password and
relays clipboard messages. Lost connections are retried a bounded
number of times; an authentication failure is never retried.
"""
import socket
import logging
import threading
from dataclasses import dataclass
from typing import Optional

from clipsync.config import SyncConfig
from clipsync.common.crypto import EncryptionContext
from clipsync.common.errors import DecryptionError, FormatError
from clipsync.common.protocol import (
    FrameCodec,
    MessageBuilder,
    MessageParser,
    MessageType,
)

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 5.0

# Why a connection attempt ended
_CLOSED = 'closed'
_AUTH_FAILED = 'auth_failed'
_STOPPED = 'stopped'


class ClientListener:
    """
    Receives client events. All methods are no-ops by default.

    Methods are called from the connection thread.
    """

    def on_message(self, message: dict):
        pass

    def on_connected(self):
        """Called once the server accepted the password"""
        pass

    def on_disconnected(self):
        pass

    def on_reconnect_exhausted(self):
        """Called when the client gives up reconnecting"""
        pass

    def on_auth_failed(self, reason: str):
        pass


@dataclass
class ConnectionState:
    """Client connection and reconnect bookkeeping"""
    connected: bool = False
    authenticated: bool = False
    reconnect_attempts: int = 0
    max_reconnect_attempts: int = 5
    reconnect_delay: float = 3.0
    host: Optional[str] = None
    port: Optional[int] = None
    password: Optional[str] = None


class TransportClient:
    """Maintains one authenticated connection to a server"""

    def __init__(self, config: SyncConfig = None, encryption: EncryptionContext = None):
        self.config = config or SyncConfig()
        self.encryption = encryption or EncryptionContext(self.config.encryption_algorithm)
        self.state = ConnectionState(
            max_reconnect_attempts=self.config.reconnect_attempts,
            reconnect_delay=self.config.reconnect_delay
        )
        self.listener: ClientListener = ClientListener()

        self._codec: Optional[FrameCodec] = None
        self._socket: Optional[socket.socket] = None
        self._send_lock = threading.Lock()
        # Guards which connection thread is current and owns _socket
        self._session_lock = threading.Lock()
        # One event per connection thread, set once and never cleared
        self._stop_event = threading.Event()
        self._stop_event.set()
        self._thread: Optional[threading.Thread] = None

    def connect(self, host: str, port: int, password: str, listener: ClientListener = None):
        """
        Connect to a server in the background

        Any previous connection is closed first. Progress is reported
        through the listener.
        """
        if self._thread and self._thread.is_alive():
            self.disconnect()

        self.state.host = host
        self.state.port = port or self.config.tcp_port
        self.state.password = password or self.config.default_password
        self.state.reconnect_attempts = 0
        self.listener = listener or ClientListener()
        self._codec = FrameCodec(self.state.password, self.encryption)

        stop_event = threading.Event()
        with self._session_lock:
            self._stop_event = stop_event

        self._thread = threading.Thread(
            target=self._connection_loop,
            args=(stop_event,),
            daemon=True
        )
        self._thread.start()

    def disconnect(self):
        """Close the connection and stop reconnecting"""
        with self._session_lock:
            self._stop_event.set()
            sock = self._socket
            self._socket = None
        self.state.reconnect_attempts = self.state.max_reconnect_attempts

        if sock:
            try:
                sock.close()
            except OSError as e:
                logger.debug(f"Error closing client socket: {e}")

        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=2)
        self._thread = None
        self.state.connected = False
        self.state.authenticated = False

    @property
    def active(self) -> bool:
        """True while connecting, connected or waiting to reconnect"""
        return self._thread is not None and self._thread.is_alive()

    def is_connected(self) -> bool:
        """True only after the server accepted the password"""
        return self.state.connected and self.state.authenticated

    def _connection_loop(self, stop_event: threading.Event):
        host, port = self.state.host, self.state.port
        server = f"{host}:{port}"
        while not stop_event.is_set():
            logger.info(f"Connecting to {server}...")

            try:
                sock = socket.create_connection((host, port), timeout=CONNECT_TIMEOUT)
            except OSError as e:
                if not stop_event.is_set():
                    logger.error(f"Connection error: {e}")
                outcome = _CLOSED
            else:
                outcome = self._run_session(sock, stop_event)

            # A superseded thread must not touch the shared state
            if outcome in (_AUTH_FAILED, _STOPPED) or stop_event.is_set():
                break

            self.state.reconnect_attempts += 1
            if self.state.reconnect_attempts >= self.state.max_reconnect_attempts:
                logger.error(f"Giving up on {server} after {self.state.reconnect_attempts} failed attempts")
                self._notify('on_reconnect_exhausted')
                break

            logger.info(
                f"Reconnection attempt {self.state.reconnect_attempts}/"
                f"{self.state.max_reconnect_attempts} in {self.state.reconnect_delay}s..."
            )
            if stop_event.wait(self.state.reconnect_delay):
                break

    def _run_session(self, sock: socket.socket, stop_event: threading.Event) -> str:
        """Authenticate and read from an open socket until it closes"""
        with self._session_lock:
            if stop_event.is_set():
                sock.close()
                return _STOPPED
            self._socket = sock
        self.state.connected = True
        self.state.reconnect_attempts = 0
        logger.info("Connected to server")

        outcome = _CLOSED
        try:
            sock.settimeout(1.0)  # For clean shutdown
            self._send(MessageBuilder.build_auth(self.state.password))
            outcome = self._receive_loop(sock, stop_event)
        except FormatError as e:
            logger.warning(f"Protocol error from server: {e}")
        except OSError as e:
            if not stop_event.is_set():
                logger.error(f"Connection error: {e}")
        finally:
            with self._session_lock:
                current = stop_event is self._stop_event
                if self._socket is sock:
                    self._socket = None
            try:
                sock.close()
            except OSError:
                pass
            logger.info("Connection closed")
            if current:
                self.state.connected = False
                self.state.authenticated = False
                self._notify('on_disconnected')

        return outcome

    def _receive_loop(self, sock: socket.socket, stop_event: threading.Event) -> str:
        parser = MessageParser(self.config.max_buffer_size)
        while not stop_event.is_set():
            try:
                data = sock.recv(self.config.buffer_size)
            except socket.timeout:
                continue
            if not data:
                return _CLOSED

            parser.feed(data)
            for frame in parser.parse_all():
                if not self._handle_frame(frame):
                    return _AUTH_FAILED
        return _STOPPED

    def _handle_frame(self, frame: bytes) -> bool:
        """Process one frame. Returns False when authentication failed."""
        try:
            message = self._codec.decode(frame)
        except (FormatError, DecryptionError) as e:
            if not self.state.authenticated:
                # The server encrypts with a different password
                logger.error(f"Cannot read server reply, passwords differ: {e}")
                self._notify('on_auth_failed', str(e))
                return False
            logger.warning(f"Failed to process message: {e}")
            return True

        msg_type = message['type']
        if msg_type == MessageType.AUTH_SUCCESS:
            self.state.authenticated = True
            logger.info("Authentication successful")
            self._notify('on_connected')
        elif msg_type == MessageType.AUTH_FAIL:
            reason = message.get('error', 'unknown error')
            logger.error(f"Authentication failed: {reason}")
            self._notify('on_auth_failed', reason)
            return False
        elif msg_type == MessageType.PONG:
            logger.debug("Received pong from server")
        elif msg_type == MessageType.PING:
            self._send(MessageBuilder.build_pong())
        elif self.state.authenticated:
            self._notify('on_message', message)
        else:
            logger.warning(f"Ignoring {msg_type} before authentication")
        return True

    def _notify(self, event: str, *args):
        try:
            getattr(self.listener, event)(*args)
        except Exception as e:
            logger.error(f"Listener {event} failed: {e}")

    def _send(self, message: dict):
        sock = self._socket
        if not sock:
            raise OSError("Not connected to server")
        frame = self._codec.encode(message)
        with self._send_lock:
            sock.sendall(frame)

    def send_message(self, message: dict) -> bool:
        """
        Send a message to the server

        Returns:
            True if sent, False when not connected or the send failed
        """
        if not self.is_connected():
            logger.warning("Not connected to server")
            return False
        try:
            self._send(message)
            return True
        except OSError as e:
            logger.error(f"Failed to send message: {e}")
            return False

    def send_ping(self) -> bool:
        return self.send_message(MessageBuilder.build_ping())

    def get_status(self) -> dict:
        server = f"{self.state.host}:{self.state.port}" if self.state.host else None
        return {
            'connected': self.state.connected,
            'authenticated': self.state.authenticated,
            'server': server,
            'reconnect_attempts': self.state.reconnect_attempts
        }
