"""
TCP server side of the sync transport

Accepts peers, runs the password handshake and relays clipboard
messages. Each connection moves through:

    unauthenticated --AUTH(correct password)--> authenticated --close--> removed

Anything other than a correct AUTH on an unauthenticated connection
closes it.
"""
import hmac
import socket
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from clipsync.config import SyncConfig
from clipsync.common.crypto import EncryptionContext
from clipsync.common.errors import (
    AuthenticationError,
    DecryptionError,
    FormatError,
    PortInUseError,
)
from clipsync.common.protocol import (
    FrameCodec,
    MessageBuilder,
    MessageParser,
    MessageType,
)

logger = logging.getLogger(__name__)

ACCEPT_BACKLOG = 5


class ServerListener:
    """
    Receives server events. All methods are no-ops by default.

    Methods are called from connection threads, never while a server lock
    is held.
    """

    def on_message(self, client_id: str, message: dict):
        pass

    def on_client_connected(self, client_id: str):
        pass

    def on_client_disconnected(self, client_id: str):
        pass


@dataclass
class ClientConnection:
    """Server-side state of one accepted socket"""
    id: str
    socket: socket.socket
    address: str
    authenticated: bool = False
    parser: MessageParser = field(default_factory=MessageParser)
    send_lock: threading.Lock = field(default_factory=threading.Lock)


class TransportServer:
    """Accepts client connections and exchanges encrypted messages with them"""

    def __init__(self, config: SyncConfig = None, encryption: EncryptionContext = None):
        self.config = config or SyncConfig()
        self.encryption = encryption or EncryptionContext(self.config.encryption_algorithm)
        self.password = self.config.default_password
        self.listener: ServerListener = ServerListener()
        self.port: Optional[int] = None

        self._codec: Optional[FrameCodec] = None
        self._server_socket: Optional[socket.socket] = None
        self._server_thread: Optional[threading.Thread] = None
        self._running = False
        self._lock = threading.Lock()
        self._clients: Dict[str, ClientConnection] = {}

    @property
    def running(self) -> bool:
        return self._running

    def start(self, password: str, listener: ServerListener = None):
        """
        Bind the listening socket and start accepting connections

        The configured port is tried first, then each fallback port in
        order. ``self.port`` holds the bound port once this returns.

        Raises:
            PortInUseError: If no candidate port could be bound
        """
        if self._running:
            return

        self.password = password or self.config.default_password
        self.listener = listener or ServerListener()
        self._codec = FrameCodec(self.password, self.encryption)

        self._server_socket = self._bind_first_free_port()
        self.port = self._server_socket.getsockname()[1]
        self._running = True

        self._server_thread = threading.Thread(target=self._server_loop, daemon=True)
        self._server_thread.start()

        logger.info(f"TCP server listening on port {self.port}")

    def _candidate_ports(self) -> List[int]:
        ports = [self.config.tcp_port]
        for port in self.config.fallback_tcp_ports:
            if port not in ports:
                ports.append(port)
        return ports

    def _bind_first_free_port(self) -> socket.socket:
        candidates = self._candidate_ports()
        for port in candidates:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind(('0.0.0.0', port))
                sock.listen(ACCEPT_BACKLOG)
                sock.settimeout(1.0)  # For clean shutdown
            except OSError as e:
                sock.close()
                logger.warning(f"Port {port} is busy ({e}), trying next port")
                continue
            if port != self.config.tcp_port:
                logger.info(f"Using alternative port {port}")
            return sock
        raise PortInUseError(candidates)

    def stop(self):
        """Close every connection and the listening socket"""
        if not self._running:
            return
        self._running = False

        with self._lock:
            connections = list(self._clients.values())
            self._clients.clear()

        for conn in connections:
            self._close_socket(conn.socket)

        if self._server_socket:
            try:
                self._server_socket.close()
            except OSError as e:
                logger.debug(f"Error closing server socket: {e}")
            self._server_socket = None

        if self._server_thread and self._server_thread is not threading.current_thread():
            self._server_thread.join(timeout=2)
        self._server_thread = None

        logger.info("TCP server stopped")

    def _server_loop(self):
        """Main server loop accepting connections"""
        while self._running:
            server_socket = self._server_socket
            if not server_socket:
                break
            try:
                client_socket, addr = server_socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Server error: {e}")
                break

            if not self.config.is_trusted_device(addr[0]):
                logger.warning(f"Rejecting connection from untrusted device {addr[0]}")
                self._close_socket(client_socket)
                continue

            conn = ClientConnection(
                id=f"{addr[0]}:{addr[1]}",
                socket=client_socket,
                address=addr[0],
                parser=MessageParser(self.config.max_buffer_size)
            )
            with self._lock:
                self._clients[conn.id] = conn
            logger.info(f"Client connected: {conn.id}")

            handler = threading.Thread(
                target=self._handle_client,
                args=(conn,),
                daemon=True
            )
            handler.start()

    def _handle_client(self, conn: ClientConnection):
        """Read frames from one connection until it closes"""
        conn.socket.settimeout(1.0)
        try:
            while self._running:
                try:
                    data = conn.socket.recv(self.config.buffer_size)
                except socket.timeout:
                    continue
                if not data:
                    break

                conn.parser.feed(data)
                if not self._process_frames(conn):
                    break
        except FormatError as e:
            logger.warning(f"Protocol error from {conn.id}: {e}")
        except OSError as e:
            if self._running:
                logger.error(f"Client error {conn.id}: {e}")
        finally:
            self._remove_client(conn)

    def _process_frames(self, conn: ClientConnection) -> bool:
        """Handle every complete frame. Returns False when the connection must close."""
        while True:
            frame = conn.parser.parse_one()
            if frame is None:
                return True
            if not self._handle_frame(conn, frame):
                return False

    def _handle_frame(self, conn: ClientConnection, frame: bytes) -> bool:
        try:
            message = self._codec.decode(frame)
        except (FormatError, DecryptionError) as e:
            if not conn.authenticated:
                logger.warning(f"Undecryptable message from unauthenticated {conn.id}: {e}")
                return self._reject(conn, AuthenticationError("Authentication required"))
            logger.warning(f"Dropping undecryptable message from {conn.id}: {e}")
            return True

        msg_type = message['type']
        logger.debug(f"Received {msg_type} from {conn.id}")

        if not conn.authenticated:
            try:
                self._authenticate(conn, message)
            except AuthenticationError as e:
                return self._reject(conn, e)
            return True

        if msg_type == MessageType.PING:
            self._send(conn, MessageBuilder.build_pong())
            return True

        try:
            self.listener.on_message(conn.id, message)
        except Exception as e:
            logger.error(f"Message handler failed for {conn.id}: {e}")
        return True

    def _authenticate(self, conn: ClientConnection, message: dict):
        """
        Run the handshake for an unauthenticated connection

        Raises:
            AuthenticationError: If the message is not AUTH or the password is wrong
        """
        if message['type'] != MessageType.AUTH:
            raise AuthenticationError("Authentication required")
        supplied = str(message.get('password', ''))
        if not hmac.compare_digest(supplied.encode('utf-8'), self.password.encode('utf-8')):
            raise AuthenticationError("Invalid password")

        conn.authenticated = True
        self._send(conn, MessageBuilder.build_auth_success())
        logger.info(f"Client authenticated: {conn.id}")
        try:
            self.listener.on_client_connected(conn.id)
        except Exception as e:
            logger.error(f"Connect handler failed for {conn.id}: {e}")

    def _reject(self, conn: ClientConnection, error: AuthenticationError) -> bool:
        """Send AUTH_FAIL and end the connection. Always returns False."""
        logger.warning(f"Auth failed from {conn.id}: {error}")
        self._send(conn, MessageBuilder.build_auth_fail(str(error)))
        try:
            conn.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        return False

    def _remove_client(self, conn: ClientConnection):
        with self._lock:
            removed = self._clients.pop(conn.id, None) is not None
        self._close_socket(conn.socket)

        if removed or conn.authenticated:
            logger.info(f"Client disconnected: {conn.id}")
        # Only peers that completed the handshake were reported as connected
        if conn.authenticated:
            try:
                self.listener.on_client_disconnected(conn.id)
            except Exception as e:
                logger.error(f"Disconnect handler failed for {conn.id}: {e}")

    @staticmethod
    def _close_socket(sock: socket.socket):
        try:
            sock.close()
        except OSError as e:
            logger.debug(f"Error closing socket: {e}")

    def _send(self, conn: ClientConnection, message: dict) -> bool:
        try:
            frame = self._codec.encode(message)
            with conn.send_lock:
                conn.socket.sendall(frame)
            return True
        except OSError as e:
            logger.error(f"Failed to send message to {conn.id}: {e}")
            return False

    def send_message(self, client_id: str, message: dict) -> bool:
        """Send a message to one connected client"""
        with self._lock:
            conn = self._clients.get(client_id)
        if not conn:
            logger.warning(f"Unknown client {client_id}")
            return False
        return self._send(conn, message)

    def broadcast(self, message: dict, exclude: Optional[str] = None) -> int:
        """
        Send a message to every authenticated client

        Args:
            message: Message to send
            exclude: Client id to skip, usually the sender

        Returns:
            Number of clients the message was sent to
        """
        with self._lock:
            targets = [
                c for c in self._clients.values()
                if c.authenticated and c.id != exclude
            ]

        sent = 0
        for conn in targets:
            if self._send(conn, message):
                sent += 1
        logger.debug(f"Broadcast {message.get('type')} to {sent}/{len(targets)} clients")
        return sent

    def get_connected_clients(self) -> List[str]:
        """Ids of authenticated clients"""
        with self._lock:
            return [c.id for c in self._clients.values() if c.authenticated]

    def get_status(self) -> dict:
        return {
            'running': self._running,
            'port': self.port,
            'client_count': len(self.get_connected_clients())
        }
