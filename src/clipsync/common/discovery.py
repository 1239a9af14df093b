"""
Peer discovery using UDP broadcast

Clients broadcast a discovery request on the LAN every few seconds; the
server answers each request with its TCP address:

    request:   CLIPBOARD_SYNC_DISCOVERY
    response:  CLIPBOARD_SYNC_SERVER:<ip>:<tcp port>

Discovery carries no secret and is neither authenticated nor encrypted,
so any host on the subnet can learn the server's TCP endpoint.
"""
import time
import socket
import logging
import threading
from dataclasses import dataclass, asdict, replace
from typing import Optional, Callable, Dict, List, Tuple

from clipsync.config import SyncConfig
from clipsync.common import netutils
from clipsync.common.errors import PeerConnectionError

logger = logging.getLogger(__name__)


@dataclass
class DiscoveredServer:
    """A server that answered a discovery request"""
    ip: str
    port: int
    hostname: str = ''  # address the response came from
    last_seen: float = 0.0

    @property
    def key(self) -> str:
        return f"{self.ip}:{self.port}"

    def to_dict(self):
        return asdict(self)


class DiscoveryService:
    """
    Handles both sides of discovery on one UDP socket

    Server role answers requests; client role sends requests and records
    the servers that answer.
    """

    def __init__(self, config: SyncConfig = None, tcp_port: Optional[int] = None):
        """
        Args:
            config: Protocol constants
            tcp_port: Port advertised in responses (defaults to config.tcp_port)
        """
        self.config = config or SyncConfig()
        self.tcp_port = tcp_port or self.config.tcp_port
        self.is_server = False
        self.on_server_found: Optional[Callable[[DiscoveredServer], None]] = None

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._stop_event = threading.Event()
        self._receive_thread: Optional[threading.Thread] = None
        self._broadcast_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.discovered_servers: Dict[str, DiscoveredServer] = {}

    @property
    def running(self) -> bool:
        return self._running

    def start(self, is_server: bool = False,
              on_server_found: Optional[Callable[[DiscoveredServer], None]] = None):
        """
        Start discovery

        Args:
            is_server: Answer discovery requests instead of sending them
            on_server_found: Client role callback, invoked once per new server

        Raises:
            PeerConnectionError: If the UDP port cannot be bound
        """
        if self._running:
            return

        self.is_server = is_server
        self.on_server_found = on_server_found
        self._stop_event.clear()

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind(('', self.config.udp_port))
            sock.settimeout(1.0)  # For clean shutdown
        except OSError as e:
            sock.close()
            raise PeerConnectionError(f"Cannot bind UDP port {self.config.udp_port}: {e}")

        self._socket = sock
        self._running = True

        self._receive_thread = threading.Thread(target=self._receive_loop, daemon=True)
        self._receive_thread.start()

        if not is_server:
            self._broadcast_thread = threading.Thread(target=self._broadcast_loop, daemon=True)
            self._broadcast_thread.start()

        role = "server" if is_server else "client"
        logger.info(f"UDP discovery listening on port {self.config.udp_port} ({role} mode)")

    def stop(self):
        """Stop discovery and forget discovered servers"""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        if self._socket:
            try:
                self._socket.close()
            except OSError as e:
                logger.debug(f"Error closing discovery socket: {e}")
            self._socket = None

        for thread in (self._broadcast_thread, self._receive_thread):
            if thread and thread is not threading.current_thread():
                thread.join(timeout=2)
        self._broadcast_thread = None
        self._receive_thread = None

        with self._lock:
            self.discovered_servers.clear()

        logger.info("UDP discovery stopped")

    def _broadcast_loop(self):
        """Send a request now, then every discovery interval"""
        while self._running:
            self.send_broadcast()
            if self._stop_event.wait(self.config.discovery_interval):
                break

    def send_broadcast(self):
        """Send one discovery request to every local broadcast address"""
        sock = self._socket
        if not sock:
            return

        message = self.config.discovery_message.encode('ascii')
        for address in netutils.get_broadcast_addresses():
            try:
                sock.sendto(message, (address, self.config.udp_port))
                logger.debug(f"Sent discovery request to {address}:{self.config.udp_port}")
            except OSError as e:
                logger.error(f"Failed to send broadcast to {address}: {e}")

    def _receive_loop(self):
        while self._running:
            sock = self._socket
            if not sock:
                break
            try:
                data, addr = sock.recvfrom(1024)
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"UDP socket error: {e}")
                break

            try:
                self._handle_message(data, addr)
            except Exception as e:
                logger.error(f"Failed to process discovery message from {addr[0]}: {e}")

    def _handle_message(self, data: bytes, addr: Tuple[str, int]):
        """Dispatch one datagram"""
        try:
            message = data.decode('ascii')
        except UnicodeDecodeError:
            logger.debug(f"Ignoring non-ASCII datagram from {addr[0]}")
            return

        if message == self.config.discovery_message:
            if self.is_server:
                self._respond_to_discovery(addr)
        elif message.startswith(self.config.discovery_response_prefix):
            if not self.is_server:
                self._process_server_response(message, addr)

    def _respond_to_discovery(self, addr: Tuple[str, int]):
        """Server role: tell the requester where the TCP server listens"""
        local_ip = netutils.get_local_ip()
        if not local_ip:
            logger.warning("No local IPv4 address, cannot answer discovery request")
            return

        response = f"{self.config.discovery_response_prefix}:{local_ip}:{self.tcp_port}"
        sock = self._socket
        if not sock:
            return
        try:
            sock.sendto(response.encode('ascii'), addr)
            logger.info(f"Sent discovery response to {addr[0]} with port {self.tcp_port}")
        except OSError as e:
            logger.error(f"Failed to send discovery response: {e}")

    def _process_server_response(self, message: str, addr: Tuple[str, int]):
        """Client role: record a responding server"""
        parts = message.split(':')
        if len(parts) < 3:
            logger.warning(f"Malformed discovery response from {addr[0]}: {message!r}")
            return

        server_ip = parts[1]
        try:
            server_port = int(parts[2])
        except ValueError:
            logger.warning(f"Invalid port in discovery response from {addr[0]}: {parts[2]!r}")
            return

        key = f"{server_ip}:{server_port}"
        now = time.time()

        with self._lock:
            known = self.discovered_servers.get(key)
            if known:
                known.last_seen = now
                return

            server = DiscoveredServer(
                ip=server_ip,
                port=server_port,
                hostname=addr[0],
                last_seen=now
            )
            self.discovered_servers[key] = server

        logger.info(f"Discovered server: {key}")
        if self.on_server_found:
            self.on_server_found(server)

    def forget_server(self, key: str) -> bool:
        """Drop a server so its next response is reported again"""
        with self._lock:
            return self.discovered_servers.pop(key, None) is not None

    def get_discovered_servers(self) -> List[DiscoveredServer]:
        """Snapshot of the discovered servers"""
        with self._lock:
            return [replace(s) for s in self.discovered_servers.values()]
