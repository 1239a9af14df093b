"""
Clipboard Sync - Entry Point

Runs one machine as the hub (server) or as a peer (client) and keeps the
clipboards of every connected machine in sync.

Commands:
    clipsync server                 Accept clients and share the clipboard
    clipsync client                 Find a server on the LAN and connect
    clipsync client 192.168.1.5     Connect to a known server
"""
import sys
import time
import base64
import logging
import signal
import argparse
import threading
from pathlib import Path
from typing import List, Optional

from clipsync import config
from clipsync.config import SyncConfig, cleanup_old_temp_files
from clipsync.common.discovery import DiscoveryService, DiscoveredServer
from clipsync.common.errors import (
    ClipSyncError,
    ErrorCode,
    InvalidConfigError,
    PayloadTooLargeError,
    PeerConnectionError,
    format_error,
    get_error,
    get_error_from_exception,
)
from clipsync.common.history import ClipboardEntry, HistoryStore, IMAGE, TEXT
from clipsync.common.protocol import ImageData, MessageBuilder, MessageType
from clipsync.common.tcp_client import ClientListener, TransportClient
from clipsync.common.tcp_server import ServerListener, TransportServer
from clipsync.common.watcher import ClipboardChange, ClipboardWatcher
from clipsync.platform import ClipboardBackend, get_clipboard_backend, get_platform_info

logger = logging.getLogger(__name__)

MODE_SERVER = 'server'
MODE_CLIENT = 'client'


class _ServerEvents(ServerListener):
    def __init__(self, app: 'ClipboardSync'):
        self.app = app

    def on_message(self, client_id: str, message: dict):
        self.app._on_remote_message(message, sender=client_id)

    def on_client_connected(self, client_id: str):
        logger.info(f"Client connected: {client_id}")

    def on_client_disconnected(self, client_id: str):
        logger.info(f"Client disconnected: {client_id}")


class _ClientEvents(ClientListener):
    def __init__(self, app: 'ClipboardSync'):
        self.app = app

    def on_message(self, message: dict):
        self.app._on_remote_message(message)

    def on_connected(self):
        logger.info("Connected to clipboard sync server")

    def on_disconnected(self):
        logger.info("Disconnected from clipboard sync server")

    def on_reconnect_exhausted(self):
        self.app._on_reconnect_exhausted()

    def on_auth_failed(self, reason: str):
        logger.error(format_error(ErrorCode.AUTH_FAILED, reason))


class ClipboardSync:
    """
    Main application class

    Wires the clipboard watcher, history and transport together. One
    instance runs in either server or client mode at a time.
    """

    def __init__(self, sync_config: SyncConfig = None, backend: ClipboardBackend = None):
        self.config = sync_config or SyncConfig()
        problems = self.config.validate()
        if problems:
            raise InvalidConfigError("; ".join(problems))

        self.backend = backend or get_clipboard_backend()
        self.history = HistoryStore(self.config.history_size)
        self.watcher = ClipboardWatcher(self.backend, self.history, self.config)
        self.server: Optional[TransportServer] = None
        self.client: Optional[TransportClient] = None
        self.discovery: Optional[DiscoveryService] = None

        self.password = self.config.default_password
        self.mode: Optional[str] = None
        self.auto_discovery = True
        self._running = False
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running

    def set_password(self, password: str) -> bool:
        """Change the shared password. Only allowed while stopped."""
        if self._running:
            logger.warning("Cannot change the password while sync is running")
            return False
        self.password = password or self.config.default_password
        return True

    def start_server(self, password: str = None):
        """
        Start in server mode

        Raises:
            PortInUseError: If no TCP port could be bound
        """
        if self._running:
            raise ClipSyncError("Already running")
        if password:
            self.password = password

        cleanup_old_temp_files(Path(self.config.temp_dir))

        self.server = TransportServer(self.config)
        self.server.start(self.password, _ServerEvents(self))

        self.discovery = DiscoveryService(self.config, tcp_port=self.server.port)
        try:
            self.discovery.start(is_server=True)
        except PeerConnectionError as e:
            # Clients can still connect directly
            logger.warning(f"Discovery unavailable: {e}")
            self.discovery = None

        self.watcher.start(self._on_local_change)
        self.mode = MODE_SERVER
        self._running = True
        logger.info(f"Server mode started on port {self.server.port}")

    def start_client(self, password: str = None, host: str = None,
                     auto_discovery: bool = True, port: int = None):
        """
        Start in client mode

        Connects to ``host`` directly when given, otherwise to the first
        server found by discovery.

        Raises:
            InvalidConfigError: If no host is given and discovery is disabled
            PeerConnectionError: If the discovery port cannot be bound
        """
        if self._running:
            raise ClipSyncError("Already running")
        if not host and not auto_discovery:
            raise InvalidConfigError("Server host required when auto-discovery is disabled")
        if password:
            self.password = password
        self.auto_discovery = auto_discovery

        cleanup_old_temp_files(Path(self.config.temp_dir))

        self.client = TransportClient(self.config)
        if host:
            self._connect(host, port or self.config.tcp_port)
        else:
            self.discovery = DiscoveryService(self.config)
            self.discovery.start(is_server=False, on_server_found=self._on_server_found)

        self.watcher.start(self._on_local_change)
        self.mode = MODE_CLIENT
        self._running = True
        logger.info("Client mode started")

    def _connect(self, host: str, port: int):
        self.client.connect(host, port, self.password, _ClientEvents(self))

    def _on_server_found(self, server: DiscoveredServer):
        logger.info(f"Server discovered: {server.key}")
        with self._lock:
            if self.client and not self.client.active:
                self._connect(server.ip, server.port)

    def _on_reconnect_exhausted(self):
        logger.error(str(get_error(ErrorCode.RECONNECT_EXHAUSTED)))
        if self.discovery and self.client and self.client.state.host:
            # Let the next discovery response trigger a fresh connection
            self.discovery.forget_server(f"{self.client.state.host}:{self.client.state.port}")

    def stop(self):
        """Stop every component. Safe to call more than once."""
        if not self._running:
            return
        self._running = False

        self.watcher.stop()
        if self.discovery:
            self.discovery.stop()
            self.discovery = None
        if self.server:
            self.server.stop()
            self.server = None
        if self.client:
            self.client.disconnect()
            self.client = None

        logger.info(f"Sync stopped ({self.mode} mode)")
        self.mode = None

    def _on_local_change(self, change: ClipboardChange):
        """Called by the watcher when the local clipboard changed"""
        try:
            message = self._build_message(change)
        except PayloadTooLargeError as e:
            logger.warning(f"Not sending image: {e}")
            return

        if self.mode == MODE_SERVER and self.server:
            self.server.broadcast(message)
        elif self.mode == MODE_CLIENT and self.client and self.client.is_connected():
            self.client.send_message(message)
        else:
            logger.debug("Clipboard changed but no peer is connected")

    def _build_message(self, change: ClipboardChange) -> dict:
        if change.type == IMAGE:
            if change.image.size > self.config.max_image_size:
                raise PayloadTooLargeError(change.image.size, self.config.max_image_size)
            logger.info(f"Sending image: {change.image.width}x{change.image.height}, {change.image.size} bytes")
            return MessageBuilder.build_image(change.image, change.source, change.timestamp)
        return MessageBuilder.build_text(change.content, change.source, change.timestamp)

    def _on_remote_message(self, message: dict, sender: str = None):
        """Apply a clipboard message from a peer"""
        msg_type = message.get('type')
        try:
            if msg_type == MessageType.CLIPBOARD_TEXT:
                self._apply_text(message)
            elif msg_type == MessageType.CLIPBOARD_IMAGE:
                self._apply_image(message)
            else:
                logger.debug(f"Ignoring {msg_type} message")
                return
        except ClipSyncError as e:
            logger.error(f"Failed to handle incoming clipboard: {e}")
            return

        # The server relays what one client sent to all the others
        if self.mode == MODE_SERVER and sender and self.server:
            self.server.broadcast(message, exclude=sender)

    def _apply_text(self, message: dict):
        self.watcher.write_clipboard(message['content'], TEXT)
        self.history.add(ClipboardEntry(
            content=message['content'],
            type=TEXT,
            source=message.get('source', 'unknown'),
            timestamp=float(message.get('timestamp') or time.time())
        ))
        logger.info(f"New clipboard from: {message.get('source', 'unknown')}")

    def _apply_image(self, message: dict):
        image = ImageData.from_dict(message['imageData'])
        if image.size > self.config.max_image_size:
            raise PayloadTooLargeError(image.size, self.config.max_image_size)

        self.watcher.write_clipboard(image.content, IMAGE)
        file_path = self.watcher.save_image(image)
        self.history.add(ClipboardEntry(
            content=image.summary(),
            type=IMAGE,
            source=message.get('source', 'unknown'),
            timestamp=float(message.get('timestamp') or time.time()),
            file_path=str(file_path)
        ))
        logger.info(f"Received image: {image.width}x{image.height} from {message.get('source', 'unknown')}")

    def copy_from_history(self, entry_id: str) -> bool:
        """Put a history entry back on the local clipboard"""
        entry = self.history.get_by_id(entry_id)
        if not entry:
            return False

        try:
            if entry.type == IMAGE:
                if not entry.file_path:
                    logger.warning("Image entry has no saved file to copy from")
                    return False
                data = Path(entry.file_path).read_bytes()
                self.watcher.write_clipboard(base64.b64encode(data).decode('ascii'), IMAGE)
            else:
                self.watcher.write_clipboard(entry.content, TEXT)
        except (ClipSyncError, OSError) as e:
            logger.error(f"Failed to copy from history: {e}")
            return False
        return True

    def get_history(self) -> List[ClipboardEntry]:
        return self.history.get_all()

    def clear_history(self):
        self.history.clear()

    def get_discovered_servers(self) -> List[DiscoveredServer]:
        if not self.discovery:
            return []
        return self.discovery.get_discovered_servers()

    def get_status(self) -> dict:
        status = {
            'running': self._running,
            'mode': self.mode,
            'history_size': self.history.size(),
        }
        if self.server:
            status['server'] = self.server.get_status()
        if self.client:
            status['client'] = self.client.get_status()
        if self.discovery:
            status['discovered_servers'] = len(self.discovery.get_discovered_servers())
        return status

    def run_forever(self):
        """Run until interrupted"""
        try:
            while self._running:
                time.sleep(0.5)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()


def setup_logging(verbose: bool = False):
    config.TEMP_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(config.LOG_FILE)
        ]
    )


def build_config(args) -> SyncConfig:
    """Apply command line overrides to the default config"""
    sync_config = SyncConfig()
    if args.port is not None:
        sync_config = sync_config.with_tcp_port(args.port)
    if args.history_size is not None:
        sync_config = sync_config.with_history_size(args.history_size)
    return sync_config


def _print_banner(app: ClipboardSync):
    info = get_platform_info()
    print("\n" + "="*50)
    print(f"  LAN Clipboard Sync - {info.display_name}")
    print("="*50)
    print(f"  Mode: {app.mode}")
    if app.server:
        print(f"  Listening on port: {app.server.port}")
    elif app.client and app.client.state.host:
        print(f"  Server: {app.client.state.host}:{app.client.state.port}")
    else:
        print("  Server: Auto-discovery enabled")
    if app.password == app.config.default_password:
        print("  Password: DEFAULT (set --password on every device)")
    print("="*50)
    print(f"\nCopy text or images ({info.copy_shortcut}) to sync them.")
    print("Press Ctrl+C to stop.\n")


def cmd_run(args) -> int:
    """Start in server or client mode and block until stopped"""
    try:
        sync_config = build_config(args)
        app = ClipboardSync(sync_config)
    except ClipSyncError as e:
        print(f"\n{get_error_from_exception(e)}")
        return 1

    def signal_handler(sig, frame):
        print("\nShutting down...")
        app.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if args.command == MODE_SERVER:
            app.start_server(args.password)
        else:
            app.start_client(args.password, host=args.host, auto_discovery=not args.no_discovery)
    except ClipSyncError as e:
        logger.error(f"Failed to start sync: {e}")
        print(f"\n{get_error_from_exception(e)}")
        app.stop()
        return 1

    _print_banner(app)
    app.run_forever()
    return 0


def main():
    parser = argparse.ArgumentParser(
        description='LAN Clipboard Sync',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  clipsync server --password s3cret            Share this clipboard
  clipsync client --password s3cret            Join the server found on the LAN
  clipsync client 192.168.1.5 --port 8889      Join a specific server
"""
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--password', type=str, default=None,
                        help='Shared password (must match on every device)')
    common.add_argument('--port', type=int, default=None,
                        help=f'TCP port (default: {config.TCP_PORT})')
    common.add_argument('--history-size', type=int, default=None,
                        help=f'Clipboard history entries to keep (default: {config.HISTORY_SIZE})')
    common.add_argument('-v', '--verbose', action='store_true', help='Verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    subparsers.add_parser('server', parents=[common], help='Run as the sync server')

    client_parser = subparsers.add_parser('client', parents=[common], help='Connect to a sync server')
    client_parser.add_argument('host', nargs='?', help='Server IP address (default: auto-discovery)')
    client_parser.add_argument('--no-discovery', action='store_true',
                               help='Disable auto-discovery (requires host)')

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.verbose)
    sys.exit(cmd_run(args))


if __name__ == '__main__':
    main()
