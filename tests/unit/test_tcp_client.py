"""
Unit tests for tcp_client.py - Handshake, reconnect policy and end-to-end relay
"""
import dataclasses
import socket
import threading
import time

import pytest

from clipsync.common import tcp_client
from clipsync.common.protocol import MessageBuilder, MessageType
from clipsync.common.tcp_client import ClientListener, TransportClient
from clipsync.common.tcp_server import ServerListener, TransportServer
from fixtures.helpers import free_port, wait_for


class RecordingClientListener(ClientListener):
    def __init__(self):
        self.messages = []
        self.events = []
        self.exhausted = threading.Event()

    def on_message(self, message):
        self.messages.append(message)

    def on_connected(self):
        self.events.append('connected')

    def on_disconnected(self):
        self.events.append('disconnected')

    def on_reconnect_exhausted(self):
        self.events.append('exhausted')
        self.exhausted.set()

    def on_auth_failed(self, reason):
        self.events.append(f'auth_failed:{reason}')


class RecordingServerListener(ServerListener):
    def __init__(self):
        self.messages = []

    def on_message(self, client_id, message):
        self.messages.append(message)


@pytest.fixture
def server_listener():
    return RecordingServerListener()


@pytest.fixture
def server(fast_config, server_listener, password):
    srv = TransportServer(fast_config)
    srv.start(password, server_listener)
    yield srv
    srv.stop()


@pytest.fixture
def listener():
    return RecordingClientListener()


@pytest.fixture
def client(fast_config):
    c = TransportClient(fast_config)
    yield c
    c.disconnect()


class TestHandshake:
    def test_connects_and_authenticates(self, server, client, listener, password):
        client.connect('127.0.0.1', server.port, password, listener)
        assert wait_for(client.is_connected)
        assert listener.events == ['connected']
        assert wait_for(lambda: len(server.get_connected_clients()) == 1)

    def test_not_connected_before_auth(self, fast_config):
        c = TransportClient(fast_config)
        assert c.is_connected() is False
        assert c.send_message(MessageBuilder.build_ping()) is False

    def test_wrong_password_is_final(self, server, client, listener):
        client.connect('127.0.0.1', server.port, "wrong", listener)
        assert wait_for(lambda: not client.active, timeout=5.0)
        assert not client.is_connected()
        assert any(e.startswith('auth_failed') for e in listener.events)
        assert 'exhausted' not in listener.events
        assert 'connected' not in listener.events

    def test_auth_failure_does_not_retry(self, server, client, listener, monkeypatch):
        attempts = []
        original = socket.create_connection

        def counting(address, *args, **kwargs):
            attempts.append(address)
            return original(address, *args, **kwargs)

        monkeypatch.setattr(tcp_client.socket, "create_connection", counting)
        client.connect('127.0.0.1', server.port, "wrong", listener)
        assert wait_for(lambda: not client.active, timeout=5.0)
        assert len(attempts) == 1

    def test_ping_pong_consumed(self, server, client, listener, password):
        client.connect('127.0.0.1', server.port, password, listener)
        assert wait_for(client.is_connected)
        assert wait_for(lambda: len(server.get_connected_clients()) == 1)
        assert client.send_ping() is True
        server.broadcast(MessageBuilder.build_text("after ping", "hub"))

        # The pong arrives first but is never handed to the listener
        assert wait_for(lambda: len(listener.messages) == 1)
        assert listener.messages[0]['content'] == "after ping"


class TestReconnect:
    def test_gives_up_after_max_failures(self, fast_config, listener, monkeypatch):
        attempts = []
        original = socket.create_connection

        def counting(address, *args, **kwargs):
            attempts.append(address)
            return original(address, *args, **kwargs)

        monkeypatch.setattr(tcp_client.socket, "create_connection", counting)

        client = TransportClient(fast_config)
        client.connect('127.0.0.1', free_port(), "pw", listener)
        try:
            assert listener.exhausted.wait(timeout=5.0)
            assert wait_for(lambda: not client.active)
            assert len(attempts) == fast_config.reconnect_attempts
            assert client.state.reconnect_attempts == fast_config.reconnect_attempts
            assert listener.events == ['exhausted']
        finally:
            client.disconnect()

    def test_reconnects_after_server_restart(self, fast_config, listener, password):
        fast_config = dataclasses.replace(fast_config, reconnect_attempts=100)
        srv = TransportServer(fast_config)
        srv.start(password)
        client = TransportClient(fast_config)
        try:
            client.connect('127.0.0.1', srv.port, password, listener)
            assert wait_for(client.is_connected)

            srv.stop()
            assert wait_for(lambda: 'disconnected' in listener.events)

            srv = TransportServer(fast_config)
            srv.start(password)
            assert wait_for(client.is_connected, timeout=5.0)
            assert listener.events.count('connected') == 2
            assert client.state.reconnect_attempts == 0
        finally:
            client.disconnect()
            srv.stop()

    def test_reconnect_while_connect_blocked_keeps_one_session(
            self, server, client, listener, password, monkeypatch):
        entered = threading.Event()
        release = threading.Event()
        attempts = []
        original = socket.create_connection

        def slow_first(address, *args, **kwargs):
            attempts.append(address)
            if address[0] == '10.255.255.1':
                entered.set()
                release.wait(timeout=10.0)
                raise OSError("timed out")
            return original(address, *args, **kwargs)

        monkeypatch.setattr(tcp_client.socket, "create_connection", slow_first)

        client.connect('10.255.255.1', server.port, password, listener)
        assert entered.wait(timeout=2.0)

        # Outlives the join in disconnect() while the first thread is stuck
        client.connect('127.0.0.1', server.port, password, listener)
        assert wait_for(client.is_connected)

        release.set()
        time.sleep(0.5)

        assert len(server.get_connected_clients()) == 1
        assert attempts.count(('127.0.0.1', server.port)) == 1
        assert client.state.reconnect_attempts == 0
        assert client.is_connected()
        assert listener.events == ['connected']

    def test_disconnect_stops_reconnecting(self, fast_config, listener):
        client = TransportClient(fast_config)
        client.connect('127.0.0.1', free_port(), "pw", listener)
        client.disconnect()
        assert not client.active
        assert client.state.reconnect_attempts == client.state.max_reconnect_attempts
        # Idempotent
        client.disconnect()


class TestEndToEnd:
    def test_server_broadcast_reaches_client(self, server, client, listener, password):
        client.connect('127.0.0.1', server.port, password, listener)
        assert wait_for(client.is_connected)
        assert wait_for(lambda: len(server.get_connected_clients()) == 1)

        server.broadcast(MessageBuilder.build_text("hello", "hub"))

        assert wait_for(lambda: len(listener.messages) == 1)
        assert listener.messages[0]['type'] == MessageType.CLIPBOARD_TEXT
        assert listener.messages[0]['content'] == "hello"

    def test_client_message_reaches_server(self, server, client, listener, server_listener, password):
        client.connect('127.0.0.1', server.port, password, listener)
        assert wait_for(client.is_connected)

        assert client.send_message(MessageBuilder.build_text("from client", "peer")) is True
        assert wait_for(lambda: len(server_listener.messages) == 1)
        assert server_listener.messages[0]['content'] == "from client"

    def test_status(self, server, client, listener, password):
        client.connect('127.0.0.1', server.port, password, listener)
        assert wait_for(client.is_connected)
        status = client.get_status()
        assert status['connected'] and status['authenticated']
        assert status['server'] == f"127.0.0.1:{server.port}"
