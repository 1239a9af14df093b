"""
Unit tests for netutils.py - Interface enumeration and broadcast addresses
"""
import pytest

from clipsync.common import netutils


class FakeNetifaces:
    AF_INET = 2

    def __init__(self, table):
        self.table = table

    def interfaces(self):
        return list(self.table)

    def ifaddresses(self, name):
        return self.table[name]


@pytest.fixture
def fake_interfaces(monkeypatch):
    def install(table):
        monkeypatch.setattr(netutils, "netifaces", FakeNetifaces(table))
    return install


class TestComputeBroadcast:
    @pytest.mark.parametrize("ip, mask, expected", [
        ("192.168.1.37", "255.255.255.0", "192.168.1.255"),
        ("10.1.2.3", "255.0.0.0", "10.255.255.255"),
        ("172.16.5.4", "255.255.240.0", "172.16.15.255"),
        ("192.168.1.37", "255.255.255.255", "192.168.1.37"),
    ])
    def test_per_octet(self, ip, mask, expected):
        assert netutils.compute_broadcast(ip, mask) == expected

    def test_rejects_non_ipv4(self):
        with pytest.raises(ValueError):
            netutils.compute_broadcast("fe80::1", "ffff::")


class TestInterfaces:
    def test_skips_loopback_and_link_local(self, fake_interfaces):
        fake_interfaces({
            "lo": {2: [{"addr": "127.0.0.1", "netmask": "255.0.0.0"}]},
            "eth0": {2: [{"addr": "192.168.1.37", "netmask": "255.255.255.0"}]},
            "eth1": {2: [{"addr": "169.254.3.3", "netmask": "255.255.0.0"}]},
            "wlan0": {},
        })
        assert netutils.get_ipv4_interfaces() == [("192.168.1.37", "255.255.255.0")]

    def test_broadcast_addresses_deduplicated(self, fake_interfaces):
        fake_interfaces({
            "eth0": {2: [{"addr": "192.168.1.37", "netmask": "255.255.255.0"}]},
            "eth0:1": {2: [{"addr": "192.168.1.38", "netmask": "255.255.255.0"}]},
            "eth1": {2: [{"addr": "10.0.0.2", "netmask": "255.255.0.0"}]},
        })
        assert netutils.get_broadcast_addresses() == ["192.168.1.255", "10.0.255.255"]

    def test_limited_broadcast_fallback(self, fake_interfaces):
        fake_interfaces({"lo": {2: [{"addr": "127.0.0.1", "netmask": "255.0.0.0"}]}})
        assert netutils.get_broadcast_addresses() == ["255.255.255.255"]

    def test_local_ip_prefers_first_interface(self, fake_interfaces):
        fake_interfaces({"eth0": {2: [{"addr": "192.168.1.37", "netmask": "255.255.255.0"}]}})
        assert netutils.get_local_ip() == "192.168.1.37"
