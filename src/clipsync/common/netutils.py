"""
Local network interface helpers

Enumerates non-loopback IPv4 interfaces and computes subnet broadcast
addresses for discovery.
"""
import socket
import logging
from typing import List, Optional, Tuple

import netifaces

logger = logging.getLogger(__name__)

LIMITED_BROADCAST = '255.255.255.255'


def get_ipv4_interfaces() -> List[Tuple[str, str]]:
    """
    List (address, netmask) for every non-loopback IPv4 interface

    Link-local (169.254.x.x) addresses are skipped.
    """
    result = []
    for interface in netifaces.interfaces():
        try:
            addrs = netifaces.ifaddresses(interface)
        except ValueError as e:
            logger.debug(f"Skipping interface {interface}: {e}")
            continue

        for addr in addrs.get(netifaces.AF_INET, []):
            ip = addr.get('addr')
            netmask = addr.get('netmask')
            if not ip or not netmask:
                continue
            if ip.startswith('127.') or ip.startswith('169.254.'):
                continue
            result.append((ip, netmask))
    return result


def compute_broadcast(ip: str, netmask: str) -> str:
    """
    Broadcast address of a subnet: each octet of the host address OR'd
    with the complement of the netmask octet.

    >>> compute_broadcast('192.168.1.37', '255.255.255.0')
    '192.168.1.255'
    """
    ip_octets = [int(o) for o in ip.split('.')]
    mask_octets = [int(o) for o in netmask.split('.')]
    if len(ip_octets) != 4 or len(mask_octets) != 4:
        raise ValueError(f"Not an IPv4 address/netmask: {ip}/{netmask}")
    return '.'.join(str(o | (~m & 255)) for o, m in zip(ip_octets, mask_octets))


def get_broadcast_addresses() -> List[str]:
    """Broadcast address of each local subnet, or the limited broadcast address"""
    addresses = []
    for ip, netmask in get_ipv4_interfaces():
        try:
            broadcast = compute_broadcast(ip, netmask)
        except ValueError as e:
            logger.debug(f"Cannot compute broadcast for {ip}: {e}")
            continue
        if broadcast not in addresses:
            addresses.append(broadcast)
    return addresses or [LIMITED_BROADCAST]


def get_local_ip() -> Optional[str]:
    """First non-loopback IPv4 address of this machine"""
    interfaces = get_ipv4_interfaces()
    if interfaces:
        return interfaces[0][0]

    # Fall back to the route the OS would pick
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # Doesn't actually connect, just determines the local interface
        s.connect(('10.255.255.255', 1))
        ip = s.getsockname()[0]
        return None if ip.startswith('127.') else ip
    except OSError:
        return None
    finally:
        s.close()


def get_hostname() -> str:
    return socket.gethostname()
