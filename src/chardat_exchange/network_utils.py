"""Network utility functions for chardat-exchange."""

import logging
import socket

import psutil

logger = logging.getLogger(__name__)

# Common virtual interface prefixes across platforms
VIRTUAL_INTERFACE_PREFIXES = (
    "bridge",
    "docker",
    "veth",
    "vmnet",
    "vboxnet",
    "virbr",
    "tun",
    "tap",
    "utun",
    "vnic",
    "ppp",
)


def get_local_ip_addresses() -> list[str]:
    """
    IPv4 addresses of physical interfaces that a sender on the LAN can reach.

    Loopback and APIPA (169.254.x.x) addresses are excluded.

    Example:
        >>> get_local_ip_addresses()
        ['192.168.1.100']
    """
    ip_addresses = []
    try:
        interfaces = psutil.net_if_addrs()
    except OSError as e:
        logger.warning(f"Failed to get local IP addresses: {e}")
        return ip_addresses

    for interface_name, interface_addresses in interfaces.items():
        if interface_name.lower().startswith(VIRTUAL_INTERFACE_PREFIXES):
            continue
        for address in interface_addresses:
            if address.family != socket.AF_INET:
                continue
            ip = address.address
            if ip != "127.0.0.1" and not ip.startswith("169.254."):
                ip_addresses.append(ip)

    return ip_addresses


def receiver_endpoints(port: int) -> list[str]:
    """ZeroMQ endpoints under which a receiver bound to *port* is reachable."""
    return [f"tcp://{ip}:{port}" for ip in get_local_ip_addresses()]
