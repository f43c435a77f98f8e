"""Network helpers for the startup banner."""

import socket

import psutil
from loguru import logger

WILDCARD_HOSTS = ("0.0.0.0", "::", "")

# Interface name prefixes of bridges, VPNs and container networks
VIRTUAL_PREFIXES = (
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
    IPv4 addresses of physical interfaces, excluding loopback and APIPA.

    Returns:
        list: IP addresses as strings, empty if interfaces cannot be read.
    """
    ip_addresses = []
    try:
        for interface_name, interface_addresses in psutil.net_if_addrs().items():
            if interface_name.lower().startswith(VIRTUAL_PREFIXES):
                continue
            for address in interface_addresses:
                if address.family != socket.AF_INET:
                    continue
                ip = address.address
                if ip != "127.0.0.1" and not ip.startswith("169.254."):
                    ip_addresses.append(ip)
    except (OSError, RuntimeError) as e:
        logger.warning(f"Failed to get local IP addresses: {e}")

    return ip_addresses


def get_listen_urls(host: str, port: int) -> list[str]:
    """
    WebSocket URLs clients can use to reach a server listening on ``host:port``.

    A wildcard host expands to localhost plus every physical interface.
    """
    if host not in WILDCARD_HOSTS:
        shown = f"[{host}]" if ":" in host else host
        return [f"ws://{shown}:{port}"]

    urls = [f"ws://localhost:{port}"]
    urls.extend(f"ws://{ip}:{port}" for ip in get_local_ip_addresses())
    return urls
