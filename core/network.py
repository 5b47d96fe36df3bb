import ipaddress
import random
from typing import Optional


def parse_subnet(cidr: str) -> ipaddress.IPv4Network:
    """
    Parse the VM subnet from configuration.

    Host bits are masked off ("10.0.0.7/24" -> 10.0.0.0/24). Subnets that
    cannot hold at least two hosts are refused.
    """
    net = ipaddress.ip_network(cidr, strict=False)
    if not isinstance(net, ipaddress.IPv4Network):
        raise ValueError(f"vm net must be an IPv4 subnet, got {cidr}")
    if net.prefixlen > 30:
        raise ValueError(f"vm net {cidr} is too small to allocate host addresses from")
    return net


def generate_ipv4(subnet: ipaddress.IPv4Network, rng: Optional[random.Random] = None) -> str:
    """
    Pick a random host address inside ``subnet``.

    Addresses ending in .0 are moved up by one and addresses ending in .255
    down by one; the subnet's own network and broadcast addresses get the
    same treatment, so the result is always a usable host address.
    """
    rng = rng or random
    hostmask = int(subnet.hostmask)
    network = int(subnet.network_address)
    broadcast = int(subnet.broadcast_address)

    candidate = (rng.getrandbits(32) & hostmask) | network

    if candidate & 255 == 0:
        candidate += 1
    elif candidate & 255 == 255:
        candidate -= 1

    if candidate == network:
        candidate += 1
    elif candidate == broadcast:
        candidate -= 1

    return str(ipaddress.IPv4Address(candidate))
