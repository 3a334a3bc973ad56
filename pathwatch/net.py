import ipaddress
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants

logger = logging.getLogger(__name__)

RESOLV_CONF = Path("/etc/resolv.conf")
SYS_CLASS_NET = Path("/sys/class/net")
SYSTEMD_RESOLV_CONF = Path("/run/systemd/resolve/resolv.conf")


@dataclass(frozen=True)
class TargetSet:
    public: str = constants.PUBLIC_TARGET
    gateway: Optional[str] = None
    resolver: Optional[str] = None
    interface: Optional[str] = None

    def summaries(self):
        return [
            f"Public: {self.public}",
            f"Gateway: {self.gateway or constants.PLACEHOLDER}",
            f"DNS: {self.resolver or constants.PLACEHOLDER}",
        ]

    def same_path(self, other):
        return self.gateway == other.gateway and self.resolver == other.resolver


@dataclass(frozen=True)
class InterfaceInfo:
    name: str
    kind: str
    speed_mbps: float


def _is_ipv4(text):
    try:
        return isinstance(ipaddress.ip_address(text), ipaddress.IPv4Address)
    except ValueError:
        return False


def get_default_route():
    """Return (gateway, interface) of the first IPv4 default route."""
    try:
        result = subprocess.check_output(["ip", "-4", "route"], text=True, stderr=subprocess.DEVNULL)
        for line in result.split("\n"):
            if line.startswith("default"):
                parts = line.split()
                gateway = parts[parts.index("via") + 1] if "via" in parts else None
                interface = parts[parts.index("dev") + 1] if "dev" in parts else None
                if gateway and _is_ipv4(gateway):
                    return gateway, interface
    except (OSError, subprocess.CalledProcessError, IndexError):
        logger.debug("default route lookup failed", exc_info=True)
    return None, None


def _is_upstream(text):
    """IPv4 address that is not a local stub such as 127.0.0.53."""
    try:
        address = ipaddress.ip_address(text)
    except ValueError:
        return False
    return isinstance(address, ipaddress.IPv4Address) and not address.is_loopback


def _nameservers(path):
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        logger.debug("cannot read %s", path, exc_info=True)
        return []
    return [parts[1] for parts in map(str.split, lines) if len(parts) >= 2 and parts[0] == "nameserver"]


def _resolvectl_servers(interface=None):
    cmd = ["resolvectl", "dns"] + ([interface] if interface else [])
    try:
        result = subprocess.check_output(cmd, text=True, stderr=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError):
        return []
    servers = []
    for line in result.splitlines():
        # "Link 2 (wlan0): 192.168.1.1 1.1.1.1#cloudflare-dns.com fe80::1%wlan0"
        for entry in line.partition(":")[2].split():
            servers.append(entry.split("#")[0].split("%")[0])
    return servers


def get_dns_resolver(interface=None):
    """First upstream IPv4 resolver.

    Loopback stubs in /etc/resolv.conf (systemd-resolved, dnsmasq) are
    skipped in favour of the servers the stub forwards to, read from the
    systemd-resolved upstream file or `resolvectl dns <interface>`.
    """
    sources = (
        lambda: _nameservers(RESOLV_CONF),
        lambda: _nameservers(SYSTEMD_RESOLV_CONF),
        lambda: _resolvectl_servers(interface),
    )
    for source in sources:
        for address in source():
            if _is_upstream(address):
                return address
    return None


def _read_sys(interface, name):
    try:
        return (SYS_CLASS_NET / interface / name).read_text(encoding="utf-8").strip()
    except OSError:
        return None


def get_wireless_bitrate(interface):
    try:
        result = subprocess.check_output(
            ["iw", "dev", interface, "link"], text=True, stderr=subprocess.DEVNULL
        )
        tx_match = re.search(r"tx bitrate: ([\d.]+) MBit/s", result)
        rx_match = re.search(r"rx bitrate: ([\d.]+) MBit/s", result)
        match = tx_match or rx_match
        return float(match.group(1)) if match else 0.0
    except (OSError, subprocess.CalledProcessError):
        return 0.0


def get_active_interfaces():
    """Non-loopback interfaces whose operstate is up."""
    interfaces = []
    try:
        names = sorted(p.name for p in SYS_CLASS_NET.iterdir())
    except OSError:
        return interfaces
    for name in names:
        if name == "lo" or _read_sys(name, "operstate") != "up":
            continue
        if (SYS_CLASS_NET / name / "wireless").exists():
            interfaces.append(InterfaceInfo(name, "Wireless", get_wireless_bitrate(name)))
            continue
        try:
            speed = float(_read_sys(name, "speed") or 0)
        except ValueError:
            speed = 0.0
        interfaces.append(InterfaceInfo(name, "Ethernet", max(speed, 0.0)))
    return interfaces


def format_speed(speed_mbps):
    if speed_mbps >= 1000:
        return f"{speed_mbps / 1000.0:.1f}".rstrip("0").rstrip(".") + " Gbps"
    return f"{speed_mbps:.0f} Mbps"


class TargetResolver:
    """Discovers gateway, resolver and active link from the host's network state."""

    def __init__(self, public=constants.PUBLIC_TARGET):
        self.public = public

    def discover(self) -> TargetSet:
        gateway, interface = get_default_route()
        resolver = get_dns_resolver(interface)
        return TargetSet(public=self.public, gateway=gateway, resolver=resolver, interface=interface)

    def describe_link(self, preferred_interface=None):
        interfaces = get_active_interfaces()
        if not interfaces:
            return "No link"
        active = next((i for i in interfaces if i.name == preferred_interface), interfaces[0])
        return f"{active.kind} · {format_speed(active.speed_mbps)}"

    def fingerprint(self):
        gateway, interface = get_default_route()
        return gateway, interface, get_dns_resolver(interface)
