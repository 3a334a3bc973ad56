import subprocess

import pytest

from pathwatch import constants, net
from pathwatch.clock import FakeClock
from pathwatch.controllers.scheduler import ScheduleController
from pathwatch.data import SampleQueue
from pathwatch.net import TargetResolver, TargetSet, format_speed
from pathwatch.ping import Prober
from pathwatch.stats import StreamingStats

IP_ROUTE = """default via 192.168.1.1 dev wlan0 proto dhcp metric 600
10.8.0.0/24 dev tun0 proto kernel scope link src 10.8.0.2
192.168.1.0/24 dev wlan0 proto kernel scope link src 192.168.1.42 metric 600
"""

IW_LINK = """Connected to aa:bb:cc:dd:ee:ff (on wlan0)
	SSID: home
	freq: 5180
	signal: -52 dBm
	rx bitrate: 780.0 MBit/s VHT-MCS 8 80MHz short GI VHT-NSS 2
	tx bitrate: 866.7 MBit/s VHT-MCS 9 80MHz short GI VHT-NSS 2
"""


def fake_commands(outputs):
    def check_output(cmd, **kwargs):
        key = cmd[0]
        if key not in outputs:
            raise FileNotFoundError(key)
        return outputs[key]

    return check_output


@pytest.fixture
def host(tmp_path, monkeypatch):
    resolv = tmp_path / "resolv.conf"
    resolv.write_text("# generated\nnameserver fe80::1\nnameserver 192.168.1.53\nsearch lan\n")
    sys_net = tmp_path / "net"
    for name, state, speed, wireless in (
        ("lo", "unknown", None, False),
        ("eth0", "down", "1000", False),
        ("wlan0", "up", None, True),
        ("eth1", "up", "2500", False),
    ):
        iface = sys_net / name
        iface.mkdir(parents=True)
        (iface / "operstate").write_text(state + "\n")
        if speed:
            (iface / "speed").write_text(speed + "\n")
        if wireless:
            (iface / "wireless").mkdir()
    monkeypatch.setattr(net, "RESOLV_CONF", resolv)
    monkeypatch.setattr(net, "SYS_CLASS_NET", sys_net)
    monkeypatch.setattr(net, "SYSTEMD_RESOLV_CONF", tmp_path / "upstream.conf")
    monkeypatch.setattr(net.subprocess, "check_output", fake_commands({"ip": IP_ROUTE, "iw": IW_LINK}))
    return tmp_path


def test_discover_reads_route_and_resolver(host):
    targets = TargetResolver().discover()
    assert targets == TargetSet(gateway="192.168.1.1", resolver="192.168.1.53", interface="wlan0")
    assert targets.summaries() == ["Public: 1.1.1.1", "Gateway: 192.168.1.1", "DNS: 192.168.1.53"]


def test_discovery_failure_leaves_targets_empty(host, monkeypatch):
    monkeypatch.setattr(net.subprocess, "check_output", fake_commands({}))
    (host / "resolv.conf").unlink()
    targets = TargetResolver().discover()
    assert targets.gateway is None
    assert targets.resolver is None
    assert targets.summaries()[1:] == ["Gateway: —", "DNS: —"]


def test_route_without_default(host, monkeypatch):
    monkeypatch.setattr(
        net.subprocess, "check_output", fake_commands({"ip": "10.0.0.0/8 dev eth1 scope link\n"})
    )
    assert net.get_default_route() == (None, None)


def test_command_error_is_not_fatal(host, monkeypatch):
    def failing(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd)

    monkeypatch.setattr(net.subprocess, "check_output", failing)
    assert net.get_default_route() == (None, None)
    assert net.get_wireless_bitrate("wlan0") == 0.0


def test_active_interfaces_skip_loopback_and_down(host):
    interfaces = net.get_active_interfaces()
    assert [(i.name, i.kind, i.speed_mbps) for i in interfaces] == [
        ("eth1", "Ethernet", 2500.0),
        ("wlan0", "Wireless", 866.7),
    ]


def test_link_badge_prefers_default_route_interface(host):
    resolver = TargetResolver()
    assert resolver.describe_link("wlan0") == "Wireless · 867 Mbps"
    assert resolver.describe_link("eth9") == "Ethernet · 2.5 Gbps"


def test_link_badge_without_interfaces(host, monkeypatch):
    monkeypatch.setattr(net, "SYS_CLASS_NET", host / "missing")
    assert TargetResolver().describe_link() == "No link"


@pytest.mark.parametrize(
    "speed, text",
    [(100, "100 Mbps"), (866.7, "867 Mbps"), (1000, "1 Gbps"), (2500, "2.5 Gbps"), (0, "0 Mbps")],
)
def test_format_speed(speed, text):
    assert format_speed(speed) == text


def test_same_path_ignores_public_and_interface():
    a = TargetSet(gateway="192.168.1.1", resolver="1.0.0.1", interface="wlan0")
    b = TargetSet(gateway="192.168.1.1", resolver="1.0.0.1", interface="eth0")
    c = TargetSet(gateway="10.0.0.1", resolver="1.0.0.1")
    assert a.same_path(b)
    assert not a.same_path(c)


STUB_RESOLV = "# This is /run/systemd/resolve/stub-resolv.conf\nnameserver 127.0.0.53\noptions edns0 trust-ad\n"


def test_loopback_stub_falls_back_to_upstream_file(host):
    (host / "resolv.conf").write_text(STUB_RESOLV)
    (host / "upstream.conf").write_text("nameserver 192.168.1.1\nnameserver 1.1.1.1\n")
    assert TargetResolver().discover().resolver == "192.168.1.1"


def test_loopback_stub_falls_back_to_resolvectl(host, monkeypatch):
    (host / "resolv.conf").write_text(STUB_RESOLV)
    calls = []

    def check_output(cmd, **kwargs):
        calls.append(cmd)
        if cmd[0] == "resolvectl":
            return "Link 3 (wlan0): fe80::1%wlan0 10.0.0.53#home.lan 1.1.1.1\n"
        return IP_ROUTE

    monkeypatch.setattr(net.subprocess, "check_output", check_output)
    assert TargetResolver().discover().resolver == "10.0.0.53"
    assert ["resolvectl", "dns", "wlan0"] in calls


def test_loopback_stub_without_upstream_leaves_resolver_empty(host):
    (host / "resolv.conf").write_text(STUB_RESOLV)
    targets = TargetResolver().discover()
    assert targets.resolver is None
    assert targets.gateway == "192.168.1.1"


def test_uplink_outage_behind_local_stub_enters_backoff(host):
    (host / "resolv.conf").write_text(STUB_RESOLV)

    def echo(target):
        # only a local stub would still answer
        return (True, 1) if target.startswith("127.") else (False, 900)

    clock = FakeClock()
    queues = {name: SampleQueue(constants.PING_SAMPLES_MAX) for name in ("public", "gateway", "resolver", "dns")}
    prober = Prober(StreamingStats(), clock, echo=echo, lookup=lambda *args: None)
    controller = ScheduleController(TargetResolver(), prober, queues, clock)
    controller.discover()
    for _ in range(constants.BACKOFF_AFTER_FAILED_TICKS + 1):
        controller.tick()
    assert controller.backoff.active
    assert len(queues["resolver"]) == 0
