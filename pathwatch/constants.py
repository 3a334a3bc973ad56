# Probe targets
PUBLIC_TARGET = "1.1.1.1"
DNS_TEST_HOSTS = ["one.one.one.one", "dns.google", "example.com"]
UPLOAD_ENDPOINT = "https://speed.cloudflare.com/__up"

# Scheduling (seconds unless noted)
TICK_INTERVAL = 1.0
STAGGER_GATEWAY = 0.0
STAGGER_RESOLVER = 0.333
STAGGER_PUBLIC = 0.666
DNS_EVERY_N_TICKS = 12
BACKOFF_AFTER_FAILED_TICKS = 10
BACKOFF_PROBE_EVERY_N_TICKS = 5
NIC_CHANGE_DEBOUNCE = 3.0
LINK_POLL_INTERVAL = 5.0

# Timeouts
ECHO_TIMEOUT = 0.9
DNS_TIMEOUT_MS = 1500

# Retention
PING_SAMPLES_MAX = 120
DNS_SAMPLES_MAX = 60
SERIES_MAX = 60
LOSS_WINDOW = 120
RECENT_LOSS_WINDOW_MS = 60_000

# Bufferbloat test
BLOAT_DEFAULT_DURATION = 10.0
BLOAT_PING_INTERVAL = 0.5
BLOAT_BASELINE_WINDOW_MS = 30_000
BLOAT_MIN_BASELINE_SAMPLES = 5
BLOAT_MED_MS = 40
BLOAT_HIGH_MS = 100
UPLOAD_CHUNK_SIZE = 64 * 1024
UPLOAD_CONNECT_TIMEOUT = 5.0

# Status thresholds
LOSS_RED_PCT = 2.0
LOSS_AMBER_PCT = 0.5
JITTER_RED_MS = 50.0
JITTER_AMBER_MS = 20.0
LATENCY_RED_MS = 120.0
LATENCY_AMBER_MS = 60.0
DNS_SLOW_MS = 150.0
HEALTHY_REASON = "Video-ready."

# Sticky axis auto-range
AXIS_HYSTERESIS = 0.15
AXIS_LADDER = [10, 20, 30, 40, 50, 75, 100, 120, 150, 200, 300, 400, 600]
# metric -> (value multiplier, floor, headroom, clamp min, clamp max, default)
AXIS_METRICS = {
    "latency": (2.0, 40.0, 1.25, 40.0, 300.0, 100.0),
    "jitter": (3.0, 10.0, 1.25, 10.0, 100.0, 30.0),
    "loss": (3.0, 2.0, 1.25, 2.0, 30.0, 5.0),
}

PLACEHOLDER = "—"
