"""
Brief: Global pytest configuration enforcing a per-test 10s timeout.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so the 'sinkhole' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def restore_handler_knobs():
    """
    Brief: Restore DNSUDPHandler class-level state after each test.

    Inputs:
      - None

    Outputs:
      - None

    SinkholeServer installs its blocklist/resolver on the handler class, so a
    test that starts a server would otherwise leak them into later tests.
    """
    from sinkhole.servers.udp_server import DNSUDPHandler

    names = (
        "blocklist",
        "resolver",
        "root_chooser",
        "servfail_on_error",
        "blocked_authoritative",
    )
    saved = {name: DNSUDPHandler.__dict__[name] for name in names}
    yield
    for name, value in saved.items():
        setattr(DNSUDPHandler, name, value)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        # Fallback: no-op on platforms without SIGALRM
        yield
