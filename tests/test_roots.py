"""
Brief: Tests for root server selection in sinkhole.roots.

Inputs:
  - None

Outputs:
  - None
"""

import random
import socket

import pytest

from sinkhole import roots
from sinkhole.errors import UpstreamUnresolvable


def test_root_servers_are_the_thirteen_letters():
    assert len(roots.ROOT_SERVERS) == 13
    assert roots.ROOT_SERVERS[0] == "a.root-servers.net"
    assert roots.ROOT_SERVERS[-1] == "m.root-servers.net"


def test_choose_root_uses_injected_resolver():
    seen = []

    def fake_resolve(name):
        seen.append(name)
        return "198.41.0.4"

    root = roots.choose_root(random.Random(1), fake_resolve)
    assert root.name in roots.ROOT_SERVERS
    assert root.address == "198.41.0.4"
    assert seen == [root.name]


def test_choose_root_reaches_every_root():
    """
    Brief: A uniform pick over many draws eventually covers all thirteen roots.

    Inputs:
      - seeded random.Random

    Outputs:
      - None: Asserts every root was selected at least once
    """
    rng = random.Random(12345)
    picked = {
        roots.choose_root(rng, lambda name: "127.0.0.1").name for _ in range(1000)
    }
    assert picked == set(roots.ROOT_SERVERS)


def test_resolve_hostname_failure_is_upstream_unresolvable(monkeypatch):
    def boom(name):
        raise socket.gaierror(-2, "Name or service not known")

    monkeypatch.setattr(roots.socket, "gethostbyname", boom)
    with pytest.raises(UpstreamUnresolvable) as excinfo:
        roots.resolve_hostname("k.root-servers.net")
    assert excinfo.value.hostname == "k.root-servers.net"


def test_choose_root_propagates_resolution_failure(monkeypatch):
    def offline(name):
        raise OSError("no network")

    monkeypatch.setattr(roots.socket, "gethostbyname", offline)
    with pytest.raises(UpstreamUnresolvable):
        roots.choose_root(random.Random(0))
