"""
Brief: Unit tests for the upstream UDP transport using a local UDP stub server.

Inputs:
  - None

Outputs:
  - None
"""

import inspect
import socket
import threading
import time

import pytest
from dnslib import DNSRecord

from sinkhole import wire
from sinkhole.errors import UpstreamIoFailure
from sinkhole.servers.transports.udp import UDPError, udp_query


class _UDPStub:
    """Loopback server that replies to each query with the datagrams from `script`."""

    def __init__(self, script):
        self.script = script
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.addr = self.sock.getsockname()
        self.received = []
        self._stop = False
        self.thread = threading.Thread(target=self._loop, daemon=True)

    def start(self):
        self.thread.start()
        time.sleep(0.02)

    def _loop(self):
        while not self._stop:
            try:
                self.sock.settimeout(0.2)
                data, peer = self.sock.recvfrom(4096)
            except OSError:
                continue
            self.received.append(data)
            for reply in self.script(data):
                try:
                    self.sock.sendto(reply, peer)
                except OSError:
                    pass

    def close(self):
        self._stop = True
        try:
            self.sock.close()
        except OSError:
            pass


def _stub(script):
    s = _UDPStub(script)
    s.start()
    return s


def _query(qid=0x0101):
    q = DNSRecord.question("example.com", "A")
    q.header.id = qid
    return q.pack()


def _reply_with_id(data, qid):
    r = DNSRecord.parse(data).reply()
    r.header.id = qid
    return r.pack()


def test_udp_query_returns_first_datagram():
    stub = _stub(lambda data: [_reply_with_id(data, DNSRecord.parse(data).header.id)])
    try:
        query = _query()
        resp = udp_query(stub.addr[0], stub.addr[1], query, timeout_ms=1000)
        assert wire.get_id(resp) == 0x0101
        assert stub.received == [query]
    finally:
        stub.close()


def test_udp_query_skips_datagrams_rejected_by_accept():
    """
    Brief: A spoofed reply with the wrong ID is dropped and the wait continues.

    Inputs:
      - stub sending a mismatched datagram followed by the real reply

    Outputs:
      - None: Asserts the matching reply is returned
    """
    stub = _stub(
        lambda data: [_reply_with_id(data, 0xDEAD), _reply_with_id(data, 0x0101)]
    )
    try:
        query = _query()
        resp = udp_query(
            stub.addr[0],
            stub.addr[1],
            query,
            timeout_ms=1000,
            accept=lambda r: wire.response_matches_request(query, r),
        )
        assert wire.get_id(resp) == 0x0101
    finally:
        stub.close()


def test_udp_query_timeout_raises_udp_error():
    stub = _stub(lambda data: [])
    try:
        start = time.monotonic()
        with pytest.raises(UDPError) as excinfo:
            udp_query(stub.addr[0], stub.addr[1], _query(), timeout_ms=200)
        assert time.monotonic() - start < 2.0
        assert isinstance(excinfo.value, UpstreamIoFailure)
        assert "timeout" in str(excinfo.value)
    finally:
        stub.close()


def test_udp_query_deadline_covers_rejected_datagrams():
    stub = _stub(lambda data: [_reply_with_id(data, 0xBEEF)] * 3)
    try:
        query = _query()
        with pytest.raises(UDPError):
            udp_query(
                stub.addr[0],
                stub.addr[1],
                query,
                timeout_ms=300,
                accept=lambda r: wire.response_matches_request(query, r),
            )
    finally:
        stub.close()


def test_udp_query_socket_error_is_wrapped():
    with pytest.raises(UDPError):
        udp_query("256.0.0.1", 53, _query(), timeout_ms=100)


def test_udp_query_keyword_options():
    params = inspect.signature(udp_query).parameters
    keyword_only = [
        name for name, p in params.items() if p.kind is inspect.Parameter.KEYWORD_ONLY
    ]
    assert keyword_only == ["timeout_ms", "accept"]
    with pytest.raises(TypeError):
        udp_query("127.0.0.1", 53, _query(), source_ip="127.0.0.1")
