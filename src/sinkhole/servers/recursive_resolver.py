from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from dnslib import RCODE

from .. import wire
from ..errors import MalformedRequest
from ..roots import RootServer, resolve_hostname
from . import recursive_resolver as _recursive_module  # Self-import so tests can monkeypatch udp_query.
from .transports.udp import udp_query as _udp_transport_query

"""Iterative resolver loop for the sinkhole.

This module walks the DNS hierarchy from a root server towards an
authoritative server by following the first NS referral in each response.
The client's request is re-sent byte-for-byte at every hop; only the
destination changes. The loop stops as soon as a response carries an answer,
an error RCODE, or no authority records, or after MAX_HOPS round trips.
"""


logger = logging.getLogger("sinkhole.recursive")

MAX_HOPS = 16
UPSTREAM_PORT = 53


def udp_query(
    host: str,
    port: int,
    wire_query: bytes,
    *,
    timeout_ms: int = 3000,
    accept: Optional[Callable[[bytes], bool]] = None,
) -> bytes:
    """Brief: DNS-over-UDP helper used by IterativeResolver and tests.

    Inputs:
      - host: Upstream server IP.
      - port: Upstream UDP port.
      - wire_query: Request bytes to send.
      - timeout_ms: Per-exchange timeout in milliseconds.
      - accept: Predicate that filters spoofed or stray datagrams.

    Outputs:
      - bytes: Wire-format DNS response bytes.
    """

    return _udp_transport_query(
        host, int(port), wire_query, timeout_ms=timeout_ms, accept=accept
    )


def should_follow_referral(response: bytes) -> bool:
    """Brief: Decide whether a response is a referral the loop must follow.

    Inputs:
      - response: Upstream response bytes.

    Outputs:
      - bool: True iff RCODE is NOERROR, ANCOUNT is 0, and NSCOUNT >= 1.
    """

    return (
        wire.get_rcode(response) == RCODE.NOERROR
        and wire.get_ancount(response) == 0
        and wire.get_nscount(response) >= 1
    )


@dataclass(frozen=True)
class TraceHop:
    """Single upstream round trip recorded during resolution.

    Inputs:
      - server: Hostname of the server queried (root or NS target).
      - address: IP address the request was sent to.
      - rcode: RCODE of the response.
      - ancount: ANCOUNT of the response.
      - nscount: NSCOUNT of the response.

    Outputs:
      - Immutable record for debugging and tests.
    """

    server: str
    address: str
    rcode: int
    ancount: int
    nscount: int


@dataclass
class ResolveResult:
    """Outcome of one resolver loop.

    Inputs:
      - response: Bytes of the last upstream response, as received.
      - hops: Ordered TraceHop list, one entry per upstream round trip.
      - hop_limit_reached: True when the loop stopped on the hop bound while
        the last response was still a referral.
    """

    response: bytes
    hops: List[TraceHop] = field(default_factory=list)
    hop_limit_reached: bool = False

    @property
    def last_upstream(self) -> Optional[str]:
        if not self.hops:
            return None
        last = self.hops[-1]
        return f"{last.server} ({last.address})"


class IterativeResolver:
    """Brief: Drives the query/referral dialogue with upstream servers.

    Inputs (constructor):
      - max_hops: Upper bound on upstream round trips per query, clamped to
        1..MAX_HOPS.
      - timeout_ms: Receive timeout for each upstream exchange.
      - resolve_host: Optional name -> address callable used for NS targets;
        defaults to the host resolver.

    Outputs:
      - Instances able to resolve a client request via resolve().

    The resolver holds no per-query state, so one instance is shared by all
    request handler threads; each exchange opens its own socket.
    """

    def __init__(
        self,
        *,
        max_hops: int = MAX_HOPS,
        timeout_ms: int = 3000,
        resolve_host: Optional[Callable[[str], str]] = None,
    ) -> None:
        self._max_hops = min(MAX_HOPS, max(1, int(max_hops or MAX_HOPS)))
        self._timeout_ms = max(1, int(timeout_ms or 3000))
        self._resolve_host = resolve_host or resolve_hostname

    @property
    def max_hops(self) -> int:
        return self._max_hops

    def _exchange(self, request: bytes, address: str) -> bytes:
        # Resolve udp_query through the module alias so monkeypatched
        # stubs see every upstream exchange.
        return _recursive_module.udp_query(
            address,
            UPSTREAM_PORT,
            request,
            timeout_ms=self._timeout_ms,
            accept=lambda resp: wire.response_matches_request(request, resp),
        )

    def resolve(self, request: bytes, root: RootServer) -> ResolveResult:
        """Brief: Resolve a client request iteratively, starting at root.

        Inputs:
          - request: Client request bytes, sent upstream unchanged.
          - root: RootServer for the first hop.

        Outputs:
          - ResolveResult whose response is the last upstream response.

        Raises:
          - UpstreamUnresolvable: an NS target name did not resolve.
          - UpstreamIoFailure: an upstream exchange failed or timed out.
          - MalformedRequest: a referral could not be walked to an NS target.
        """

        result = ResolveResult(response=b"")
        server, address = root.name, root.address

        while True:
            response = self._exchange(request, address)
            hop = TraceHop(
                server=server,
                address=address,
                rcode=wire.get_rcode(response),
                ancount=wire.get_ancount(response),
                nscount=wire.get_nscount(response),
            )
            result.hops.append(hop)
            result.response = response
            logger.debug(
                "Hop %d: %s (%s) rcode=%s an=%d ns=%d",
                len(result.hops),
                server,
                address,
                RCODE.get(hop.rcode, f"rcode{hop.rcode}"),
                hop.ancount,
                hop.nscount,
            )

            if not should_follow_referral(response):
                return result

            next_server = wire.first_authority_ns(response)
            if next_server is None:
                logger.debug(
                    "No NS record in authority from %s; returning response as final",
                    server,
                )
                return result
            if not next_server:
                raise MalformedRequest("referral names the root as its NS target")

            if len(result.hops) >= self._max_hops:
                result.hop_limit_reached = True
                logger.debug(
                    "Hop limit %d reached; returning last referral from %s",
                    self._max_hops,
                    server,
                )
                return result

            server = next_server
            address = self._resolve_host(server)
