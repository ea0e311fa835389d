import logging
import socketserver
from typing import Callable, Optional

from dnslib import QTYPE, RCODE, DNSError, DNSRecord

from .. import wire
from ..blocklist import Blocklist
from ..errors import MalformedRequest, SinkholeError
from ..roots import RootServer
from .recursive_resolver import IterativeResolver
from .udp_server import DNSUDPHandler, configure_handler

logger = logging.getLogger("sinkhole.server")


def _make_servfail_response(request: bytes) -> bytes:
    """
    Create a SERVFAIL response for the given request bytes.

    Inputs:
        - request (bytes): Original client request.

    Outputs:
        - response_wire (bytes): SERVFAIL reply with RA set and the request's
          ID and question, or b"" when the request cannot be parsed.
    """
    try:
        req = DNSRecord.parse(request)
    except DNSError as exc:
        logger.debug("Cannot build SERVFAIL for unparseable request: %s", exc)
        return b""
    r = req.reply(ra=1, aa=0)
    r.header.rcode = RCODE.SERVFAIL
    return r.pack()


def resolve_query_bytes(
    data: bytes,
    client_ip: str,
    *,
    blocklist: Optional[Blocklist] = None,
    resolver: Optional[IterativeResolver] = None,
    root_chooser: Optional[Callable[[], RootServer]] = None,
    servfail_on_error: Optional[bool] = None,
    blocked_authoritative: Optional[bool] = None,
) -> bytes:
    """Run the full query lifecycle for one client datagram.

    Inputs:
      - data: Client request bytes.
      - client_ip: Client address, used for logging.
      - blocklist, resolver, root_chooser, servfail_on_error,
        blocked_authoritative: Optional overrides; each defaults to the knob
        of the same name installed on DNSUDPHandler.

    Outputs:
      - bytes: The reply to send, or b"" when the query is dropped.

    Blocked names get the synthetic NXDOMAIN built over the request bytes and
    no upstream traffic. Everything else is resolved from a random root and
    the last upstream response is returned with AA cleared and RA set. Per-query
    errors are logged here and never propagate to the server loop.
    """
    blocklist = blocklist if blocklist is not None else DNSUDPHandler.blocklist
    resolver = resolver if resolver is not None else DNSUDPHandler.resolver
    root_chooser = root_chooser or DNSUDPHandler.root_chooser
    if servfail_on_error is None:
        servfail_on_error = DNSUDPHandler.servfail_on_error
    if blocked_authoritative is None:
        blocked_authoritative = DNSUDPHandler.blocked_authoritative

    try:
        qname, qtype, _qclass, _end = wire.parse_question(data)
    except MalformedRequest as exc:
        logger.error("Dropping malformed request from %s: %s", client_ip, exc)
        return b""

    qtype_name = QTYPE.get(qtype, str(qtype))

    if qname in blocklist:
        logger.info("Blocked %s %s from %s", qname, qtype_name, client_ip)
        return wire.make_blocked_reply(data, authoritative=bool(blocked_authoritative))

    try:
        root = root_chooser()
        result = resolver.resolve(data, root)
    except SinkholeError as exc:
        logger.error(
            "Query %s %s from %s failed (%s): %s",
            qname,
            qtype_name,
            client_ip,
            type(exc).__name__,
            exc,
        )
        if servfail_on_error:
            return _make_servfail_response(data)
        return b""

    if result.hop_limit_reached:
        logger.info(
            "Hop limit reached for %s %s; returning last referral from %s",
            qname,
            qtype_name,
            result.last_upstream,
        )

    reply = wire.apply_success_flags(result.response)
    logger.debug(
        "Resolved %s %s for %s in %d hops via %s (rcode=%s)",
        qname,
        qtype_name,
        client_ip,
        len(result.hops),
        result.last_upstream,
        RCODE.get(wire.get_rcode(reply), "?"),
    )
    return reply


class _SerialUDPServer(socketserver.UDPServer):
    max_packet_size = wire.MAX_DATAGRAM_SIZE


class _ThreadingUDPServer(socketserver.ThreadingUDPServer):
    max_packet_size = wire.MAX_DATAGRAM_SIZE
    daemon_threads = True


class SinkholeServer:
    """A UDP DNS sinkhole server wrapper.

    Example use:
        >>> from sinkhole.servers.server import SinkholeServer
        >>> from sinkhole.blocklist import Blocklist
        >>> from sinkhole.servers.recursive_resolver import IterativeResolver
        >>> import threading
        >>> server = SinkholeServer("127.0.0.1", 0, Blocklist.disabled(), IterativeResolver())
        >>> t = threading.Thread(target=server.serve_forever, daemon=True)
        >>> t.start()
        >>> server.stop()
    """

    def __init__(
        self,
        host: str,
        port: int,
        blocklist: Blocklist,
        resolver: IterativeResolver,
        *,
        threaded: bool = True,
        root_chooser: Optional[Callable[[], RootServer]] = None,
        servfail_on_error: bool = False,
        blocked_authoritative: bool = False,
    ) -> None:
        """Initialize and bind the client-facing UDP socket.

        Inputs:
            host: The address to listen on.
            port: The UDP port to listen on (5300 by default in the CLI).
            blocklist: Blocklist consulted for every query.
            resolver: IterativeResolver used for unblocked queries.
            threaded: One handler thread per datagram when True; strictly
                serial processing when False.
            root_chooser: Optional callable returning the root for a query.
            servfail_on_error: Reply SERVFAIL instead of dropping failed queries.
            blocked_authoritative: Also set the AA bit on blocked replies.
        """
        configure_handler(
            blocklist=blocklist,
            resolver=resolver,
            root_chooser=root_chooser,
            servfail_on_error=servfail_on_error,
            blocked_authoritative=blocked_authoritative,
        )
        server_cls = _ThreadingUDPServer if threaded else _SerialUDPServer
        try:
            self.server = server_cls((host, port), DNSUDPHandler)
        except OSError as e:
            logger.error(
                "Unable to bind UDP %s:%d. Try a port >1024 or run with elevated privileges. Original error: %s",
                host,
                port,
                e,
            )
            raise
        logger.debug("DNS UDP server bound to %s:%d", *self.server_address)

    @property
    def server_address(self):
        return self.server.server_address[:2]

    def serve_forever(self) -> None:
        """Start the UDP server loop and listen for requests.

        Inputs:
          - None
        Outputs:
          - None; runs until stop() is called or KeyboardInterrupt occurs.
        """
        try:
            self.server.serve_forever()
        except KeyboardInterrupt:
            pass

    def stop(self) -> None:
        """Request graceful shutdown and close the underlying UDP socket.

        Inputs:
          - None
        Outputs:
          - None; must be called from a thread other than the one running
            serve_forever().
        """
        try:
            self.server.shutdown()
        except Exception:
            logger.exception("Error while shutting down UDP server")
        try:
            self.server.server_close()
        except OSError:
            logger.exception("Error while closing UDP server socket")
