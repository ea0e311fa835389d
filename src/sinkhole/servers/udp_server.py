import logging
import socketserver
from typing import Callable, Optional

from ..blocklist import Blocklist
from ..roots import RootServer, choose_root
from .recursive_resolver import IterativeResolver

logger = logging.getLogger("sinkhole.server")


class DNSUDPHandler(socketserver.BaseRequestHandler):
    """
    Handles UDP DNS requests from clients.
    This class is instantiated for each incoming datagram.

    The class-level knobs below are installed once by SinkholeServer and are
    read-only afterwards, so concurrent handler threads share them safely.

    Example use:
        This handler is used internally by SinkholeServer and is not
        typically instantiated directly by users.
    """

    blocklist: Blocklist = Blocklist.disabled()
    resolver: IterativeResolver = IterativeResolver()
    root_chooser: Callable[[], RootServer] = staticmethod(choose_root)
    servfail_on_error: bool = False
    blocked_authoritative: bool = False

    def handle(self) -> None:
        """Process a single UDP DNS query.

        Inputs:
          - None (called by socketserver for each UDP datagram).
        Outputs:
          - None; sends at most one datagram back to the client.

        Resolution is delegated to sinkhole.servers.server.resolve_query_bytes.
        An empty result means the query was dropped and the client is left to
        time out.
        """
        data, sock = self.request
        client_ip = self.client_address[0]

        from . import server as _server_mod

        wire = _server_mod.resolve_query_bytes(data, client_ip)
        if not wire:
            return
        try:
            sock.sendto(wire, self.client_address)
        except OSError as exc:
            logger.error(
                "Failed to send reply to %s:%d: %s",
                client_ip,
                self.client_address[1],
                exc,
            )


def configure_handler(
    *,
    blocklist: Blocklist,
    resolver: IterativeResolver,
    root_chooser: Optional[Callable[[], RootServer]] = None,
    servfail_on_error: bool = False,
    blocked_authoritative: bool = False,
) -> None:
    """
    Brief: Install shared state on DNSUDPHandler before the server starts.

    Inputs:
    - blocklist: Blocklist consulted for every query
    - resolver: IterativeResolver shared by all handler threads
    - root_chooser: optional callable returning the root for a query
    - servfail_on_error: reply SERVFAIL instead of dropping failed queries
    - blocked_authoritative: also set the AA bit on blocked replies

    Outputs:
    - None
    """
    DNSUDPHandler.blocklist = blocklist
    DNSUDPHandler.resolver = resolver
    DNSUDPHandler.root_chooser = staticmethod(root_chooser or choose_root)
    DNSUDPHandler.servfail_on_error = bool(servfail_on_error)
    DNSUDPHandler.blocked_authoritative = bool(blocked_authoritative)
