import logging
import socket
import time
from typing import Callable, Optional

from ...errors import UpstreamIoFailure
from ...wire import MAX_DATAGRAM_SIZE

logger = logging.getLogger("sinkhole.transport.udp")


class UDPError(UpstreamIoFailure):
    """
    Brief: DNS-over-UDP transport error.

    Inputs:
    - message: description

    Outputs:
    - Exception instance
    """

    pass


def udp_query(
    host: str,
    port: int,
    query: bytes,
    *,
    timeout_ms: int = 3000,
    accept: Optional[Callable[[bytes], bool]] = None,
) -> bytes:
    """
    Brief: Perform a single UDP DNS exchange on a private socket.

    Inputs:
    - host: upstream server IP
    - port: upstream UDP port
    - query: wire-format DNS query bytes, sent unchanged
    - timeout_ms: total time to wait for an acceptable reply, in milliseconds
    - accept: optional predicate; datagrams it rejects (or that come from a
      different peer) are dropped and the wait continues

    Outputs:
    - bytes: the first accepted datagram, up to MAX_DATAGRAM_SIZE bytes

    Raises:
    - UDPError: on socket errors or when no acceptable datagram arrives
      before the deadline

    Example:
        >>> try:
        ...     udp_query('127.0.0.1', 9, b'\x00\x01', timeout_ms=10)
        ... except UDPError:
        ...     pass
    """
    deadline = time.monotonic() + max(1, int(timeout_ms)) / 1000.0
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.sendto(query, (host, int(port)))
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise socket.timeout("timed out")
                s.settimeout(remaining)
                data, peer = s.recvfrom(MAX_DATAGRAM_SIZE)
                if peer[0] != host or int(peer[1]) != int(port):
                    logger.debug(
                        "Dropping datagram from unexpected peer %s:%d", peer[0], peer[1]
                    )
                    continue
                if accept is not None and not accept(data):
                    logger.debug(
                        "Dropping mismatched response from %s:%d", host, int(port)
                    )
                    continue
                return data
        finally:
            s.close()
    except socket.timeout as e:
        raise UDPError(f"UDP timeout waiting for {host}:{port}") from e
    except OSError as e:
        raise UDPError(f"UDP error talking to {host}:{port}: {e}") from e
