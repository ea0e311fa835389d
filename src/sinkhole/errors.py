"""Error kinds raised by the sinkhole resolver.

Inputs:
  - None

Outputs:
  - Exception classes shared by the wire codec, resolver loop, and front end.

Per-query errors (MalformedRequest, UpstreamUnresolvable, UpstreamIoFailure)
are confined to the query that raised them: the UDP handler logs them and
keeps serving.
"""


class SinkholeError(Exception):
    """Base class for all sinkhole errors."""


class MalformedRequest(SinkholeError):
    """
    Brief: A DNS message could not be parsed.

    Raised when name parsing runs past the datagram, follows a pointer outside
    of it, exceeds the name length or pointer budget, or when a response does
    not have the shape the resolver loop needs.
    """


class UpstreamUnresolvable(SinkholeError):
    """
    Brief: A root or NS target hostname could not be resolved to an address.

    Inputs:
    - message: description
    - hostname: the name that failed to resolve
    """

    def __init__(self, message: str, hostname: str = "") -> None:
        super().__init__(message)
        self.hostname = hostname


class UpstreamIoFailure(SinkholeError):
    """Brief: Sending to or receiving from an upstream server failed or timed out."""


class BlocklistUnavailable(SinkholeError):
    """Brief: The blocklist file could not be read."""


class UsageError(SinkholeError):
    """Brief: The command line could not be interpreted."""
