from __future__ import annotations

import logging
import random
import socket
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import UpstreamUnresolvable

logger = logging.getLogger("sinkhole.roots")

# The thirteen root server identities. Addresses are looked up through the
# host resolver on every query rather than baked in.
ROOT_SERVERS: tuple[str, ...] = tuple(
    f"{letter}.root-servers.net" for letter in "abcdefghijklm"
)


@dataclass(frozen=True)
class RootServer:
    """Root server picked for one query.

    Inputs:
      - name: Hostname, e.g. 'k.root-servers.net'.
      - address: IPv4 address string the name resolved to.
    """

    name: str
    address: str


def resolve_hostname(name: str) -> str:
    """Brief: Resolve a hostname to an IPv4 address using the host resolver.

    Inputs:
      - name: Hostname without trailing dot.

    Outputs:
      - str: Dotted-quad address.

    Raises:
      - UpstreamUnresolvable: when the host resolver fails.
    """

    try:
        return socket.gethostbyname(name)
    except (OSError, UnicodeError) as exc:
        raise UpstreamUnresolvable(f"unable to resolve {name}: {exc}", name) from exc


def choose_root(
    rng: Optional[random.Random] = None,
    resolve_host: Optional[Callable[[str], str]] = None,
) -> RootServer:
    """Brief: Pick one of the thirteen root servers uniformly at random.

    Inputs:
      - rng: Optional random.Random used for the pick (tests seed one).
      - resolve_host: Optional name -> address callable; defaults to
        resolve_hostname.

    Outputs:
      - RootServer with the chosen name and its resolved address.

    Raises:
      - UpstreamUnresolvable: when the chosen name cannot be resolved.
    """

    chooser = rng if rng is not None else random
    name = chooser.choice(ROOT_SERVERS)
    resolver = resolve_host or resolve_hostname
    address = resolver(name)
    logger.debug("Selected root %s (%s)", name, address)
    return RootServer(name=name, address=address)
