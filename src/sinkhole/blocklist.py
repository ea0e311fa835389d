from __future__ import annotations

import logging
from typing import Iterable, Optional

from .errors import BlocklistUnavailable

logger = logging.getLogger("sinkhole.blocklist")


def normalize_name(name: str) -> str:
    """Brief: Canonical form used for blocklist comparisons.

    Inputs:
      - name: Domain name as written in the file or parsed from a query.

    Outputs:
      - str: Lower-cased name with surrounding whitespace and a trailing dot removed.

    Example:
      >>> normalize_name("Ads.Example.COM.")
      'ads.example.com'
    """
    return name.strip().rstrip(".").lower()


class Blocklist:
    """
    Exact-match set of blocked domain names.

    Brief: Built once at startup and never mutated afterwards, so request
    handler threads share one instance without locking.

    Inputs:
        entries: Iterable of domain names to block.
        enabled: When False the list never blocks anything (no blocklist configured).
    """

    def __init__(self, entries: Iterable[str] = (), *, enabled: bool = True) -> None:
        self.enabled = bool(enabled)
        names = (normalize_name(e) for e in entries)
        self._names = frozenset(n for n in names if n)

    def __contains__(self, qname: object) -> bool:
        if not isinstance(qname, str):
            return False
        return self.is_blocked(qname)

    def __len__(self) -> int:
        return len(self._names)

    def is_blocked(self, qname: str) -> bool:
        """
        Return True when qname is on the list.

        Inputs:
            qname: Query name as produced by the wire codec.
        Outputs:
            bool
        """
        if not self.enabled:
            return False
        return normalize_name(qname) in self._names

    @classmethod
    def disabled(cls) -> "Blocklist":
        return cls((), enabled=False)


def read_blocklist_file(path: str) -> list[str]:
    """
    Read one domain per line from path.

    Inputs:
        path: Blocklist file, UTF-8 text.
    Outputs:
        list[str]: Every line, stripped. Blank lines are kept here and
        discarded when the Blocklist is built.

    Raises:
        BlocklistUnavailable: when the file cannot be opened or decoded.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return [line.strip() for line in fh]
    except (OSError, UnicodeDecodeError) as exc:
        raise BlocklistUnavailable(f"unable to read blocklist {path}: {exc}") from exc


def load_blocklist(path: Optional[str]) -> Blocklist:
    """
    Build the startup blocklist.

    Inputs:
        path: File path, or None when no blocklist was requested.
    Outputs:
        Blocklist: disabled when path is None; empty (but enabled) when the file
        is unreadable, after logging a warning.
    """
    if path is None:
        logger.info("No blocklist configured; all queries will be resolved")
        return Blocklist.disabled()

    try:
        entries = read_blocklist_file(path)
    except BlocklistUnavailable as exc:
        logger.warning("%s; continuing with an empty blocklist", exc)
        return Blocklist(())

    blocklist = Blocklist(entries)
    logger.info("Loaded %d blocklist entries from %s", len(blocklist), path)
    return blocklist
