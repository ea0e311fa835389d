from __future__ import annotations

import struct
from typing import Optional, Tuple

from dnslib import QTYPE, RCODE

from .errors import MalformedRequest

"""Byte-level DNS message helpers used by the sinkhole resolver.

Inputs:
  - Raw DNS datagrams (bytes) as received from clients and upstream servers.

Outputs:
  - Parsed names, header counts, and rewritten header flag bits.

Brief:
  The resolver forwards the client's request byte-for-byte to every upstream
  server and returns the last upstream response with two header bits changed.
  It therefore never decodes whole messages; this module reads just the parts
  the resolver loop needs (header counts, the question, and the first NS
  target in the authority section) directly from the wire.
"""

HEADER_SIZE = 12
MAX_DATAGRAM_SIZE = 512

# RFC 1035 limits a name to 255 octets on the wire. Pointer chains in real
# responses are a handful of jumps deep; anything past this is a loop.
MAX_NAME_LENGTH = 255
MAX_POINTER_JUMPS = 128

# Byte 2 of the header.
FLAG_QR = 0x80
FLAG_AA = 0x04
# Byte 3 of the header.
FLAG_RA = 0x80
RCODE_MASK = 0x0F

_POINTER_MASK = 0xC0


def _require_header(data: bytes) -> None:
    if len(data) < HEADER_SIZE:
        raise MalformedRequest(
            f"datagram of {len(data)} bytes is shorter than the DNS header"
        )


def get_id(data: bytes) -> int:
    """Return the 16-bit transaction ID from bytes 0-1."""
    _require_header(data)
    return (data[0] << 8) | data[1]


def get_qdcount(data: bytes) -> int:
    _require_header(data)
    return (data[4] << 8) | data[5]


def get_ancount(data: bytes) -> int:
    """Return ANCOUNT (bytes 6-7, big-endian unsigned)."""
    _require_header(data)
    return (data[6] << 8) | data[7]


def get_nscount(data: bytes) -> int:
    """Return NSCOUNT (bytes 8-9, big-endian unsigned)."""
    _require_header(data)
    return (data[8] << 8) | data[9]


def get_rcode(data: bytes) -> int:
    """Return the RCODE nibble (low four bits of byte 3)."""
    _require_header(data)
    return data[3] & RCODE_MASK


def is_response(data: bytes) -> bool:
    _require_header(data)
    return bool(data[2] & FLAG_QR)


def parse_name(data: bytes, offset: int) -> str:
    """Brief: Parse a domain name starting at offset, following compression pointers.

    Inputs:
      - data: Complete DNS message; pointer targets are offsets into it.
      - offset: Byte offset of the first label length byte.

    Outputs:
      - str: Labels joined with '.', without a trailing dot ('' for the root).

    Raises:
      - MalformedRequest: when a label or pointer runs past the message, a
        reserved label type is found, the name exceeds MAX_NAME_LENGTH octets,
        or more than MAX_POINTER_JUMPS pointers are followed.

    Each label byte maps to the character with the same code point, so
    non-ASCII octets survive as their numeric value.

    Example:
      >>> parse_name(b"\\x03www\\x07example\\x03com\\x00", 0)
      'www.example.com'
    """

    labels = []
    pos = offset
    consumed = 0
    jumps = 0
    size = len(data)

    while True:
        if pos < 0 or pos >= size:
            raise MalformedRequest(f"name runs past end of message at offset {pos}")
        length = data[pos]
        kind = length & _POINTER_MASK

        if kind == _POINTER_MASK:
            if pos + 1 >= size:
                raise MalformedRequest(f"truncated compression pointer at offset {pos}")
            jumps += 1
            if jumps > MAX_POINTER_JUMPS:
                raise MalformedRequest("too many compression pointers (loop?)")
            target = ((length & 0x3F) << 8) | data[pos + 1]
            if target >= size:
                raise MalformedRequest(
                    f"compression pointer to offset {target} outside message"
                )
            pos = target
            continue

        if kind:
            raise MalformedRequest(f"reserved label type {length:#04x} at offset {pos}")

        if length == 0:
            break

        start = pos + 1
        end = start + length
        if end > size:
            raise MalformedRequest(f"label at offset {pos} runs past end of message")
        consumed += length + 1
        if consumed + 1 > MAX_NAME_LENGTH:
            raise MalformedRequest(f"name exceeds {MAX_NAME_LENGTH} octets")
        labels.append(data[start:end].decode("latin-1"))
        pos = end

    return ".".join(labels)


def skip_name(data: bytes, offset: int) -> int:
    """Brief: Return the offset just past the name stored at offset.

    Inputs:
      - data: Complete DNS message.
      - offset: Start of the name as it sits in the message.

    Outputs:
      - int: Offset of the first byte after the name's terminator or pointer.

    Only the bytes physically at offset are walked; pointers end the name.
    """

    pos = offset
    size = len(data)
    while True:
        if pos >= size:
            raise MalformedRequest(f"name runs past end of message at offset {pos}")
        length = data[pos]
        kind = length & _POINTER_MASK
        if kind == _POINTER_MASK:
            if pos + 1 >= size:
                raise MalformedRequest(f"truncated compression pointer at offset {pos}")
            return pos + 2
        if kind:
            raise MalformedRequest(f"reserved label type {length:#04x} at offset {pos}")
        if length == 0:
            return pos + 1
        pos += length + 1


def parse_question(data: bytes) -> Tuple[str, int, int, int]:
    """Brief: Parse the first (and only) question of a DNS message.

    Inputs:
      - data: DNS message bytes.

    Outputs:
      - (qname, qtype, qclass, end_offset) where end_offset is the offset of
        the first byte after the question section.
    """

    if get_qdcount(data) < 1:
        raise MalformedRequest("message carries no question")
    qname = parse_name(data, HEADER_SIZE)
    end = skip_name(data, HEADER_SIZE)
    if end + 4 > len(data):
        raise MalformedRequest("question section truncated")
    qtype, qclass = struct.unpack_from("!HH", data, end)
    return qname, qtype, qclass, end + 4


def _read_rr_header(data: bytes, offset: int) -> Tuple[int, int, int, int]:
    """Return (rtype, rdata_offset, rdlength, next_offset) for the RR at offset."""

    pos = skip_name(data, offset)
    if pos + 10 > len(data):
        raise MalformedRequest(f"resource record header truncated at offset {pos}")
    rtype, _rclass, _ttl, rdlength = struct.unpack_from("!HHIH", data, pos)
    rdata_offset = pos + 10
    next_offset = rdata_offset + rdlength
    if next_offset > len(data):
        raise MalformedRequest(f"RDATA at offset {rdata_offset} runs past end of message")
    return rtype, rdata_offset, rdlength, next_offset


def first_authority_ns(data: bytes) -> Optional[str]:
    """Brief: Return the target name of the first NS record in the AUTHORITY section.

    Inputs:
      - data: Upstream response bytes (normally a referral).

    Outputs:
      - str: NS target hostname, e.g. 'a.gtld-servers.net', or None when
        the authority section holds no NS record (NODATA with an SOA).

    Raises:
      - MalformedRequest: when the message cannot be walked.

    Walks the question and answer sections RR by RR rather than assuming a
    fixed layout, so OPT records, compressed owners, or a leading SOA in the
    authority section do not throw the offset off.
    """

    _qname, _qtype, _qclass, pos = parse_question(data)
    for _ in range(get_ancount(data)):
        _rtype, _rdata, _rdlen, pos = _read_rr_header(data, pos)

    for _ in range(get_nscount(data)):
        rtype, rdata_offset, _rdlen, pos = _read_rr_header(data, pos)
        if rtype == QTYPE.NS:
            return parse_name(data, rdata_offset)

    return None


def legacy_authority_offset(data: bytes) -> int:
    """Brief: Locate the first authority RDATA by the fixed '+17' shortcut.

    Inputs:
      - data: Referral response bytes.

    Outputs:
      - int: Offset 17 bytes past the question's QNAME terminator.

    This equals the RDATA offset of the first authority RR only when the
    response has one uncompressed question, no answers, and an owner name
    stored as a two-byte pointer. first_authority_ns() does not rely on it.
    """

    pos = HEADER_SIZE
    size = len(data)
    while pos < size and data[pos] != 0:
        pos += 1
    if pos >= size:
        raise MalformedRequest("question name is not terminated")
    return pos + 17


def apply_success_flags(data: bytes) -> bytes:
    """Brief: Rewrite header bits on an upstream response before it goes to the client.

    Inputs:
      - data: Final upstream response bytes.

    Outputs:
      - bytes: Copy with AA cleared (byte 2 & 0xFB) and RA set (byte 3 | 0x80).
        RCODE and everything else are left as received.
    """

    _require_header(data)
    buf = bytearray(data)
    buf[2] &= ~FLAG_AA & 0xFF
    buf[3] |= FLAG_RA
    return bytes(buf)


def make_blocked_reply(request: bytes, *, authoritative: bool = False) -> bytes:
    """Brief: Turn a client request into the synthetic reply for a blocked name.

    Inputs:
      - request: Client request bytes, reused unchanged apart from the header.
      - authoritative: Also set the RFC 1035 AA bit (byte 2 bit 0x04).

    Outputs:
      - bytes: Copy with byte 2 bit 0x80 set, RA set, and RCODE NXDOMAIN.
    """

    _require_header(request)
    buf = bytearray(request)
    buf[2] |= FLAG_QR
    if authoritative:
        buf[2] |= FLAG_AA
    buf[3] = (buf[3] & ~RCODE_MASK & 0xFF) | FLAG_RA | RCODE.NXDOMAIN
    return bytes(buf)


def response_matches_request(request: bytes, response: bytes) -> bool:
    """Brief: Check that an upstream datagram answers the in-flight request.

    Inputs:
      - request: Request bytes that were sent upstream.
      - response: Candidate response datagram.

    Outputs:
      - bool: True when the transaction ID matches, QR is set, and QNAME
        (case-insensitively), QTYPE and QCLASS equal the request's.
    """

    try:
        if get_id(response) != get_id(request) or not is_response(response):
            return False
        req_q = parse_question(request)
        resp_q = parse_question(response)
    except MalformedRequest:
        return False
    return (
        req_q[0].lower() == resp_q[0].lower()
        and req_q[1] == resp_q[1]
        and req_q[2] == resp_q[2]
    )
