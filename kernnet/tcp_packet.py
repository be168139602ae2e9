"""TCP segments over IPv4: headers, flags, options, sequence arithmetic and validation."""

from __future__ import annotations

import dataclasses
import enum
import struct
from dataclasses import dataclass
from typing import Optional

from kernnet.ipv4 import (
    AddressLike,
    IPProtocol,
    IPv4Header,
    PacketError,
    ip_data_checksum,
    parse_ipv4_packet,
)

TCP_HEADER_SIZE = 20
MAX_TCP_HEADER_SIZE = 60
MAX_TCP_OPTIONS_SIZE = MAX_TCP_HEADER_SIZE - TCP_HEADER_SIZE

MIN_TCP_MAX_SEGMENT_SIZE = 576
MAX_TCP_WINDOW_SIZE = 65535
INITIAL_TCP_WINDOW_SIZE = 2
MAX_TCP_WINDOW_SCALE = 14
INITIAL_TCP_WINDOW_SCALE = 0

SEQUENCE_MASK = 0xFFFFFFFF

_FORMAT = struct.Struct(">HHIIBBHHH")


class TCPFlags(enum.IntFlag):
    """Control bits of a TCP header; NS is the low bit of the data-offset byte."""

    FIN = 0x001
    SYN = 0x002
    RST = 0x004
    PSH = 0x008
    ACK = 0x010
    URG = 0x020
    ECE = 0x040
    CWR = 0x080
    NS = 0x100


class TCPOptionCode(enum.IntEnum):
    """Option kinds that appear in TCP headers."""

    END = 0
    NOP = 1
    MAX_SEGMENT_SIZE = 2
    WINDOW_SCALE = 3
    SACK_PERMITTED = 4
    SACK = 5
    TIMESTAMP = 8


def seq_diff(a: int, b: int) -> int:
    """Distance from sequence number ``b`` to ``a`` modulo 2**32."""
    return (a - b) & SEQUENCE_MASK


def seq_add(a: int, b: int) -> int:
    """Sequence number ``a`` advanced by ``b`` modulo 2**32."""
    return (a + b) & SEQUENCE_MASK


@dataclass(frozen=True)
class TCPHeader:
    """The fixed part of a TCP header; ``data_offset`` counts 32-bit words."""

    source_port: int
    destination_port: int
    sequence_number: int = 0
    acknowledge_number: int = 0
    flags: TCPFlags = TCPFlags(0)
    window_size: int = 0
    checksum: int = 0
    urgent_pointer: int = 0
    data_offset: int = TCP_HEADER_SIZE // 4

    @property
    def header_size(self) -> int:
        return self.data_offset * 4

    def pack(self) -> bytes:
        """Encode the fixed header; the reserved bits are written as zero."""
        flags = int(self.flags)
        offset_byte = ((self.data_offset & 0xF) << 4) | ((flags >> 8) & 0x1)
        try:
            return _FORMAT.pack(
                self.source_port,
                self.destination_port,
                self.sequence_number & SEQUENCE_MASK,
                self.acknowledge_number & SEQUENCE_MASK,
                offset_byte,
                flags & 0xFF,
                self.window_size,
                self.checksum,
                self.urgent_pointer,
            )
        except struct.error as error:
            raise PacketError(f"bad TCP header field: {error}") from error

    @classmethod
    def unpack(cls, data: bytes) -> "TCPHeader":
        """Decode the fixed header at the start of ``data``."""
        data = bytes(data)
        if len(data) < TCP_HEADER_SIZE:
            raise PacketError(
                f"TCP header needs {TCP_HEADER_SIZE} bytes, got {len(data)}"
            )
        (
            source_port,
            destination_port,
            sequence_number,
            acknowledge_number,
            offset_byte,
            flag_byte,
            window_size,
            checksum,
            urgent_pointer,
        ) = _FORMAT.unpack_from(data)
        return cls(
            source_port=source_port,
            destination_port=destination_port,
            sequence_number=sequence_number,
            acknowledge_number=acknowledge_number,
            flags=TCPFlags(flag_byte | ((offset_byte & 0x1) << 8)),
            window_size=window_size,
            checksum=checksum,
            urgent_pointer=urgent_pointer,
            data_offset=offset_byte >> 4,
        )


@dataclass(frozen=True)
class TCPOptions:
    """Options negotiated in a SYN; None or False where the option is absent."""

    max_segment_size: Optional[int] = None
    window_scale: Optional[int] = None
    sack_permitted: bool = False


def build_tcp_segment(
    header: TCPHeader,
    options: bytes,
    payload: bytes,
    source: AddressLike,
    destination: AddressLike,
) -> bytes:
    """Encode header, options and payload with the data offset and checksum filled in."""
    options = bytes(options)
    payload = bytes(payload)
    if len(options) % 4 != 0:
        raise PacketError(f"TCP options of {len(options)} bytes are not word aligned")
    if len(options) > MAX_TCP_OPTIONS_SIZE:
        raise PacketError(
            f"TCP options of {len(options)} bytes exceed {MAX_TCP_OPTIONS_SIZE}"
        )
    header = dataclasses.replace(
        header, data_offset=(TCP_HEADER_SIZE + len(options)) // 4, checksum=0
    )
    unchecked = header.pack() + options + payload
    checksum = ip_data_checksum(unchecked, source, destination, IPProtocol.TCP)
    return dataclasses.replace(header, checksum=checksum).pack() + options + payload


def syn_options(window_scale: int, max_segment_size: int) -> bytes:
    """The options sent in a SYN: window scale, maximum segment size and an end marker."""
    if not 0 <= window_scale <= 0xFF:
        raise PacketError(f"bad window scale {window_scale}")
    if not 0 <= max_segment_size <= 0xFFFF:
        raise PacketError(f"bad maximum segment size {max_segment_size}")
    return (
        bytes((TCPOptionCode.WINDOW_SCALE, 3, window_scale, TCPOptionCode.NOP))
        + struct.pack(">BBH", TCPOptionCode.MAX_SEGMENT_SIZE, 4, max_segment_size)
        + bytes((TCPOptionCode.END,) * 4)
    )


def _option_value(option: bytes) -> tuple[int, bytes]:
    return option[0], option[2:]


def parse_tcp_options(segment: bytes) -> TCPOptions:
    """Read the options of the TCP segment in ``segment``.

    Unknown options and options with wrong sizes or out-of-range values are
    skipped; an option that runs past the header is an error.
    """
    segment = bytes(segment)
    header = TCPHeader.unpack(segment)
    header_size = header.header_size
    if header_size < TCP_HEADER_SIZE:
        raise PacketError(f"bad TCP header size {header_size}")
    if header_size > len(segment):
        raise PacketError(
            f"TCP header size {header_size} exceeds segment size {len(segment)}"
        )
    max_segment_size: Optional[int] = None
    window_scale: Optional[int] = None
    sack_permitted = False
    offset = TCP_HEADER_SIZE
    while offset != header_size:
        code = segment[offset]
        if code == TCPOptionCode.END:
            break
        if code == TCPOptionCode.NOP:
            offset += 1
            continue
        if offset + 1 >= header_size:
            raise PacketError("TCP option size exceeds header")
        size = segment[offset + 1]
        if size < 2 or offset + size > header_size:
            raise PacketError(f"bad TCP option size {size}")
        value = segment[offset + 2 : offset + size]
        if code == TCPOptionCode.MAX_SEGMENT_SIZE and size == 4:
            (mss,) = struct.unpack(">H", value)
            if mss >= MIN_TCP_MAX_SEGMENT_SIZE:
                max_segment_size = mss
        elif code == TCPOptionCode.WINDOW_SCALE and size == 3:
            if value[0] <= MAX_TCP_WINDOW_SCALE:
                window_scale = value[0]
        elif code == TCPOptionCode.SACK_PERMITTED and size == 2:
            sack_permitted = True
        offset += size
    return TCPOptions(max_segment_size, window_scale, sack_permitted)


def validate_tcp_packet(packet: bytes) -> tuple[IPv4Header, TCPHeader]:
    """Check an IPv4 packet holds a well-formed TCP segment; return both headers."""
    ip_header, segment = parse_ipv4_packet(packet)
    if ip_header.protocol != IPProtocol.TCP:
        raise PacketError(f"not a TCP packet: protocol {int(ip_header.protocol)}")
    if len(segment) < TCP_HEADER_SIZE:
        raise PacketError(
            f"bad TCP/IP packet size {ip_header.total_length}; "
            f"IP header size {ip_header.header_size}"
        )
    header = TCPHeader.unpack(segment)
    if header.header_size < TCP_HEADER_SIZE or header.header_size > len(segment):
        raise PacketError(
            f"bad TCP/IP packet size {ip_header.total_length}; "
            f"TCP header size {header.header_size}; IP header size {ip_header.header_size}"
        )
    calculated = ip_data_checksum(
        segment, ip_header.source, ip_header.destination, IPProtocol.TCP
    )
    if calculated != 0:
        raise PacketError(f"bad TCP checksum {header.checksum:#x}")
    return ip_header, header


def is_plain_syn(flags: TCPFlags) -> bool:
    """Whether ``flags`` open a connection: SYN without ACK, RST or FIN."""
    flags = TCPFlags(flags)
    return TCPFlags.SYN in flags and not flags & (
        TCPFlags.ACK | TCPFlags.RST | TCPFlags.FIN
    )