"""IPv4 header encoding, decoding, validation and checksums."""

from __future__ import annotations

import dataclasses
import enum
import ipaddress
import struct
from dataclasses import dataclass, field
from typing import Union

AddressLike = Union[ipaddress.IPv4Address, str, int, bytes]

MAX_IP_PACKET_SIZE = (1 << 16) - 1
HEADER_SIZE = 20
MAX_IP_PAYLOAD_SIZE = MAX_IP_PACKET_SIZE - HEADER_SIZE
ANY_ADDRESS = ipaddress.IPv4Address(0)
BROADCAST_ADDRESS = ipaddress.IPv4Address("255.255.255.255")
ANY_PORT = 0

DONT_FRAGMENT = 2
DEFAULT_TTL = 32

_FIXED = struct.Struct(">BBHHBBBBH4s4s")


class PacketError(ValueError):
    """Raised when a packet is malformed or cannot be built."""


class IPProtocol(enum.IntEnum):
    """Protocol numbers carried in the IPv4 header."""

    ICMP = 1
    TCP = 6
    UDP = 17
    TEST253 = 253
    TEST254 = 254


def to_address(value: AddressLike) -> ipaddress.IPv4Address:
    """Coerce a string, integer, 4-byte value or address into an IPv4Address."""
    if isinstance(value, ipaddress.IPv4Address):
        return value
    return ipaddress.IPv4Address(value)


def _sum_words(data: bytes) -> int:
    total = 0
    even = len(data) - len(data) % 2
    for (word,) in struct.iter_unpack(">H", data[:even]):
        total += word
    if len(data) % 2:
        total += data[-1] << 8
    return total


def _finish(total: int) -> int:
    while total > 0xFFFF:
        total = (total & 0xFFFF) + (total >> 16)
    return total ^ 0xFFFF


def ones_complement_checksum(data: bytes) -> int:
    """Internet checksum of ``data``; odd data is padded with a zero byte."""
    return _finish(_sum_words(bytes(data)))


def ip_data_checksum(
    data: bytes,
    source: AddressLike,
    destination: AddressLike,
    protocol: int,
) -> int:
    """Checksum of an upper-layer segment including the IPv4 pseudo header."""
    data = bytes(data)
    pseudo = (
        _sum_words(to_address(source).packed)
        + _sum_words(to_address(destination).packed)
        + int(protocol)
        + len(data)
    )
    return _finish(pseudo + _sum_words(data))


@dataclass
class IPv4Header:
    """An IPv4 header; ``header_length`` counts 32-bit words."""

    protocol: int = IPProtocol.TEST254
    source: ipaddress.IPv4Address = ANY_ADDRESS
    destination: ipaddress.IPv4Address = ANY_ADDRESS
    total_length: int = HEADER_SIZE
    version: int = 4
    header_length: int = HEADER_SIZE // 4
    differentiated_services: int = 0
    congestion_notification: int = 0
    identification: int = 0
    flags: int = DONT_FRAGMENT
    fragment_offset: int = 0
    time_to_live: int = DEFAULT_TTL
    checksum: int = 0
    options: bytes = field(default=b"")

    def __post_init__(self) -> None:
        self.source = to_address(self.source)
        self.destination = to_address(self.destination)

    @property
    def header_size(self) -> int:
        return self.header_length * 4

    @property
    def data_size(self) -> int:
        return self.total_length - self.header_size

    def pack(self) -> bytes:
        """Encode the header, options included, with the stored checksum."""
        fixed = _FIXED.pack(
            ((self.version & 0xF) << 4) | (self.header_length & 0xF),
            ((self.differentiated_services & 0x3F) << 2)
            | (self.congestion_notification & 0x3),
            self.total_length & 0xFFFF,
            self.identification & 0xFFFF,
            ((self.flags & 0x7) << 5) | ((self.fragment_offset >> 8) & 0x1F),
            self.fragment_offset & 0xFF,
            self.time_to_live & 0xFF,
            int(self.protocol) & 0xFF,
            self.checksum & 0xFFFF,
            self.source.packed,
            self.destination.packed,
        )
        return fixed + bytes(self.options)

    @classmethod
    def unpack(cls, data: bytes) -> "IPv4Header":
        """Decode a header from the start of ``data``."""
        data = bytes(data)
        if len(data) < HEADER_SIZE:
            raise PacketError(f"IPv4 header needs {HEADER_SIZE} bytes, got {len(data)}")
        (
            version_ihl,
            service,
            total_length,
            identification,
            flags_high,
            fragment_low,
            ttl,
            protocol,
            checksum,
            source,
            destination,
        ) = _FIXED.unpack_from(data)
        header_length = version_ihl & 0xF
        header_size = header_length * 4
        if header_size < HEADER_SIZE or header_size > len(data):
            raise PacketError(
                f"bad IPv4 header size {header_size}; available {len(data)}"
            )
        try:
            protocol_value: int = IPProtocol(protocol)
        except ValueError:
            protocol_value = protocol
        return cls(
            protocol=protocol_value,
            source=ipaddress.IPv4Address(source),
            destination=ipaddress.IPv4Address(destination),
            total_length=total_length,
            version=version_ihl >> 4,
            header_length=header_length,
            differentiated_services=service >> 2,
            congestion_notification=service & 0x3,
            identification=identification,
            flags=flags_high >> 5,
            fragment_offset=((flags_high & 0x1F) << 8) | fragment_low,
            time_to_live=ttl,
            checksum=checksum,
            options=data[HEADER_SIZE:header_size],
        )

    def checksum_ok(self, data: bytes) -> bool:
        """Whether the header bytes at the start of ``data`` checksum to zero."""
        header = bytes(data)[: self.header_size]
        if len(header) < self.header_size:
            return False
        return ones_complement_checksum(header) == 0


def build_ipv4_packet(
    payload: bytes,
    source: AddressLike,
    destination: AddressLike,
    protocol: int,
) -> bytes:
    """Build a complete IPv4 packet with a valid header checksum."""
    payload = bytes(payload)
    if len(payload) > MAX_IP_PAYLOAD_SIZE:
        raise PacketError(
            f"IPv4 payload of {len(payload)} bytes exceeds {MAX_IP_PAYLOAD_SIZE}"
        )
    header = IPv4Header(
        protocol=protocol,
        source=to_address(source),
        destination=to_address(destination),
        total_length=HEADER_SIZE + len(payload),
    )
    header = dataclasses.replace(header, checksum=ones_complement_checksum(header.pack()))
    return header.pack() + payload


def parse_ipv4_packet(data: bytes) -> tuple[IPv4Header, bytes]:
    """Validate a received packet and return its header and payload."""
    data = bytes(data)
    if len(data) < HEADER_SIZE or data[0] >> 4 != 4:
        raise PacketError("not an IPv4 packet")
    header = IPv4Header.unpack(data)
    if header.total_length > len(data):
        raise PacketError(
            f"IP packet size {header.total_length} > actual read size {len(data)}"
        )
    if header.total_length < header.header_size:
        raise PacketError(
            f"bad IP packet size {header.total_length}; header size {header.header_size}"
        )
    if not header.checksum_ok(data):
        raise PacketError("bad IP packet checksum")
    return header, data[header.header_size : header.total_length]


def is_broadcast(address: AddressLike, subnet: AddressLike, mask: AddressLike) -> bool:
    """Whether ``address`` is the limited broadcast or the subnet's broadcast."""
    a = int(to_address(address))
    s = int(to_address(subnet))
    m = int(to_address(mask))
    if a == 0xFFFFFFFF:
        return True
    host = ~m & 0xFFFFFFFF
    return (a & m) == (s & m) and (a & host) == host