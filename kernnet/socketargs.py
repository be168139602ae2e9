"""Socket argument strings: ``REMOTE[:PORT][;key=value]...``."""

from __future__ import annotations

import dataclasses
import ipaddress
from dataclasses import dataclass
from typing import NamedTuple, Optional

from kernnet.ipv4 import ANY_ADDRESS, ANY_PORT, AddressLike, IPProtocol, to_address

MAX_DEVICE_NAME_LENGTH = 64
SEPARATOR = ";"
KEY_VALUE_SEPARATOR = "="

_C_SPACE = frozenset(" \t\n\v\f\r")
_UINT_MODULUS = 1 << 32


class ArgumentError(ValueError):
    """Raised when a socket argument string cannot be parsed or printed."""


class ParsedAddress(NamedTuple):
    """An address parsed from the start of a string."""

    address: ipaddress.IPv4Address
    subnet: Optional[ipaddress.IPv4Address]
    port: Optional[int]
    length: int


def _skip_space(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in _C_SPACE:
        pos += 1
    return pos


def _scan_unsigned(text: str, pos: int) -> Optional[tuple[int, int]]:
    start = pos
    value = 0
    while pos < len(text) and "0" <= text[pos] <= "9":
        value = (value * 10 + ord(text[pos]) - ord("0")) % _UINT_MODULUS
        pos += 1
    if pos == start:
        return None
    return value, pos


def _scan_signed(text: str, pos: int) -> Optional[tuple[int, int]]:
    """Scan an optionally signed decimal, returning its unsigned 32-bit value."""
    pos = _skip_space(text, pos)
    sign = 1
    if pos < len(text) and text[pos] in "+-":
        sign = -1 if text[pos] == "-" else 1
        pos += 1
    scanned = _scan_unsigned(text, pos)
    if scanned is None:
        return None
    value, pos = scanned
    return (sign * value) % _UINT_MODULUS, pos


def _scan_dotted(text: str, pos: int) -> Optional[tuple[ipaddress.IPv4Address, int]]:
    pos = _skip_space(text, pos)
    octets = []
    for index in range(4):
        if index:
            if pos >= len(text) or text[pos] != ".":
                return None
            pos += 1
        scanned = _scan_unsigned(text, pos)
        if scanned is None or scanned[0] > 0xFF:
            return None
        octet, pos = scanned
        octets.append(octet)
    return ipaddress.IPv4Address(bytes(octets)), pos


def parse_port(text: str) -> tuple[int, int]:
    """Parse a port at the start of ``text``; return it and the characters used."""
    scanned = _scan_signed(text, 0)
    if scanned is None or scanned[0] > 0xFFFF:
        raise ArgumentError(f"bad port in {text!r}")
    return scanned


def parse_subnet(text: str) -> tuple[ipaddress.IPv4Address, int]:
    """Parse a prefix length at the start of ``text`` into a subnet mask."""
    scanned = _scan_signed(text, 0)
    if scanned is None or scanned[0] > 32:
        raise ArgumentError(f"bad subnet prefix in {text!r}")
    bits, length = scanned
    mask = (0xFFFFFFFF << (32 - bits)) & 0xFFFFFFFF if bits else 0
    return ipaddress.IPv4Address(mask), length


def parse_ip_address(
    text: str, with_subnet: bool = False, with_port: bool = False
) -> ParsedAddress:
    """Parse ``A.B.C.D[/PREFIX][:PORT]`` from the start of ``text``."""
    scanned = _scan_dotted(text, 0)
    if scanned is None:
        raise ArgumentError(f"bad IPv4 address in {text!r}")
    address, pos = scanned
    subnet: Optional[ipaddress.IPv4Address] = None
    port: Optional[int] = None
    if with_subnet and pos < len(text) and text[pos] == "/":
        pos += 1
        subnet, used = parse_subnet(text[pos:])
        pos += used
    if with_port and pos < len(text) and text[pos] == ":":
        pos += 1
        port, used = parse_port(text[pos:])
        pos += used
    return ParsedAddress(address, subnet, port, pos)


@dataclass
class SocketArguments:
    """Addresses, ports and device binding of an IP socket."""

    protocol: int = 0
    local_address: ipaddress.IPv4Address = ANY_ADDRESS
    local_port: int = ANY_PORT
    remote_address: ipaddress.IPv4Address = ANY_ADDRESS
    remote_port: int = ANY_PORT
    device: Optional[str] = None

    def __post_init__(self) -> None:
        self.local_address = to_address(self.local_address)
        self.remote_address = to_address(self.remote_address)

    @property
    def bind_to_device(self) -> bool:
        return self.device is not None

    def format(self) -> str:
        """Render the arguments in the form that ``parse_socket_arguments`` reads."""
        if self.bind_to_device:
            raise ArgumentError("formatting does not support a device name")
        parts = [f"{self.remote_address}:{self.remote_port}"]
        if self.local_address != ANY_ADDRESS:
            parts.append(f"src={self.local_address}")
        if self.local_port != ANY_PORT:
            parts.append(f"srcport={self.local_port}")
        return SEPARATOR.join(parts)

    def matches_packet(
        self, source: AddressLike, destination: AddressLike, is_broadcast: bool
    ) -> bool:
        """Whether a packet with these addresses is meant for this socket."""
        source = to_address(source)
        destination = to_address(destination)
        if (
            not is_broadcast
            and self.local_address != destination
            and self.local_address != ANY_ADDRESS
        ):
            return False
        if self.remote_address != source and self.remote_address != ANY_ADDRESS:
            return False
        return True


def _apply_argument(arguments: SocketArguments, key: str, value: str) -> None:
    if key in ("dst", "src"):
        parsed = parse_ip_address(value, with_port=True)
        if parsed.length != len(value):
            raise ArgumentError(f"trailing characters in {key}={value!r}")
        if key == "dst":
            arguments.remote_address = parsed.address
            if parsed.port is not None:
                arguments.remote_port = parsed.port
        else:
            arguments.local_address = parsed.address
            if parsed.port is not None:
                arguments.local_port = parsed.port
    elif key in ("srcport", "dstport"):
        port, used = parse_port(value)
        if used != len(value):
            raise ArgumentError(f"trailing characters in {key}={value!r}")
        if key == "srcport":
            arguments.local_port = port
        else:
            arguments.remote_port = port
    elif key == "dev":
        if len(value) > MAX_DEVICE_NAME_LENGTH:
            raise ArgumentError(f"device name longer than {MAX_DEVICE_NAME_LENGTH}")
        arguments.device = value
    else:
        raise ArgumentError(f"unknown socket argument {key!r}")


def parse_socket_arguments(text: str, protocol: int) -> SocketArguments:
    """Parse ``REMOTE[:PORT][;key=value]...`` into socket arguments."""
    try:
        protocol = IPProtocol(protocol)
    except ValueError:
        pass
    arguments = SocketArguments(protocol=protocol)
    remote = parse_ip_address(text, with_port=True)
    arguments.remote_address = remote.address
    if remote.port is not None:
        arguments.remote_port = remote.port
    pos = remote.length
    end = len(text)
    while True:
        if pos == end:
            return arguments
        if text[pos] != SEPARATOR:
            raise ArgumentError(f"expected {SEPARATOR!r} at position {pos} of {text!r}")
        pos += 1
        if pos == end:
            return arguments
        key_end = text.find(KEY_VALUE_SEPARATOR, pos)
        if key_end < 0:
            raise ArgumentError(f"missing {KEY_VALUE_SEPARATOR!r} in {text[pos:]!r}")
        value_end = text.find(SEPARATOR, key_end + 1)
        if value_end < 0:
            value_end = end
        _apply_argument(arguments, text[pos:key_end], text[key_end + 1 : value_end])
        pos = value_end


def copy_arguments(arguments: SocketArguments, **changes) -> SocketArguments:
    """A copy of ``arguments`` with some fields changed."""
    return dataclasses.replace(arguments, **changes)