"""ARP packets for IPv4 over Ethernet, and answering requests for a local address."""

from __future__ import annotations

import ipaddress
import struct
from dataclasses import dataclass
from typing import Optional

from kernnet.ipv4 import ANY_ADDRESS, AddressLike, PacketError, to_address

ETHERTYPE_IPV4 = 0x0800
ETHERTYPE_ARP = 0x0806
ETHERTYPE_VLAN_TAG = 0x8100
MAC_ADDRESS_SIZE = 6
IPV4_ADDRESS_SIZE = 4

HARDWARE_ETHERNET = 1
OPERATION_REQUEST = 1
OPERATION_REPLY = 2

_ZERO_MAC = bytes(MAC_ADDRESS_SIZE)
_FORMAT = struct.Struct(">HHBBH6s4s6s4s")
PACKET_SIZE = _FORMAT.size


def _mac(value: bytes) -> bytes:
    value = bytes(value)
    if len(value) != MAC_ADDRESS_SIZE:
        raise ValueError(f"a MAC address has {MAC_ADDRESS_SIZE} bytes, got {len(value)}")
    return value


@dataclass
class ARPPacket:
    """An ARP packet as carried in an Ethernet frame."""

    operation: int = OPERATION_REQUEST
    sender_mac: bytes = _ZERO_MAC
    sender_ip: ipaddress.IPv4Address = ANY_ADDRESS
    target_mac: bytes = _ZERO_MAC
    target_ip: ipaddress.IPv4Address = ANY_ADDRESS
    hardware_type: int = HARDWARE_ETHERNET
    protocol_type: int = ETHERTYPE_IPV4
    hardware_address_length: int = MAC_ADDRESS_SIZE
    protocol_address_length: int = IPV4_ADDRESS_SIZE

    def __post_init__(self) -> None:
        self.sender_mac = _mac(self.sender_mac)
        self.target_mac = _mac(self.target_mac)
        self.sender_ip = to_address(self.sender_ip)
        self.target_ip = to_address(self.target_ip)

    def pack(self) -> bytes:
        """Encode the packet in network byte order."""
        return _FORMAT.pack(
            self.hardware_type,
            self.protocol_type,
            self.hardware_address_length,
            self.protocol_address_length,
            self.operation,
            self.sender_mac,
            self.sender_ip.packed,
            self.target_mac,
            self.target_ip.packed,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "ARPPacket":
        """Decode a packet from the start of ``data``."""
        data = bytes(data)
        if len(data) < PACKET_SIZE:
            raise PacketError(f"ARP packet needs {PACKET_SIZE} bytes, got {len(data)}")
        (
            hardware_type,
            protocol_type,
            hardware_length,
            protocol_length,
            operation,
            sender_mac,
            sender_ip,
            target_mac,
            target_ip,
        ) = _FORMAT.unpack_from(data)
        return cls(
            operation=operation,
            sender_mac=sender_mac,
            sender_ip=ipaddress.IPv4Address(sender_ip),
            target_mac=target_mac,
            target_ip=ipaddress.IPv4Address(target_ip),
            hardware_type=hardware_type,
            protocol_type=protocol_type,
            hardware_address_length=hardware_length,
            protocol_address_length=protocol_length,
        )

    def is_ipv4_request(self) -> bool:
        """Whether this is an Ethernet/IPv4 ARP request."""
        return (
            self.hardware_type == HARDWARE_ETHERNET
            and self.protocol_type == ETHERTYPE_IPV4
            and self.hardware_address_length == MAC_ADDRESS_SIZE
            and self.protocol_address_length == IPV4_ADDRESS_SIZE
            and self.operation == OPERATION_REQUEST
        )

    def make_reply(self, local_mac: bytes) -> "ARPPacket":
        """The reply that announces ``local_mac`` for the requested address."""
        return ARPPacket(
            operation=OPERATION_REPLY,
            sender_mac=_mac(local_mac),
            sender_ip=self.target_ip,
            target_mac=self.sender_mac,
            target_ip=self.sender_ip,
        )


def answer_request(
    data: bytes, local_address: AddressLike, local_mac: bytes
) -> Optional[bytes]:
    """Reply bytes for a request asking for ``local_address``, otherwise None."""
    local_mac = _mac(local_mac)
    try:
        request = ARPPacket.unpack(data)
    except PacketError:
        return None
    if not request.is_ipv4_request():
        return None
    if request.target_ip != to_address(local_address):
        return None
    return request.make_reply(local_mac).pack()