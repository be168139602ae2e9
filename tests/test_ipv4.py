import ipaddress

import pytest

from kernnet.ipv4 import (
    IPProtocol,
    IPv4Header,
    PacketError,
    build_ipv4_packet,
    ip_data_checksum,
    is_broadcast,
    ones_complement_checksum,
    parse_ipv4_packet,
)

SAMPLE = bytes.fromhex("4500003c1a0200008001" "2e6ec0a83801c0a838ff")


def test_sample_header_checksum_is_valid():
    assert ones_complement_checksum(SAMPLE) == 0


def test_unpack_sample_header():
    header = IPv4Header.unpack(SAMPLE)
    assert header.version == 4
    assert header.header_size == 20
    assert header.total_length == 0x3C
    assert header.identification == 0x1A02
    assert header.time_to_live == 0x80
    assert header.protocol == IPProtocol.ICMP
    assert header.source == ipaddress.IPv4Address("192.168.56.1")
    assert header.destination == ipaddress.IPv4Address("192.168.56.255")
    assert header.checksum_ok(SAMPLE)


def test_pack_unpack_round_trip():
    header = IPv4Header.unpack(SAMPLE)
    assert header.pack() == SAMPLE


def test_build_fixed_fields():
    packet = build_ipv4_packet(b"abc", "10.0.0.1", "10.0.0.2", IPProtocol.UDP)
    assert packet[0] == 0x45
    assert packet[6] == 0x40  # don't fragment
    assert packet[8] == 32
    assert packet[9] == 17
    assert packet[-3:] == b"abc"
    assert ones_complement_checksum(packet[:20]) == 0


def test_build_parse_round_trip():
    payload = bytes(range(51))
    packet = build_ipv4_packet(payload, "1.2.3.4", "5.6.7.8", IPProtocol.TEST254)
    header, data = parse_ipv4_packet(packet)
    assert data == payload
    assert header.data_size == len(payload)
    assert header.source == ipaddress.IPv4Address("1.2.3.4")
    assert header.destination == ipaddress.IPv4Address("5.6.7.8")
    assert header.protocol == IPProtocol.TEST254


def test_parse_ignores_trailing_bytes():
    packet = build_ipv4_packet(b"xy", "1.1.1.1", "2.2.2.2", IPProtocol.TCP)
    _, data = parse_ipv4_packet(packet + b"\x00\x00\x00")
    assert data == b"xy"


def test_parse_rejects_bad_checksum():
    packet = bytearray(build_ipv4_packet(b"xy", "1.1.1.1", "2.2.2.2", IPProtocol.TCP))
    packet[12] ^= 0xFF
    with pytest.raises(PacketError):
        parse_ipv4_packet(bytes(packet))


def test_parse_rejects_truncated():
    packet = build_ipv4_packet(b"hello", "1.1.1.1", "2.2.2.2", IPProtocol.UDP)
    with pytest.raises(PacketError):
        parse_ipv4_packet(packet[:-1])
    with pytest.raises(PacketError):
        parse_ipv4_packet(packet[:10])


def test_parse_rejects_wrong_version():
    packet = bytearray(SAMPLE)
    packet[0] = 0x65
    with pytest.raises(PacketError):
        parse_ipv4_packet(bytes(packet))


def test_unpack_rejects_short_header_length():
    packet = bytearray(SAMPLE)
    packet[0] = 0x44
    with pytest.raises(PacketError):
        IPv4Header.unpack(bytes(packet))


def test_build_rejects_oversized_payload():
    with pytest.raises(PacketError):
        build_ipv4_packet(bytes(65516), "1.1.1.1", "2.2.2.2", IPProtocol.UDP)


@pytest.mark.parametrize("size", [8, 9, 21, 64])
def test_data_checksum_inserted_verifies(size):
    segment = bytearray((i * 7 + 3) % 256 for i in range(size))
    segment[6:8] = b"\x00\x00"
    value = ip_data_checksum(bytes(segment), "192.168.56.1", "192.168.56.7", IPProtocol.UDP)
    segment[6:8] = value.to_bytes(2, "big")
    assert ip_data_checksum(bytes(segment), "192.168.56.1", "192.168.56.7", IPProtocol.UDP) == 0


def test_data_checksum_depends_on_pseudo_header():
    data = b"payload!"
    a = ip_data_checksum(data, "10.0.0.1", "10.0.0.2", IPProtocol.UDP)
    b = ip_data_checksum(data, "10.0.0.1", "10.0.0.3", IPProtocol.UDP)
    c = ip_data_checksum(data, "10.0.0.1", "10.0.0.2", IPProtocol.TCP)
    assert a != b and a != c


def test_checksum_of_empty_data():
    assert ones_complement_checksum(b"") == 0xFFFF


def test_broadcast_detection():
    assert is_broadcast("255.255.255.255", "0.0.0.0", "0.0.0.0")
    assert is_broadcast("192.168.56.255", "192.168.56.1", "255.255.255.0")
    assert not is_broadcast("192.168.56.7", "192.168.56.1", "255.255.255.0")
    assert not is_broadcast("192.168.57.255", "192.168.56.1", "255.255.255.0")
    assert not is_broadcast("192.168.56.255", "0.0.0.0", "0.0.0.0")