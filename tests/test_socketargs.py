import ipaddress

import pytest

from kernnet.ipv4 import ANY_ADDRESS, BROADCAST_ADDRESS, IPProtocol
from kernnet.socketargs import (
    ArgumentError,
    SocketArguments,
    parse_ip_address,
    parse_port,
    parse_socket_arguments,
    parse_subnet,
)


def test_parse_plain_address():
    name = "1.2.3.4"
    parsed = parse_ip_address(name)
    assert parsed.address == ipaddress.IPv4Address(name)
    assert parsed.length == len(name)
    assert parsed.subnet is None and parsed.port is None


def test_parse_address_with_port():
    name = "1.2.1.2:56"
    parsed = parse_ip_address(name, with_subnet=True, with_port=True)
    assert parsed.address == ipaddress.IPv4Address("1.2.1.2")
    assert parsed.port == 56
    assert parsed.subnet is None
    assert parsed.length == len(name)


def test_parse_address_with_subnet_and_port():
    name = "3.4.3.4/15:78"
    parsed = parse_ip_address(name, with_subnet=True, with_port=True)
    assert parsed.address == ipaddress.IPv4Address("3.4.3.4")
    assert parsed.subnet.packed == (0x0000FEFF).to_bytes(4, "little")
    assert parsed.port == 78
    assert parsed.length == len(name)


def test_subnet_not_requested_stops_before_slash():
    parsed = parse_ip_address("3.4.3.4/15:78", with_port=True)
    assert parsed.length == len("3.4.3.4")
    assert parsed.port is None


def test_parse_port():
    assert parse_port("999") == (999, 3)


def test_subnet_extremes():
    assert parse_subnet("0")[0] == ANY_ADDRESS
    assert parse_subnet("32")[0] == BROADCAST_ADDRESS


@pytest.mark.parametrize("text", ["65536", "-1", "", "x"])
def test_bad_port(text):
    with pytest.raises(ArgumentError):
        parse_port(text)


def test_bad_subnet():
    with pytest.raises(ArgumentError):
        parse_subnet("33")


@pytest.mark.parametrize("text", ["1.2.3", "256.1.1.1", "a.b.c.d", ""])
def test_bad_address(text):
    with pytest.raises(ArgumentError):
        parse_ip_address(text)


def test_parse_full_arguments():
    name = "1.2.3.4;src=6.7.8.9:0;dev=i8254x:aa;srcport=1;dstport=2"
    args = parse_socket_arguments(name, IPProtocol.TEST254)
    assert args.protocol == IPProtocol.TEST254
    assert args.remote_address == ipaddress.IPv4Address("1.2.3.4")
    assert args.local_address == ipaddress.IPv4Address("6.7.8.9")
    assert args.remote_port == 2
    assert args.local_port == 1
    assert args.bind_to_device
    assert args.device == "i8254x:aa"


def test_trailing_separator_is_accepted():
    args = parse_socket_arguments("1.2.3.4:5;", IPProtocol.UDP)
    assert args.remote_port == 5
    assert not args.bind_to_device


@pytest.mark.parametrize(
    "text",
    [
        "1.2.3.4;bogus=1",
        "1.2.3.4;src",
        "1.2.3.4x",
        "1.2.3.4;srcport=1x",
        "1.2.3.4;src=1.2.3.4:9z",
        "1.2.3.4;dev=" + "d" * 65,
    ],
)
def test_bad_arguments(text):
    with pytest.raises(ArgumentError):
        parse_socket_arguments(text, IPProtocol.TCP)


def test_format_defaults():
    assert SocketArguments().format() == "0.0.0.0:0"


def test_format_all_fields():
    args = SocketArguments(
        local_address="241.242.243.244",
        local_port=10000,
        remote_address="245.246.247.248",
        remote_port=65535,
    )
    assert args.format() == "245.246.247.248:65535;src=241.242.243.244;srcport=10000"


def test_format_round_trip():
    args = SocketArguments(
        protocol=IPProtocol.TCP,
        local_address="10.0.0.2",
        local_port=59904,
        remote_address="10.0.0.1",
        remote_port=59999,
    )
    assert parse_socket_arguments(args.format(), IPProtocol.TCP) == args


def test_format_with_device_raises():
    with pytest.raises(ArgumentError):
        SocketArguments(device="eth0").format()


def test_default_arguments_match_any_packet():
    assert SocketArguments().matches_packet("1.2.3.4", "5.6.7.8", False) is True


def test_local_address_filter():
    args = SocketArguments(local_address="6.7.8.9")
    assert args.matches_packet("1.2.3.4", "5.6.7.8", False) is False
    assert args.matches_packet("1.2.3.4", "5.6.7.8", True) is True
    assert args.matches_packet("1.2.3.4", "6.7.8.9", False) is True


def test_remote_address_filter():
    args = SocketArguments(remote_address="1.2.3.4")
    assert args.matches_packet("1.2.3.5", "5.6.7.8", True) is False
    assert args.matches_packet("1.2.3.4", "5.6.7.8", True) is True