# kernnet

A small, dependency-free library for building, parsing and checking IPv4,
ARP and TCP packets, plus the bookkeeping a simple TCP/IP stack needs:
socket address strings, TCP receive and transmit windows, a retransmission
counter and a queue that matches incoming SYN segments with listening
sockets.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `kernnet.ipv4`: `IPv4Header` (with `pack`, `unpack` and `checksum_ok`),
  `IPProtocol`, `build_ipv4_packet`, `parse_ipv4_packet`,
  `ones_complement_checksum`, `ip_data_checksum` (checksum including the
  IPv4 pseudo header) and `is_broadcast`. Malformed packets raise
  `PacketError`, a subclass of `ValueError`.
- `kernnet.socketargs`: parses socket names such as
  `1.2.3.4:80;src=6.7.8.9;srcport=1;dev=eth0` into `SocketArguments` with
  `parse_socket_arguments`, and writes them back with
  `SocketArguments.format` (a device name cannot be written back).
  `parse_ip_address`, `parse_port` and `parse_subnet` read the pieces;
  `SocketArguments.matches_packet` checks a packet's addresses against the
  socket. Bad input raises `ArgumentError`.
- `kernnet.arp`: `ARPPacket` (`pack`, `unpack`, `is_ipv4_request`,
  `make_reply`) and `answer_request`, which returns the reply bytes to an
  Ethernet/IPv4 ARP request for the local address, or `None`.
- `kernnet.tcp_packet`: `TCPHeader`, `TCPFlags`, `TCPOptions`,
  `build_tcp_segment` (fills in data offset and checksum), `syn_options`,
  `parse_tcp_options`, `validate_tcp_packet`, `is_plain_syn`, and sequence
  arithmetic modulo 2**32 with `seq_add` and `seq_diff`.
- `kernnet.tcp_window`: `ReceiveWindow` (reassembles bytes by sequence
  number, tracks the peer's FIN), `TransmitWindow` (keeps sent data until it
  is acknowledged, honours the peer's window and maximum segment size) and
  `RetransmitCounter`, whose `check` raises `TimeoutError` after too many
  retransmissions.
- `kernnet.tcp_listener`: `SynEntry` (a validated connection-opening SYN),
  `SynWaiter` (a listening socket, which must name its local port) and
  `SynQueue`, which hands SYNs to waiting sockets or queues up to ten of
  them; `SynQueue.wait` is thread-safe and raises `TimeoutError` when no
  matching SYN arrives in time.

## Examples

```python
from kernnet.ipv4 import IPProtocol, build_ipv4_packet, parse_ipv4_packet
from kernnet.socketargs import parse_socket_arguments

packet = build_ipv4_packet(b"hello", "10.0.0.1", "10.0.0.2", IPProtocol.TEST254)
header, payload = parse_ipv4_packet(packet)
assert payload == b"hello"

args = parse_socket_arguments("10.0.0.2:80;srcport=5000", IPProtocol.TCP)
print(args.format())  # 10.0.0.2:80;srcport=5000
```

TCP windows:

```python
from kernnet.tcp_window import ReceiveWindow, TransmitWindow

receive = ReceiveWindow()
receive.synchronize(5000)
receive.accept(5003, b"lo")   # 0: not contiguous yet
receive.accept(5000, b"hel")  # 5
assert receive.read(10) == b"hello"
assert receive.ack().ack_number == 5005

transmit = TransmitWindow(1000)
transmit.push(b"hello")
transmit.update_window(65535)
assert transmit.take(1460) == b"hello"
assert transmit.acknowledge(1005) == 5
assert not transmit.has_unacked()
```

Answering ARP:

```python
from kernnet.arp import answer_request

local_mac = bytes.fromhex("020000000001")
reply = answer_request(received_frame_payload, "10.0.0.2", local_mac)
if reply is not None:
    ...  # send it
```

## What it does not do

The package works on bytes and in-memory state only. It opens no network
interfaces or sockets, sends and receives nothing, runs no DHCP client and
has no TCP connection loop or timers; a program using it supplies the I/O
and drives the windows and queues itself. It has no command-line tool, and
it does not build or check UDP datagrams.