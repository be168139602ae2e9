"""Incoming connection requests (SYNs) queued until a server socket waits for them."""

from __future__ import annotations

import ipaddress
import threading
from dataclasses import dataclass, field
from typing import Optional

from kernnet.ipv4 import ANY_ADDRESS, ANY_PORT, PacketError
from kernnet.socketargs import ArgumentError, SocketArguments
from kernnet.tcp_packet import (
    TCPHeader,
    TCPOptions,
    is_plain_syn,
    parse_tcp_options,
    validate_tcp_packet,
)

MAX_QUEUED_SYN_COUNT = 10


@dataclass(frozen=True)
class SynEntry:
    """A received SYN segment and the addresses of the connection it opens."""

    source_address: ipaddress.IPv4Address
    source_port: int
    destination_address: ipaddress.IPv4Address
    destination_port: int
    header: TCPHeader
    options: TCPOptions
    packet: bytes

    @classmethod
    def from_packet(cls, packet: bytes) -> "SynEntry":
        """Validate an IPv4 packet holding a connection-opening SYN.

        Raises PacketError when the packet is not a valid TCP segment, is not a
        plain SYN, or carries malformed options.
        """
        packet = bytes(packet)
        ip_header, tcp_header = validate_tcp_packet(packet)
        if not is_plain_syn(tcp_header.flags):
            raise PacketError("not a connection-opening SYN")
        segment = packet[ip_header.header_size : ip_header.total_length]
        options = parse_tcp_options(segment)
        return cls(
            source_address=ip_header.source,
            source_port=tcp_header.source_port,
            destination_address=ip_header.destination,
            destination_port=tcp_header.destination_port,
            header=tcp_header,
            options=options,
            packet=packet[: ip_header.total_length],
        )

    def _same_origin(self, other: "SynEntry") -> bool:
        return (
            self.source_address == other.source_address
            and self.source_port == other.source_port
            and self.destination_port == other.destination_port
        )


@dataclass(eq=False)
class SynWaiter:
    """A server socket waiting for a SYN; it must name the local port it listens on."""

    arguments: SocketArguments
    result: Optional[SynEntry] = field(default=None, init=False)
    _event: threading.Event = field(
        default_factory=threading.Event, init=False, repr=False
    )

    def __post_init__(self) -> None:
        if self.arguments.local_port == ANY_PORT:
            raise ArgumentError("a listening socket needs a local port")

    def matches(self, entry: SynEntry) -> bool:
        """Whether ``entry`` is a connection request for this socket."""
        a = self.arguments
        if a.remote_address != ANY_ADDRESS and a.remote_address != entry.source_address:
            return False
        if a.remote_port != ANY_PORT and a.remote_port != entry.source_port:
            return False
        if (
            a.local_address != ANY_ADDRESS
            and a.local_address != entry.destination_address
        ):
            return False
        return a.local_port == entry.destination_port

    def _deliver(self, entry: SynEntry) -> None:
        self.result = entry
        self._event.set()


class SynQueue:
    """Queued SYNs not yet claimed and server sockets waiting for one."""

    def __init__(self, max_count: int = MAX_QUEUED_SYN_COUNT) -> None:
        if max_count < 1:
            raise ValueError(f"bad queue size {max_count}")
        self.max_count = max_count
        self._entries: list[SynEntry] = []
        self._waiters: list[SynWaiter] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def entries(self) -> list[SynEntry]:
        """The queued SYNs, oldest first."""
        with self._lock:
            return list(self._entries)

    @property
    def waiting(self) -> int:
        """How many sockets are waiting for a SYN."""
        with self._lock:
            return len(self._waiters)

    def add(self, entry: SynEntry) -> bool:
        """Hand ``entry`` to a waiting socket or queue it; True if a socket took it.

        An earlier SYN from the same peer to the same port is replaced; when
        the queue is full the oldest SYN is dropped.
        """
        with self._lock:
            self._entries = [e for e in self._entries if not e._same_origin(entry)]
            waiter = next((w for w in self._waiters if w.matches(entry)), None)
            if waiter is not None:
                self._waiters.remove(waiter)
            else:
                if len(self._entries) >= self.max_count:
                    self._entries.pop(0)
                self._entries.append(entry)
        if waiter is not None:
            waiter._deliver(entry)
            return True
        return False

    def wait(self, waiter: SynWaiter, timeout: Optional[float] = None) -> SynEntry:
        """Claim a SYN for ``waiter``, waiting up to ``timeout`` seconds for one.

        Raises TimeoutError when no matching SYN arrives in time.
        """
        with self._lock:
            if waiter in self._waiters:
                raise ValueError("waiter is already waiting")
            waiter.result = None
            waiter._event.clear()
            entry = next((e for e in self._entries if waiter.matches(e)), None)
            if entry is not None:
                self._entries.remove(entry)
                return entry
            self._waiters.append(waiter)
        if not waiter._event.wait(timeout):
            with self._lock:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)
                    raise TimeoutError("no connection request arrived")
            # A SYN was handed over just as the wait ran out.
            waiter._event.wait()
        assert waiter.result is not None
        return waiter.result