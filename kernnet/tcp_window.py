"""TCP receive and transmit windows and the retransmission counter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Optional

from kernnet.tcp_packet import (
    INITIAL_TCP_WINDOW_SCALE,
    INITIAL_TCP_WINDOW_SIZE,
    MAX_TCP_WINDOW_SCALE,
    MAX_TCP_WINDOW_SIZE,
    MIN_TCP_MAX_SEGMENT_SIZE,
    seq_add,
    seq_diff,
)

DEFAULT_TCP_RECEIVE_WINDOW_SIZE = 8192
TCP_MAX_RETRANSMIT_COUNT = 4
TCP_RETRANSMIT_TIMEOUT = 200  # milliseconds


@dataclass(frozen=True)
class ReceiveAck:
    """What the next outgoing segment acknowledges and advertises."""

    ack_number: int
    window_remaining: int
    is_fin_ack: bool


class ReceiveWindow:
    """Reassembles incoming bytes by sequence number until they are read.

    ``sequence_begin`` is the next byte to be read and ``sequence_length`` the
    number of contiguous bytes received after it.
    """

    def __init__(self, window_size: int = DEFAULT_TCP_RECEIVE_WINDOW_SIZE) -> None:
        if not 0 < window_size <= MAX_TCP_WINDOW_SIZE:
            raise ValueError(f"bad receive window size {window_size}")
        self.window_size = window_size
        self.sequence_begin = 0
        self.sequence_length = 0
        self.reach_finish = False
        self.sequence_finish = 0
        self._buffer: list[Optional[int]] = [None] * window_size

    def synchronize(self, sequence: int) -> None:
        """Start the window at ``sequence``, the first byte the peer will send."""
        self.sequence_begin = sequence & 0xFFFFFFFF
        self.sequence_length = 0

    def ack(self) -> ReceiveAck:
        """The acknowledgement number and free window to advertise."""
        ack_number = seq_add(self.sequence_begin, self.sequence_length)
        is_fin_ack = self.reach_finish and self.sequence_finish == ack_number
        if is_fin_ack:
            ack_number = seq_add(ack_number, 1)
        return ReceiveAck(
            ack_number=ack_number,
            window_remaining=self.window_size - self.sequence_length,
            is_fin_ack=is_fin_ack,
        )

    def _slot(self, sequence: int) -> int:
        return sequence % self.window_size

    def accept(self, sequence: int, data: bytes) -> int:
        """Store ``data`` that starts at ``sequence``; return how many bytes became contiguous."""
        for index, byte in enumerate(bytes(data)):
            position = seq_add(sequence, index)
            if seq_diff(position, self.sequence_begin) >= self.window_size:
                continue  # duplicated or beyond the window
            self._buffer[self._slot(position)] = byte
        old_length = self.sequence_length
        limit = (
            seq_diff(self.sequence_finish, self.sequence_begin)
            if self.reach_finish
            else self.window_size
        )
        while self.sequence_length < limit:
            end = seq_add(self.sequence_begin, self.sequence_length)
            if self._buffer[self._slot(end)] is None:
                break
            self.sequence_length += 1
        return self.sequence_length - old_length

    def accept_fin(self, sequence: int) -> bool:
        """Record the peer's FIN at ``sequence``; False for a duplicate or out-of-window FIN."""
        if self.reach_finish:
            return False
        distance = seq_diff(sequence, self.sequence_begin)
        if distance > self.window_size:
            return False
        self.reach_finish = True
        self.sequence_finish = sequence & 0xFFFFFFFF
        self.sequence_length = min(self.sequence_length, distance)
        return True

    def read(self, size: int) -> bytes:
        """Take up to ``size`` contiguous bytes from the front of the window."""
        count = min(max(size, 0), self.sequence_length)
        out = bytearray()
        position = self.sequence_begin
        for _ in range(count):
            slot = self._slot(position)
            byte = self._buffer[slot]
            assert byte is not None
            out.append(byte)
            self._buffer[slot] = None
            position = seq_add(position, 1)
        self.sequence_begin = position
        self.sequence_length -= count
        return bytes(out)

    def finished(self) -> bool:
        """Whether the peer has closed and every byte before its FIN was read."""
        return self.reach_finish and self.sequence_finish == self.sequence_begin


@dataclass
class _Segment:
    sequence_begin: int
    data: bytes
    is_fin: bool

    @property
    def size(self) -> int:
        return 1 if self.is_fin else len(self.data)


class TransmitWindow:
    """Bytes written by the user, kept until the peer acknowledges them.

    ``sequence_begin`` is the oldest unacknowledged byte and
    ``current_sequence`` the next byte to send.
    """

    def __init__(self, initial_sequence: int) -> None:
        initial_sequence &= 0xFFFFFFFF
        self.sequence_begin = initial_sequence
        self.scaled_window_size = INITIAL_TCP_WINDOW_SIZE
        self.window_scale = INITIAL_TCP_WINDOW_SCALE
        self.max_segment_size = MIN_TCP_MAX_SEGMENT_SIZE
        self.current_sequence = initial_sequence
        self._tail_sequence = initial_sequence
        self._segments: list[_Segment] = []
        self._current = 0

    @property
    def end_sequence(self) -> int:
        """The sequence number after the last byte pushed."""
        return self._tail_sequence

    @property
    def has_unsent(self) -> bool:
        """Whether some pushed data or FIN has not been sent yet."""
        return self._current < len(self._segments)

    @property
    def fin_pending(self) -> bool:
        """Whether the next thing to send is the FIN."""
        return self.has_unsent and self._segments[self._current].is_fin

    def push(self, data: bytes, fin: bool = False) -> None:
        """Append user data, or the FIN when ``fin`` is true, to the send queue."""
        data = bytes(data)
        if self._segments and self._segments[-1].is_fin:
            raise ValueError("cannot push after FIN")
        if fin:
            if data:
                raise ValueError("a FIN carries no data")
        elif not data:
            return
        segment = _Segment(self._tail_sequence, data, fin)
        self._segments.append(segment)
        self._tail_sequence = seq_add(segment.sequence_begin, segment.size)

    def update_window(self, window: int) -> None:
        """Apply the window advertised by the peer, scaled by ``window_scale``."""
        if not 0 <= self.window_scale <= MAX_TCP_WINDOW_SCALE:
            raise ValueError(f"bad window scale {self.window_scale}")
        self.scaled_window_size = window << self.window_scale

    def remaining(self) -> int:
        """How many pushed bytes may be sent now within the peer's window."""
        sent = seq_diff(self.current_sequence, self.sequence_begin)
        if sent >= self.scaled_window_size:
            return 0
        unsent = seq_diff(self._tail_sequence, self.current_sequence)
        return min(self.scaled_window_size - sent, unsent)

    def _advance(self, count: int) -> None:
        self.current_sequence = seq_add(self.current_sequence, count)
        segment = self._segments[self._current]
        if segment.size == seq_diff(self.current_sequence, segment.sequence_begin):
            self._current += 1

    def take(self, size: int) -> bytes:
        """The next bytes to send, at most ``size`` and one segment's worth; stops at FIN."""
        limit = min(self.remaining(), size, self.max_segment_size)
        out = bytearray()
        while len(out) < limit and self.has_unsent and not self.fin_pending:
            segment = self._segments[self._current]
            offset = seq_diff(self.current_sequence, segment.sequence_begin)
            count = min(limit - len(out), segment.size - offset)
            out += segment.data[offset : offset + count]
            self._advance(count)
        return bytes(out)

    def take_fin(self) -> int:
        """Mark the FIN as sent and return its sequence number."""
        if not self.fin_pending:
            raise ValueError("no FIN to send")
        sequence = self.current_sequence
        self._advance(1)
        return sequence

    def _pop(self) -> None:
        self._segments.pop(0)
        if self._current == 0:
            self.current_sequence = (
                self._segments[0].sequence_begin if self._segments else self._tail_sequence
            )
        else:
            self._current -= 1

    def acknowledge(self, ack: int) -> int:
        """Drop data acknowledged by ``ack``; return the number of sequence numbers acknowledged."""
        ack &= 0xFFFFFFFF
        total = seq_diff(ack, self.sequence_begin)
        if total > MAX_TCP_WINDOW_SIZE:
            return 0  # duplicated acknowledgement
        left = total
        while self._segments and left:
            head = self._segments[0]
            head_offset = seq_diff(self.sequence_begin, head.sequence_begin)
            step = min(head.size - head_offset, left)
            self.sequence_begin = seq_add(self.sequence_begin, step)
            if head.size == seq_diff(self.sequence_begin, head.sequence_begin):
                self._pop()
            left -= step
        if left:
            # During the handshake the SYN consumes one sequence number.
            self.sequence_begin = ack
            self._tail_sequence = ack
            self.current_sequence = ack
        return total

    def rollback(self) -> None:
        """Resend from the oldest unacknowledged byte."""
        self._current = 0
        self.current_sequence = self.sequence_begin

    def has_unacked(self) -> bool:
        """Whether any pushed data or FIN awaits acknowledgement."""
        return bool(self._segments)


class RetransmitDecision(NamedTuple):
    """Whether to resend now and whether to keep the retransmission timer running."""

    retransmit: bool
    keep_timer: bool


class RetransmitCounter:
    """Counts retransmissions of the same unacknowledged data."""

    def __init__(self, max_count: int = TCP_MAX_RETRANSMIT_COUNT) -> None:
        self.max_count = max_count
        self.count = 0
        self.start_sequence = 0

    def reset(self, window: TransmitWindow) -> None:
        """Start counting from the window's oldest unacknowledged byte."""
        self.count = 0
        self.start_sequence = window.sequence_begin

    def check(self, window: TransmitWindow) -> RetransmitDecision:
        """Decide what to do when the retransmission timer expires.

        Raises TimeoutError when the maximum number of retransmissions is reached.
        """
        if not window.has_unacked():
            return RetransmitDecision(False, False)
        if window.sequence_begin != self.start_sequence:
            self.reset(window)
            return RetransmitDecision(False, True)
        if self.count >= self.max_count:
            raise TimeoutError("exceeded maximum number of retransmissions")
        self.count += 1
        return RetransmitDecision(True, True)