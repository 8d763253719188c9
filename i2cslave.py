# SPDX-FileCopyrightText: 2026 i2cslave-sim contributors
#
# SPDX-License-Identifier: MIT

"""
`i2cslave`
================================================================================

A line level I2C slave for simulated buses. The decoder watches the clock and
data lines one tick at a time and turns the edges into START and STOP
conditions, bytes, address matches and ACK/NACK answers. What a byte actually
means is left to a `Device` that plugs into the decoder.

Bits are sampled with a fixed edge pattern: the first bit of every byte is
taken on the falling clock edge that opens the byte, the other seven on the
rising edges that follow, and the next rising edge closes the byte. The ACK is
driven from that closing edge, sampled by the master on the following falling
edge and released again on the next rising edge.

Implementation Notes
--------------------

**Software and Dependencies:**

* typing_extensions

"""

import abc
import enum
import logging
from typing import Any, Callable, Optional, Tuple

from typing_extensions import Protocol, TypeAlias

__version__ = "0.1.0"

MAX_ADDRESS = 0x7F

DiagnosticSink: TypeAlias = Callable[[str], None]


class ConfigurationError(ValueError):
    """Raised when a device cannot be attached to a decoder."""


@enum.unique
class State(enum.Enum):
    STOPPED = "Stopped"
    STARTED = "Started"
    RECEIVING_BYTE = "ReceivingByte"


@enum.unique
class Direction(enum.Enum):
    WRITE = "Write"
    READ = "Read"


@enum.unique
class Event(enum.Enum):
    """What a single tick amounts to. Exactly one per tick."""

    NONE = "none"
    START = "start"
    STOP = "stop"
    FIRST_BIT = "first_bit"
    BIT = "bit"
    BYTE = "byte"


# A tick directly after one of these cannot open a new byte.
_SETTLING_EVENTS = frozenset({Event.START, Event.STOP, Event.BYTE})


def write_frame(address: int) -> int:
    """Returns the address byte a master sends to write to `address`."""
    return (address << 1) & 0xFF


def read_frame(address: int) -> int:
    """Returns the address byte a master sends to read from `address`."""
    return write_frame(address) | 1


def extract_address(frame: int) -> Tuple[int, Direction]:
    """Splits an address byte into the 7-bit address and the direction."""
    direction = Direction.READ if frame & 1 else Direction.WRITE
    return (frame & 0xFF) >> 1, direction


def has_address(frame: int, address: int) -> Tuple[bool, Direction]:
    """Returns whether `frame` addresses `address`, and in which direction."""
    match, direction = extract_address(frame)
    return match == address, direction


def null_sink(text: str) -> None:  # pylint: disable=unused-argument
    """Diagnostic sink that drops everything."""
    return


def logging_sink(logger: logging.Logger) -> DiagnosticSink:
    """Routes decoder trace lines to `logger` at debug level."""

    def sink(text: str) -> None:
        logger.debug(text)

    return sink


class BusMedium(Protocol):
    """The part of a bus the decoder talks to."""

    def register(self, device: Any) -> None:
        ...

    def set_sda(self, owner: Any, level: bool) -> None:
        ...


class Device(abc.ABC):
    """Base class for the behaviour behind a simulated slave.

    Subclasses provide the 7-bit address and decide what to do with each
    byte. The decoder calls back into the device; the device never talks to
    the bus itself.
    """

    @property
    @abc.abstractmethod
    def address(self) -> int:
        """The 7-bit slave address. Must not change once attached."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abc.abstractmethod
    def on_transaction_changed(self, state: State) -> None:
        """Called on START, on an address match, on STOP and on an abort."""

    @abc.abstractmethod
    def on_byte_read(self, byte: int) -> bool:
        """Handles a payload byte of a read transaction. True to ACK."""

    @abc.abstractmethod
    def on_byte_written(self, byte: int) -> bool:
        """Handles a payload byte of a write transaction. True to ACK."""


_CALLBACKS = ("on_transaction_changed", "on_byte_read", "on_byte_written")


def check_device(device: Any) -> None:
    """Raises ConfigurationError unless `device` can drive a decoder."""
    if device is None:
        raise ConfigurationError("A device is required")
    address = getattr(device, "address", None)
    if isinstance(address, bool) or not isinstance(address, int):
        raise ConfigurationError(f"{device!r} has no integer address")
    if not 0 <= address <= MAX_ADDRESS:
        raise ConfigurationError(f"Address 0x{address:02X} is not a 7-bit address")
    for callback in _CALLBACKS:
        if not callable(getattr(device, callback, None)):
            raise ConfigurationError(f"{device!r} does not implement {callback}")


class I2CSlave:
    """Decodes bus ticks for one device."""

    # pylint:disable=too-many-instance-attributes
    def __init__(
        self, bus: BusMedium, device: Device, *, sink: Optional[DiagnosticSink] = None
    ) -> None:
        check_device(device)
        self._bus = bus
        self._device = device
        self._address = device.address
        self._name = getattr(device, "name", type(device).__name__)
        self._log = sink if sink is not None else null_sink
        self._state = State.STOPPED
        self._direction: Optional[Direction] = None
        self._bit = 0
        self._byte = 0
        self._bytes_since_start = 0
        self._previous_event = Event.NONE
        self._holding_sda = False
        bus.register(self)
        self._log(f"State: {self._state.value}")

    @property
    def device(self) -> Device:
        return self._device

    @property
    def state(self) -> State:
        return self._state

    @property
    def direction(self) -> Optional[Direction]:
        """Direction of the addressed transaction, None before a match."""
        return self._direction

    @property
    def bytes_received(self) -> int:
        """Complete bytes of this device's transaction since the last START."""
        return self._bytes_since_start

    @property
    def bit_index(self) -> int:
        return self._bit

    @property
    def current_byte(self) -> int:
        return self._byte

    @property
    def write_address(self) -> int:
        return write_frame(self._address)

    @property
    def read_address(self) -> int:
        return read_frame(self._address)

    def tick(self, new_sda: bool, new_scl: bool, old_sda: bool, old_scl: bool) -> None:
        """Processes one clock increment of the bus."""
        self._log(f"    SDA={int(new_sda)}, SCL={int(new_scl)}")
        event = self._classify(new_sda, new_scl, old_sda, old_scl)
        if event == Event.START:
            self._on_start()
        elif event == Event.STOP:
            self._on_stop()
        elif event == Event.FIRST_BIT:
            self._on_first_bit(new_sda)
        elif event == Event.BIT:
            self._on_bit(new_sda)
        elif event == Event.BYTE:
            self._on_byte()
        if self._holding_sda and event != Event.BYTE and new_scl and not old_scl:
            # The master sampled the ACK on the falling edge before this one.
            self._release()
        self._previous_event = event

    def _classify(self, new_sda: bool, new_scl: bool, old_sda: bool, old_scl: bool) -> Event:
        # pylint: disable=too-many-return-statements
        clock_high = old_scl and new_scl
        clock_fell = old_scl and not new_scl
        clock_rose = new_scl and not old_scl
        data_fell = old_sda and not new_sda
        data_rose = new_sda and not old_sda
        state = self._state

        # A change on the data line from high to low while the clock is high
        # is a START. The same change in the middle of a byte restarts.
        if clock_high and data_fell:
            if state == State.RECEIVING_BYTE:
                return Event.START
            if self._previous_event != Event.STOP:
                return Event.START
        # Low to high while the clock is high is a STOP.
        if clock_high and data_rose and state != State.STOPPED:
            return Event.STOP
        if state == State.STARTED and clock_fell:
            if self._previous_event not in _SETTLING_EVENTS:
                return Event.FIRST_BIT
        if state == State.RECEIVING_BYTE and clock_rose:
            if self._bit < 7:
                return Event.BIT
            return Event.BYTE
        return Event.NONE

    def _move_state(self, nstate: State) -> None:
        self._state = nstate
        self._log(f"State: {nstate.value}")

    def _on_start(self) -> None:
        self._log("Rx CMD_START")
        self._bytes_since_start = 0
        self._direction = None
        self._bit = 0
        self._byte = 0
        self._move_state(State.STARTED)
        self._device.on_transaction_changed(State.STARTED)

    def _on_stop(self) -> None:
        self._log("Rx CMD_STOP")
        self._device.on_transaction_changed(State.STOPPED)
        self._move_state(State.STOPPED)

    def _on_first_bit(self, sda: bool) -> None:
        self._log("Rx CMD_TX")
        self._bit = 0
        self._byte = int(sda) << 7
        self._log(f"Rx data bit {self._bit}={int(sda)}")
        self._move_state(State.RECEIVING_BYTE)

    def _on_bit(self, sda: bool) -> None:
        self._bit += 1
        self._byte |= int(sda) << (7 - self._bit)
        self._log(f"Rx data bit {self._bit}={int(sda)}")

    def _on_byte(self) -> None:
        self._log(f"Rx byte=0x{self._byte:02X}")
        if self._bytes_since_start == 0:
            self._on_address(self._byte)
        else:
            self._on_payload(self._byte)

    def _on_address(self, frame: int) -> None:
        # The first byte after a (repeated) START is always an address plus direction.
        mine, direction = has_address(frame, self._address)
        if not mine:
            self._log(f"Data address 0x{frame >> 1:02X} is for another slave")
            self._log("Ignoring further data until next CMD_START")
            # Only eavesdropping, so neither ACK nor NACK.
            self._move_state(State.STOPPED)
            return
        self._direction = direction
        self._log(f"Data address 0x{frame >> 1:02X} matches slave address")
        self._log(f"Accepting data {direction.value.upper()}s to {self._name}")
        self._bytes_since_start += 1
        self._move_state(State.STARTED)
        self._device.on_transaction_changed(State.STARTED)
        self._send_ack()

    def _on_payload(self, byte: int) -> None:
        # Register pointers and such are up to the device, so every byte goes there.
        self._bytes_since_start += 1
        if self._direction == Direction.READ:
            ack = self._device.on_byte_read(byte)
        else:
            ack = self._device.on_byte_written(byte)
        if ack:
            self._move_state(State.STARTED)
            self._send_ack()
            return
        self._device.on_transaction_changed(State.STOPPED)
        self._send_nack()
        self._move_state(State.STOPPED)

    def _send_ack(self) -> None:
        self._log("Tx ACK  bit 8=0")
        self._holding_sda = True
        self._bus.set_sda(self, False)

    def _send_nack(self) -> None:
        self._log("Tx NACK bit 8=1")
        self._holding_sda = False
        self._bus.set_sda(self, True)

    def _release(self) -> None:
        self._holding_sda = False
        self._bus.set_sda(self, True)
