# SPDX-FileCopyrightText: 2026 i2cslave-sim contributors
#
# SPDX-License-Identifier: MIT

"""
`i2cbus`
================================================================================

A tick driven, open-drain two wire bus for `i2cslave` devices, and a bit-bang
master that drives it. Every call to `Bus.step` is one clock increment: all
registered devices see the old and new levels of both lines, in the order
they were registered.

Implementation Notes
--------------------

**Software and Dependencies:**

* typing_extensions

"""

import dataclasses
from types import TracebackType
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from typing_extensions import Literal, Protocol, TypeAlias

from i2cslave import read_frame, write_frame

__version__ = "0.1.0"

NetName: TypeAlias = Literal["sda", "scl"]


class TickListener(Protocol):
    def tick(self, new_sda: bool, new_scl: bool, old_sda: bool, old_scl: bool) -> None:
        ...


def _level_to_vcd(level: bool) -> str:
    """Converts a level to a VCD understandable mnemonic."""
    return "1" if level else "0"


@dataclasses.dataclass(frozen=True)
class Change:
    """Container to record line changes."""

    net_name: NetName
    tick: int
    level: bool


class Bus:
    """Both lines of an I2C bus, pulled up, with any number of devices."""

    def __init__(self, *, monitor: bool = False) -> None:
        self._devices: List[TickListener] = []
        self._sda_drivers: Dict[Any, bool] = {}
        self._scl_drivers: Dict[Any, bool] = {}
        self._last: Tuple[bool, bool] = (True, True)
        self._ticks = 0
        self._history: Optional[List[Change]] = [] if monitor else None

    @property
    def sda(self) -> bool:
        """The wired-AND level of the data line."""
        return all(self._sda_drivers.values())

    @property
    def scl(self) -> bool:
        """The wired-AND level of the clock line."""
        return all(self._scl_drivers.values())

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def devices(self) -> Sequence[TickListener]:
        return tuple(self._devices)

    def register(self, device: TickListener) -> None:
        """Attaches a device. Devices are ticked in registration order."""
        if any(existing is device for existing in self._devices):
            raise ValueError(f"{device!r} is already on the bus.")
        self._devices.append(device)

    def set_sda(self, owner: Any, level: bool) -> None:
        """Drives the data line low, or releases it when `level` is True."""
        self._sda_drivers[owner] = bool(level)

    def set_scl(self, owner: Any, level: bool) -> None:
        """Drives the clock line low, or releases it when `level` is True."""
        self._scl_drivers[owner] = bool(level)

    def step(self) -> int:
        """Delivers one tick to every device and returns the tick number."""
        old_sda, old_scl = self._last
        for device in list(self._devices):
            # Re-resolve for each device so earlier drives in this round are seen.
            device.tick(self.sda, self.scl, old_sda, old_scl)
        new = (self.sda, self.scl)
        self._ticks += 1
        if self._history is not None:
            for name, old_level, level in zip(("sda", "scl"), self._last, new):
                if level != old_level:
                    self._history.append(Change(name, self._ticks, level))
        self._last = new
        return self._ticks

    def change_history(self) -> Sequence[Change]:
        """Returns an ordered history of line changes, if monitored."""
        if self._history is None:
            raise RuntimeError("Bus was created without monitor=True")
        return tuple(self._history)

    def write_vcd(self, path: str) -> None:
        """Writes the monitored lines to the provided path as a VCD file."""
        combined = self.change_history()
        with open(path, "w") as vcdfile:
            vcdfile.write("$version i2cbus $end\n")
            vcdfile.write("$timescale 1 us $end\n")
            vcdfile.write("$scope module top $end\n")
            for name in ("sda", "scl"):
                vcdfile.write(f"$var wire 1 {name} {name} $end\n")
            vcdfile.write("$upscope $end\n")
            vcdfile.write("$enddefinitions $end\n")
            # Both lines idle high before the first tick.
            vcdfile.write("#0\n")
            vcdfile.write("1sda\n1scl\n")
            last_tick = 0
            for change in combined:
                if change.tick != last_tick:
                    vcdfile.write(f"#{change.tick}\n")
                    last_tick = change.tick
                vcdfile.write(f"{_level_to_vcd(change.level)}{change.net_name}\n")


class I2CMaster:
    """Bit-bang I2C master that clocks a `Bus` one step per half period.

    Bytes go out with the edge pattern `i2cslave.I2CSlave` samples: bit 7 with
    the falling clock edge that opens the byte, bits 6 to 0 with the rising
    edges after it and one more rising edge to close the byte. The answer
    from the slave is read after the falling edge that follows.
    """

    def __init__(self, bus: Bus) -> None:
        self._bus = bus
        self._locked = False
        # Both lines released, the pull-ups lift them.
        self._scl_release()
        self._sda_release()

    def try_lock(self) -> bool:
        """Attempt to grab the lock. Return True on success, False if the lock is already taken."""
        if self._locked:
            return False
        self._locked = True
        return True

    def unlock(self) -> None:
        """Release the lock so others may use the resource."""
        if self._locked:
            self._locked = False
        else:
            raise ValueError("Not locked")

    def _check_lock(self) -> Literal[True]:
        if not self._locked:
            raise RuntimeError("First call try_lock()")
        return True

    def __enter__(self) -> "I2CMaster":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        self.deinit()

    def deinit(self) -> None:
        """Let go of both lines."""
        self._sda_release()
        self._scl_release()

    def _wait(self) -> None:
        self._bus.step()  # half period

    def scan(self) -> List[int]:
        """Perform an I2C Device Scan"""
        found = []
        if self._check_lock():
            for address in range(0, 0x80):
                if self._probe(address):
                    found.append(address)
        return found

    def writeto(
        self,
        address: int,
        buffer: bytes,
        *,
        start: int = 0,
        end: Optional[int] = None,
    ) -> None:
        """Write data from the buffer to an address"""
        if end is None:
            end = len(buffer)
        if self._check_lock():
            self._write(address, buffer[start:end], True)

    def readfrom_into(
        self,
        address: int,
        buffer: bytearray,
        *,
        start: int = 0,
        end: Optional[int] = None,
    ) -> None:
        """Read data from an address and into the buffer"""
        if end is None:
            end = len(buffer)

        if self._check_lock():
            readin = self._read(address, end - start)
            for i in range(end - start):
                buffer[i + start] = readin[i]

    def writeto_then_readfrom(
        self,
        address: int,
        buffer_out: bytes,
        buffer_in: bytearray,
        *,
        out_start: int = 0,
        out_end: Optional[int] = None,
        in_start: int = 0,
        in_end: Optional[int] = None,
    ) -> None:
        """Write data from buffer_out to an address and then
        read data from an address and into buffer_in, with a repeated start
        in between.
        """
        if out_end is None:
            out_end = len(buffer_out)
        if in_end is None:
            in_end = len(buffer_in)
        if self._check_lock():
            self._write(address, buffer_out[out_start:out_end], False)
            self.readfrom_into(address, buffer_in, start=in_start, end=in_end)

    def _scl_low(self) -> None:
        self._bus.set_scl(self, False)

    def _sda_low(self) -> None:
        self._bus.set_sda(self, False)

    def _scl_release(self) -> None:
        """Release and let the pullups lift"""
        self._bus.set_scl(self, True)

    def _sda_release(self) -> None:
        """Release and let the pullups lift"""
        self._bus.set_sda(self, True)

    def _sda_bit(self, bit: int) -> None:
        if bit:
            self._sda_release()
        else:
            self._sda_low()

    def _start(self) -> None:
        # Also serves as a repeated start: SCL may still be low after an ACK.
        self._sda_release()
        self._scl_release()
        self._wait()
        self._sda_low()
        self._wait()

    def _stop(self) -> None:
        self._scl_low()
        self._wait()
        self._sda_low()
        self._wait()
        self._scl_release()
        self._wait()
        self._sda_release()
        self._wait()

    def _answer(self) -> bool:
        """Clocks the ninth edge and returns True if the slave ACKed."""
        self._sda_release()  # SDA may go high, but only the slave drives it now
        self._scl_release()
        self._wait()
        self._scl_low()
        self._wait()
        return not self._bus.sda

    def _write_byte(self, byte: int) -> bool:
        # Clock high: either the hold after START or the edge that ends the last ACK.
        self._scl_release()
        self._wait()

        self._scl_low()
        self._sda_bit(byte & 0x80)
        self._wait()
        for bit_position in range(1, 8):
            self._scl_release()
            self._sda_bit(byte & (0x80 >> bit_position))
            self._wait()
            self._scl_low()
            self._wait()

        return self._answer()

    def _read_byte(self) -> Tuple[int, bool]:
        self._sda_release()
        self._scl_release()
        self._wait()

        self._scl_low()
        self._wait()
        data = int(self._bus.sda)
        for _ in range(7):
            self._scl_release()
            self._wait()
            data = (data << 1) | int(self._bus.sda)
            self._scl_low()
            self._wait()

        return data & 0xFF, self._answer()

    def _probe(self, address: int) -> bool:
        self._start()
        ok = self._write_byte(write_frame(address))
        self._stop()
        return ok

    def _write(self, address: int, buffer: bytes, transmit_stop: bool) -> None:
        self._start()
        if not self._write_byte(write_frame(address)):
            self._stop()
            raise RuntimeError(f"Device not responding at 0x{address:02X}")
        for index, byte in enumerate(buffer):
            if not self._write_byte(byte):
                self._stop()
                raise RuntimeError(
                    f"Device at 0x{address:02X} rejected byte {index} (0x{byte:02X})"
                )
        if transmit_stop:
            self._stop()

    def _read(self, address: int, length: int) -> bytearray:
        self._start()
        if not self._write_byte(read_frame(address)):
            self._stop()
            raise RuntimeError(f"Device not responding at 0x{address:02X}")
        buffer = bytearray(length)
        for byte_position in range(length):
            buffer[byte_position], ack = self._read_byte()
            if not ack:
                self._stop()
                raise RuntimeError(
                    f"Device at 0x{address:02X} aborted the read at byte {byte_position}"
                )
        self._stop()
        return buffer
