# SPDX-FileCopyrightText: 2026 i2cslave-sim contributors
# SPDX-License-Identifier: MIT

import logging

import i2cbus
import i2cslave

logging.basicConfig(level=logging.DEBUG, format="%(message)s")


class Eeprom(i2cslave.Device):
    """A tiny register file. The first byte written selects the register."""

    address = 0x50

    def __init__(self):
        self.memory = bytearray(16)
        self.pointer = None

    def on_transaction_changed(self, state):
        if state == i2cslave.State.STARTED:
            self.pointer = None

    def on_byte_read(self, byte):
        return True

    def on_byte_written(self, byte):
        if self.pointer is None:
            self.pointer = byte
            return byte < len(self.memory)
        self.memory[self.pointer] = byte
        self.pointer += 1
        # NACK once the end of memory is reached
        return self.pointer < len(self.memory)


bus = i2cbus.Bus(monitor=True)
eeprom = Eeprom()
i2cslave.I2CSlave(bus, eeprom, sink=i2cslave.logging_sink(logging.getLogger("eeprom")))

with i2cbus.I2CMaster(bus) as i2c:
    i2c.try_lock()
    i2c.writeto(0x50, bytes([0x04, 0xDE, 0xAD, 0xBE, 0xEF]))
    i2c.unlock()

print("Memory is {}".format(eeprom.memory.hex()))
bus.write_vcd("i2cslave_simpletest.vcd")
