"""
Control Channel Decoder

8N1 UART receiver on the rx pin. Received symbols drive a sticky alert bit:
    ALERT ('A', 0x41) - set alert, forces a "ready to harvest" decision
    CLEAR ('C', 0x43) - clear alert
    RESET ('R', 0x52) - clear alert and the decoder's symbol counters
Other symbols are ignored.

Frame format (LSB first):
    [START=0] [D0 .. D7] [STOP=1]

The decoder re-arms on every idle-to-low transition. A glitch shorter than
half a bit is rejected at the start bit check; anything else can corrupt one
symbol and the decoder picks up again at the next start bit.
"""

import logging
from collections import deque
from enum import IntEnum
from typing import Deque, Optional

from .config import ControlSymbols, TimingConfig
from .sync import EdgeDetector, Synchronizer

logger = logging.getLogger(__name__)

SYMBOL_HISTORY = 256


class RxState(IntEnum):
    IDLE = 0
    START = 1
    DATA = 2
    STOP = 3


class ControlChannelDecoder:
    """UART symbol decoder with sticky alert state"""

    def __init__(self, timing: Optional[TimingConfig] = None,
                 symbols: Optional[ControlSymbols] = None):
        self.timing = timing or TimingConfig()
        self.symbols = symbols or ControlSymbols()
        self.clks_per_bit = self.timing.clks_per_bit
        self._rx_sync = Synchronizer(self.timing.sync_stages, reset_value=1)
        self._rx_edge = EdgeDetector(reset_value=1)
        self.reset()

    def reset(self):
        self._rx_sync.reset()
        self._rx_edge.reset()
        self.state = RxState.IDLE
        self.clk_count = 0
        self.bit_index = 0
        self.shift_reg = 0
        self.alert = False
        self.symbol_valid = False
        self.last_symbol: Optional[int] = None
        self.received: Deque[int] = deque(maxlen=SYMBOL_HISTORY)
        self.symbols_received = 0
        self.unrecognized = 0
        self.start_glitches = 0

    def tick(self, rx: int) -> bool:
        """Advance one system clock cycle. Returns the alert state."""
        level = self._rx_sync.tick(1 if rx else 0)
        self._rx_edge.tick(level)
        self.symbol_valid = False

        if self.state == RxState.IDLE:
            if self._rx_edge.fell:
                self.state = RxState.START
                self.clk_count = 0
        elif self.state == RxState.START:
            self.clk_count += 1
            if self.clk_count >= self.clks_per_bit // 2:
                if level == 0:
                    self.state = RxState.DATA
                    self.clk_count = 0
                    self.bit_index = 0
                    self.shift_reg = 0
                else:
                    self.start_glitches += 1
                    self.state = RxState.IDLE
        elif self.state == RxState.DATA:
            self.clk_count += 1
            if self.clk_count >= self.clks_per_bit:
                self.clk_count = 0
                self.shift_reg |= (level & 1) << self.bit_index
                self.bit_index += 1
                if self.bit_index == 8:
                    self.state = RxState.STOP
        elif self.state == RxState.STOP:
            self.clk_count += 1
            if self.clk_count >= self.clks_per_bit:
                # stop bit level is not checked
                self.state = RxState.IDLE
                self._deliver(self.shift_reg)

        return self.alert

    def _deliver(self, symbol: int):
        self.symbol_valid = True
        self.last_symbol = symbol
        self.received.append(symbol)
        self.symbols_received += 1

        if symbol == self.symbols.alert:
            self.alert = True
            logger.debug("control symbol 0x%02X: alert set", symbol)
        elif symbol == self.symbols.clear:
            self.alert = False
            logger.debug("control symbol 0x%02X: alert cleared", symbol)
        elif symbol == self.symbols.reset:
            self.alert = False
            self.received.clear()
            self.symbols_received = 0
            self.unrecognized = 0
            logger.debug("control symbol 0x%02X: reset", symbol)
        else:
            self.unrecognized += 1
            logger.debug("control symbol 0x%02X ignored", symbol)
