"""
Host side of the control channel.

Sends ALERT / CLEAR / RESET symbols to a board over a serial port (8N1).
Symbols are queued and written from a background thread so a preview loop
never blocks on the port.
"""

import logging
import queue
import threading
import time
from typing import Optional

import serial

from .config import BAUD_RATE, ControlSymbols

logger = logging.getLogger(__name__)


class ControlLink:
    """Queued serial writer for control symbols"""

    def __init__(self, port: str, baud_rate: int = BAUD_RATE,
                 symbols: Optional[ControlSymbols] = None):
        self.port = port
        self.baud_rate = baud_rate
        self.symbols = symbols or ControlSymbols()
        self.serial: Optional[serial.Serial] = None
        self.symbol_queue: queue.Queue = queue.Queue(maxsize=64)
        self.running = False
        self.tx_thread: Optional[threading.Thread] = None
        self.symbols_sent = 0

    def open(self) -> bool:
        """Open serial connection"""
        try:
            self.serial = serial.Serial(
                port=self.port,
                baudrate=self.baud_rate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=0.1
            )
        except serial.SerialException as e:
            logger.error("could not open %s: %s", self.port, e)
            return False
        logger.info("control link opened: %s @ %d baud", self.port, self.baud_rate)
        return True

    def close(self):
        """Stop the writer thread and close the port"""
        self.running = False
        if self.tx_thread:
            self.tx_thread.join(timeout=1.0)
            self.tx_thread = None
        if self.serial:
            self.serial.close()
            self.serial = None

    def start_tx_thread(self):
        self.running = True
        self.tx_thread = threading.Thread(target=self._tx_loop, daemon=True)
        self.tx_thread.start()

    def _tx_loop(self):
        while self.running:
            try:
                symbol = self.symbol_queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self.write_symbol(symbol)

    def write_symbol(self, symbol: int):
        """Write one symbol immediately"""
        if not self.serial or not self.serial.is_open:
            logger.warning("control link closed, symbol 0x%02X not sent", symbol)
            return
        try:
            self.serial.write(bytes([symbol & 0xFF]))
            self.serial.flush()
        except serial.SerialException as e:
            logger.error("TX error: %s", e)
            return
        self.symbols_sent += 1
        logger.debug("sent control symbol 0x%02X", symbol)

    def send_symbol(self, symbol: int):
        """Queue a symbol; dropped if the queue is full"""
        if self.tx_thread is None:
            self.write_symbol(symbol)
            return
        try:
            self.symbol_queue.put_nowait(symbol)
        except queue.Full:
            logger.warning("control queue full, dropping 0x%02X", symbol)

    def alert(self):
        self.send_symbol(self.symbols.alert)

    def clear(self):
        self.send_symbol(self.symbols.clear)

    def reset_board(self):
        self.send_symbol(self.symbols.reset)

    def pulse_dtr(self, low_s: float = 0.1, settle_s: float = 0.5):
        """Toggle DTR, for boards wired to reset on it"""
        if not self.serial:
            return
        self.serial.dtr = False
        time.sleep(low_s)
        self.serial.dtr = True
        time.sleep(settle_s)
