'''Base functionality used to talk to the mount: the error hierarchy and the byte transport.'''

import logging
import time

import serial

from abc import ABC, abstractmethod
from typing import TypeVar, Callable

logger = logging.getLogger(__name__)

class ZwoError(Exception):
    '''Base class for everything that can go wrong talking to the mount.'''
    pass

class MountConnectionError(ZwoError):
    '''The port could not be opened or closed.'''
    pass

class NotConnectedError(MountConnectionError):
    '''A command was issued while the session had no open port.'''
    pass

class TransportError(ZwoError):
    '''Writing to or reading from the port failed.'''
    pass

class ReadTimeout(TransportError):
    '''The mount did not respond before the read timeout elapsed.'''
    pass

class Transport(ABC):
    '''Moves raw bytes to and from the mount.'''

    @abstractmethod
    def write(self, data: bytes) -> None:
        '''Send data to the mount. Raise TransportError on failure.'''

    @abstractmethod
    def read(self, timeout: float) -> bytes:
        '''
        Return whatever bytes arrive within timeout seconds, as soon as any arrive.
        Return b'' on timeout. Raise TransportError on failure.
        '''

    @abstractmethod
    def close(self) -> None:
        '''Close the connection to the mount.'''

class SerialTransport(Transport):
    '''The mount is plugged into this computer over USB or RS-232.'''
    def __init__(self, port: str, baud_rate: int = 9600):
        '''
        Open the serial port with 8 data bits, no parity, 1 stop bit and no flow control.
        Raise MountConnectionError if the port can't be opened.
        '''
        self.port_name = port
        try:
            self.port = serial.Serial(
                port=port,
                baudrate=baud_rate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
                timeout=0)
        except (serial.SerialException, ValueError) as e:
            raise MountConnectionError(f'Unable to open {port}: {e}') from e
        logger.info('Opened %s at %d baud', port, baud_rate)

    def write(self, data: bytes) -> None:
        try:
            self.port.reset_input_buffer()
            self.port.write(data)
            self.port.flush()
        except serial.SerialException as e:
            raise TransportError(f'Write to {self.port_name} failed: {e}') from e

    def read(self, timeout: float) -> bytes:
        try:
            self.port.timeout = timeout
            first = self.port.read(1)
            if not first:
                return b''
            return first + self.port.read(self.port.in_waiting)
        except serial.SerialException as e:
            raise TransportError(f'Read from {self.port_name} failed: {e}') from e

    def close(self) -> None:
        try:
            self.port.close()
        except serial.SerialException as e:
            raise MountConnectionError(f'Unable to close {self.port_name}: {e}') from e
        logger.info('Closed %s', self.port_name)

T = TypeVar('T')

def speak_delay(write_fun: Callable[[T, bytes], None]) -> Callable[[T, bytes], None]:
    '''Decorator used by HOOTL to simulate the time a command takes to reach the mount.'''
    def delayed_write(self: T, data: bytes) -> None:
        time.sleep(0.01)
        write_fun(self, data)
    return delayed_write
