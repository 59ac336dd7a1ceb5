'''Find ZWO mounts attached to this computer by probing its serial ports.'''

import logging

import serial.tools.list_ports

from serial.tools.list_ports_common import ListPortInfo

import zwo

from mount import ZwoMount, MountInfo, TransportFactory, DEFAULT_BAUD_RATE
from mount_base import SerialTransport, ZwoError

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 2.0

MODEL_MARKERS = ['ZWO', 'AM5', 'AM3']

USB_NAME_MARKERS = ['usbserial', 'USB', 'ttyUSB', 'ttyACM', 'cu.', 'COM']

def list_ports() -> list[ListPortInfo]:
    '''Every serial port on the system.'''
    return list(serial.tools.list_ports.comports())

def is_usb_serial(port: ListPortInfo) -> bool:
    '''Heuristic: could this port be a USB serial adapter (and not, say, Bluetooth)?'''
    if 'Bluetooth' in port.device:
        return False
    if port.vid is not None:
        return True
    return any(marker in port.device for marker in USB_NAME_MARKERS)

def list_usb_ports() -> list[ListPortInfo]:
    return [port for port in list_ports() if is_usb_serial(port)]

def probe_port(port: str,
               timeout: float = DEFAULT_PROBE_TIMEOUT,
               baud_rate: int = DEFAULT_BAUD_RATE,
               transport_factory: TransportFactory = SerialTransport) -> MountInfo | None:
    '''
    Ask whatever is on port for its model. Return its model and firmware version
    if it looks like a ZWO mount, otherwise None.
    '''
    logger.debug('Probing %s', port)
    mount = ZwoMount(port, baud_rate=baud_rate, read_timeout=timeout, transport_factory=transport_factory)
    try:
        mount.connect()
        model = mount.send_command(zwo.get_mount_model())
        if not any(marker in model.upper() for marker in MODEL_MARKERS):
            logger.debug('%s answered %r, which is not a ZWO mount', port, model)
            return None
        try:
            version = mount.send_command(zwo.get_version())
        except ZwoError:
            version = 'unknown'
        return MountInfo(model, version)
    except ZwoError as e:
        logger.debug('Probe failed for %s: %s', port, e)
        return None
    finally:
        # Don't send a stop to a device we aren't sure about.
        mount.disconnect()

def find_all_mounts(ports: list[str] | None = None, timeout: float = DEFAULT_PROBE_TIMEOUT,
                    transport_factory: TransportFactory = SerialTransport) -> list[tuple[str, MountInfo]]:
    '''Probe ports (by default, every USB serial port) and return all the ZWO mounts found.'''
    if ports is None:
        ports = [port.device for port in list_usb_ports()]
    found = []
    for port in ports:
        info = probe_port(port, timeout, transport_factory=transport_factory)
        if info is not None:
            found.append((port, info))
    return found

def find_mount(ports: list[str] | None = None, timeout: float = DEFAULT_PROBE_TIMEOUT,
               transport_factory: TransportFactory = SerialTransport) -> str | None:
    '''Return the first port with a ZWO mount on it, or None.'''
    if ports is None:
        ports = [port.device for port in list_usb_ports()]
    logger.info('Searching for a ZWO mount on %d port(s)', len(ports))
    for port in ports:
        info = probe_port(port, timeout, transport_factory=transport_factory)
        if info is not None:
            logger.info('Found %s (firmware %s) on %s', info.model, info.version, port)
            return port
    logger.warning('No ZWO mount found')
    return None
