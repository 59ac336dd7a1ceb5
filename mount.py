'''
The main class here is ZwoMount, a session with a ZWO AM-series mount.

It owns the transport, serializes command/response exchanges (the protocol is
half duplex, so only one command may be outstanding at a time), and keeps
advisory slewing/tracking flags reflecting the last thing we commanded.
'''

import datetime
import logging
import threading
import time

from typing import Any, Callable, NamedTuple

import angles
import zwo

from angles import Sexagesimal
from mount_base import (ZwoError, MountConnectionError, NotConnectedError, ReadTimeout,
                        SerialTransport, Transport)
from zwo import Direction, GotoError, GotoResult, MountStatus, TrackingRate

logger = logging.getLogger(__name__)

DEFAULT_BAUD_RATE = 9600
DEFAULT_READ_TIMEOUT = 2.0

TransportFactory = Callable[[str, int], Transport]

class HorizontalPosition(NamedTuple):
    '''Where the mount is pointing, in degrees.'''
    az: float
    alt: float

class MountInfo(NamedTuple):
    model: str
    version: str

class ZwoMount:
    '''
    Talk to a ZWO mount.

    Methods take and return sensible units: decimal hours for right ascension,
    decimal degrees for everything else. Errors from a single exchange are raised
    to the caller; nothing is retried.
    '''
    def __init__(self,
                 port: str,
                 baud_rate: int = DEFAULT_BAUD_RATE,
                 read_timeout: float = DEFAULT_READ_TIMEOUT,
                 transport_factory: TransportFactory = SerialTransport):
        '''
        port is the serial device (e.g. /dev/ttyACM0 or COM3).
        transport_factory(port, baud_rate) opens the connection; substitute it to
        run against a simulator. The port is not opened until connect() is called.
        '''
        self.port_name = port
        self.baud_rate = baud_rate
        self.read_timeout = read_timeout
        self.transport_factory = transport_factory

        self.transport: Transport | None = None
        self.tracking = False
        self.slewing = False

        # Held for the duration of each exchange, and across multi-command
        # sequences such as goto, so nothing else can interleave.
        self.lock = threading.RLock()

    @property
    def connected(self) -> bool:
        return self.transport is not None

    def __enter__(self) -> 'ZwoMount':
        if not self.connected:
            self.connect()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def connect(self) -> None:
        '''Open the port. On failure the session stays disconnected and the error is raised.'''
        with self.lock:
            if self.transport is not None:
                return
            logger.info('Connecting to %s', self.port_name)
            self.transport = self.transport_factory(self.port_name, self.baud_rate)

    def disconnect(self) -> None:
        '''Close the port if it is open. Safe to call more than once.'''
        with self.lock:
            transport = self.transport
            self.transport = None
            self.slewing = False
            if transport is None:
                return
            try:
                transport.close()
            except MountConnectionError as e:
                logger.warning('Error closing %s: %s', self.port_name, e)

    def close(self) -> None:
        '''Stop all motion, as a best effort, then disconnect.'''
        with self.lock:
            try:
                if self.connected:
                    self.stop_all()
            except ZwoError as e:
                logger.warning('Unable to stop %s while closing: %s', self.port_name, e)
            finally:
                self.disconnect()

    def _exchange(self, command: str, expect_reply: bool = True, timeout_ok: bool = False) -> str:
        '''
        Write a command and, if expect_reply, read until '#' or timeout.

        Returns the raw response, '#' included. A timeout with nothing read raises
        ReadTimeout, unless timeout_ok, in which case '' is returned. A timeout after
        some characters were read returns what arrived.
        '''
        with self.lock:
            if self.transport is None:
                raise NotConnectedError(f'Not connected to {self.port_name}')

            self.transport.write(command.encode('ISO-8859-1'))
            logger.debug('Sent %r', command)
            if not expect_reply:
                return ''

            response = ''
            while not response.endswith('#'):
                data = self.transport.read(self.read_timeout)
                if not data:
                    if response:
                        break
                    if timeout_ok:
                        logger.debug('No response to %r, as expected', command)
                        return ''
                    raise ReadTimeout(f'No response to {command!r} from {self.port_name}')
                response += data.decode(encoding='ISO-8859-1')

            logger.debug('Received %r', response)
            return response

    def _ack(self, command: str) -> None:
        if not zwo.parse_ack(self._exchange(command)):
            raise zwo.CommandFailed(f'Mount rejected {command!r}')

    # Position

    def get_position_sexagesimal(self) -> tuple[Sexagesimal, Sexagesimal]:
        '''Return (RA, Dec) as the mount reports them.'''
        with self.lock:
            ra = zwo.parse_ra(self._exchange(zwo.get_ra()))
            dec = zwo.parse_dec(self._exchange(zwo.get_dec()))
        return ra, dec

    def get_position(self) -> tuple[float, float]:
        '''Return (RA hours, Dec degrees).'''
        ra, dec = self.get_position_sexagesimal()
        return angles.sexagesimal_to_decimal(ra), angles.sexagesimal_to_decimal(dec)

    def get_altaz(self) -> HorizontalPosition:
        '''Return the azimuth and altitude, in degrees.'''
        with self.lock:
            alt = zwo.parse_altitude(self._exchange(zwo.get_altitude()))
            az = zwo.parse_azimuth(self._exchange(zwo.get_azimuth()))
        return HorizontalPosition(az=angles.sexagesimal_to_decimal(az), alt=angles.sexagesimal_to_decimal(alt))

    # Motion

    def goto(self, ra: float, dec: float) -> None:
        '''Slew to (RA hours, Dec degrees). Raise GotoError if the mount refuses.'''
        ra = angles.normalize_hours(ra)
        dec = angles.clamp_degrees(dec)
        with self.lock:
            # Cleared up front so a failed exchange or unknown reply leaves it false.
            self.slewing = False
            self._ack(zwo.set_target_ra(ra))
            self._ack(zwo.set_target_dec(dec))
            result = zwo.parse_goto_response(self._exchange(zwo.goto()))
            self.slewing = result == GotoResult.OK
        logger.info('Goto RA %.4f Dec %.4f: %s', ra, dec, result.value)
        if result != GotoResult.OK:
            raise GotoError(result)

    def sync(self, ra: float, dec: float) -> str:
        '''Tell the mount it is pointing at (RA hours, Dec degrees). Returns the mount's reply.'''
        ra = angles.normalize_hours(ra)
        dec = angles.clamp_degrees(dec)
        with self.lock:
            self._ack(zwo.set_target_ra(ra))
            self._ack(zwo.set_target_dec(dec))
            return zwo.strip_terminator(self._exchange(zwo.sync()))

    def move(self, direction: Direction) -> None:
        '''Start moving in direction at the current slew rate, until stopped.'''
        self._exchange(zwo.move(direction), expect_reply=False)

    def stop_motion(self, direction: Direction) -> None:
        self._exchange(zwo.stop_motion(direction), expect_reply=False)

    def stop_all(self) -> None:
        '''Stop all motion, including gotos.'''
        with self.lock:
            self._exchange(zwo.stop_all(), expect_reply=False)
            self.slewing = False

    def set_slew_rate(self, rate: int) -> None:
        self._exchange(zwo.set_slew_rate(rate), expect_reply=False)

    def guide_pulse(self, direction: Direction, duration_ms: int) -> None:
        self._exchange(zwo.guide_pulse(direction, duration_ms), expect_reply=False)

    def set_guide_rate(self, rate: float) -> None:
        self._exchange(zwo.set_guide_rate(rate))

    def wait_for_idle(self, timeout: float, poll_interval: float = 1.0) -> bool:
        '''Poll the status until the mount stops slewing. Return False if timeout elapses first.'''
        deadline = time.monotonic() + timeout
        while True:
            status = self.get_status()
            if not status.slewing:
                self.slewing = False
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(poll_interval)

    # Tracking

    def set_tracking(self, enabled: bool) -> None:
        with self.lock:
            self._exchange(zwo.tracking_on() if enabled else zwo.tracking_off())
            self.tracking = enabled

    def get_tracking(self) -> bool:
        with self.lock:
            self.tracking = zwo.parse_tracking_status(self._exchange(zwo.get_tracking_status()))
            return self.tracking

    def set_tracking_rate(self, rate: TrackingRate) -> None:
        self._exchange(zwo.set_tracking_rate(rate), expect_reply=False)

    # Home and park. The mount doesn't always answer these, so silence is success.

    def home(self) -> None:
        with self.lock:
            self._exchange(zwo.find_home(), timeout_ok=True)
            self.slewing = True

    def park(self) -> None:
        with self.lock:
            self._exchange(zwo.park(), timeout_ok=True)
            self.slewing = True

    def unpark(self) -> None:
        self._exchange(zwo.unpark(), timeout_ok=True)

    def set_home_position(self) -> None:
        '''Record the current position as home.'''
        self._exchange(zwo.set_home_position(), timeout_ok=True)

    def clear_alignment(self) -> None:
        self._exchange(zwo.clear_alignment(), timeout_ok=True)

    # Mount mode

    def set_altaz_mode(self) -> None:
        self._exchange(zwo.set_altaz_mode(), timeout_ok=True)

    def set_polar_mode(self) -> None:
        self._exchange(zwo.set_polar_mode(), timeout_ok=True)

    # Site, date and time

    def set_site(self, latitude: float, longitude: float) -> None:
        '''Set the site latitude then longitude, in degrees (east positive).'''
        lat_command = zwo.set_latitude(latitude)
        lon_command = zwo.set_longitude(longitude)
        with self.lock:
            self._ack(lat_command)
            self._ack(lon_command)

    def get_site(self) -> tuple[float, float]:
        '''Return (latitude, longitude) in degrees, with longitude east positive in (-180, 180].'''
        with self.lock:
            lat = zwo.parse_dec(self._exchange(zwo.get_latitude()))
            lon = zwo.parse_longitude(self._exchange(zwo.get_longitude()))
        return angles.sexagesimal_to_decimal(lat), angles.wrap_degrees(angles.sexagesimal_to_decimal(lon))

    def set_date_time(self, local_time: datetime.datetime, utc_offset_hours: int) -> None:
        '''Set the mount clock to local_time with the given UTC offset.'''
        commands = [
            zwo.set_timezone(utc_offset_hours),
            zwo.set_date(local_time.date()),
            zwo.set_time(local_time.time()),
        ]
        with self.lock:
            for command in commands:
                self._exchange(command)

    def get_sidereal_time(self) -> float:
        '''Return the local sidereal time in decimal hours.'''
        return angles.sexagesimal_to_decimal(zwo.parse_ra(self._exchange(zwo.get_sidereal_time())))

    def set_meridian_action(self, flip: bool) -> None:
        self._exchange(zwo.set_meridian_action(flip))

    # Miscellaneous

    def set_buzzer(self, volume: int) -> None:
        self._exchange(zwo.set_buzzer_volume(volume))

    def get_buzzer(self) -> int:
        text = zwo.strip_terminator(self._exchange(zwo.get_buzzer_volume()))
        if not text.isdigit():
            raise zwo.ParseError('buzzer volume', text)
        return int(text)

    def get_pier_side(self) -> str:
        return zwo.strip_terminator(self._exchange(zwo.get_pier_side()))

    def get_info(self) -> MountInfo:
        with self.lock:
            model = zwo.strip_terminator(self._exchange(zwo.get_mount_model()))
            version = zwo.strip_terminator(self._exchange(zwo.get_version()))
        return MountInfo(model, version)

    def get_status(self) -> MountStatus:
        return zwo.parse_status(self._exchange(zwo.get_status()))

    def send_command(self, command: str, expect_reply: bool = True) -> str:
        '''Send any command, unchecked, and return the response without its '#'.'''
        return zwo.strip_terminator(self._exchange(command, expect_reply=expect_reply))
