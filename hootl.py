'''
A ZWO mount simulator used for Hardware Out Of The Loop (HOOTL) testing.
This lets you test the software without the risk of damaging your mount,
and without the trouble of setting it up.
'''

import logging
import re
import threading
import time

import astropy.units as units

import angles
import util
import zwo

from mount_base import Transport, TransportError, speak_delay
from zwo import Direction

logger = logging.getLogger(__name__)

SIDEREAL_RATE_DEG_PER_SEC = 360.0 / 86164.0905

# Multiples of the sidereal rate for each slew rate preset.
SLEW_RATE_MULTIPLES = [0.25, 0.5, 1, 2, 4, 8, 20, 60, 720, 1440]

HOME_AZ = 0.0
HOME_ALT = 90.0
PARK_AZ = 0.0
PARK_ALT = 0.0

def format_dec(degrees: float) -> str:
    s = angles.to_sexagesimal(degrees)
    return '{}{:02d}*{:02d}:{:02d}'.format('-' if s.negative else '+', abs(s.whole), s.minutes, int(s.seconds))

def format_ra(hours: float) -> str:
    s = angles.to_sexagesimal(hours, is_hours=True)
    return '{:02d}:{:02d}:{:02d}'.format(s.whole, s.minutes, int(s.seconds))

def format_az(degrees: float) -> str:
    s = angles.to_sexagesimal(degrees % 360.0)
    return '{:03d}*{:02d}:{:02d}'.format(s.whole % 360, s.minutes, int(s.seconds))

def step_towards(current: float, target: float, max_step: float) -> float:
    return current + util.clamp(target - current, -max_step, max_step)

class ZwoSerialHootl(Transport):
    '''
    Pretends to be a ZWO AM5 at the other end of a serial cable.

    The simulator runs in a separate thread. RA/Dec and Az/Alt are simulated
    independently: gotos move RA/Dec, manual motion and guide pulses move
    Az/Alt, and home and park move Az/Alt. Manual motion to the west increases
    azimuth, and to the north increases altitude.
    '''
    def __init__(self, port: str = 'hootl', baud_rate: int = 9600,
                 az: float = 180.0, alt: float = 45.0, altaz_mode: bool = True,
                 model: str = 'ZWO AM5', version: str = '1.2.5'):
        self.port = port
        self.model = model
        self.version = version
        self.altaz_mode = altaz_mode

        self.state_timestep = 0.02

        # Interface variables, shared between the caller and simulator thread.
        self.iface_az = az
        self.iface_alt = alt
        self.iface_ra = 0.0
        self.iface_dec = 0.0
        self.iface_target_ra = 0.0
        self.iface_target_dec = 0.0
        self.iface_goto_in_progress = False
        self.iface_homing_target: tuple[float, float] | None = None
        self.iface_at_home = False
        self.iface_parked = False
        self.iface_tracking = False
        self.iface_slew_rate = 9
        self.iface_guide_rate = 0.5
        self.iface_moving: set[Direction] = set()
        self.iface_guiding: dict[Direction, float] = dict() # Seconds of pulse remaining.
        self.iface_latitude = 0.0
        self.iface_longitude = 0.0
        self.iface_buzzer = 1
        self.iface_meridian_flip = False

        self.output = bytearray()
        self.closed = False

        # Mutex to lock the self.iface_* variables and the output buffer.
        self.iface_lock = threading.Condition()

        # Start the simulator thread.
        def run_thread() -> None:
            self._run_simulator()
        self.stop_thread = False
        self.thread = threading.Thread(target=run_thread, name='hootl', daemon=True)
        self.thread.start()
        logger.info('HOOTL mount simulator started on %s', port)

    def close(self) -> None:
        '''Stop the simulator and join the simulator thread.'''
        with self.iface_lock:
            if self.closed:
                return
            self.closed = True
            self.stop_thread = True
            self.iface_lock.notify_all()
        self.thread.join()
        logger.info('HOOTL mount simulator on %s stopped', self.port)

    def _slewing(self) -> bool:
        return (self.iface_goto_in_progress or self.iface_homing_target is not None
                or bool(self.iface_moving) or bool(self.iface_guiding))

    def _run_simulator(self) -> None:
        '''Simulator thread.'''
        wall_time = time.monotonic()
        while not self.stop_thread:
            # Sleep until the top of the next cycle.
            wall_time += self.state_timestep
            sleep_time = wall_time - time.monotonic()
            if sleep_time > 0:
                time.sleep(sleep_time)

            dt = self.state_timestep
            with self.iface_lock:
                max_step = SLEW_RATE_MULTIPLES[9] * SIDEREAL_RATE_DEG_PER_SEC * dt
                if self.iface_goto_in_progress:
                    self.iface_ra = step_towards(self.iface_ra, self.iface_target_ra, max_step / 15)
                    self.iface_dec = step_towards(self.iface_dec, self.iface_target_dec, max_step)
                    if self.iface_ra == self.iface_target_ra and self.iface_dec == self.iface_target_dec:
                        self.iface_goto_in_progress = False

                if self.iface_homing_target is not None:
                    target_az, target_alt = self.iface_homing_target
                    self.iface_az = step_towards(self.iface_az, target_az, max_step)
                    self.iface_alt = step_towards(self.iface_alt, target_alt, max_step)
                    if self.iface_az == target_az and self.iface_alt == target_alt:
                        self.iface_at_home = self.iface_homing_target == (HOME_AZ, HOME_ALT)
                        self.iface_parked = self.iface_homing_target == (PARK_AZ, PARK_ALT)
                        self.iface_homing_target = None

                slew_step = SLEW_RATE_MULTIPLES[self.iface_slew_rate] * SIDEREAL_RATE_DEG_PER_SEC * dt
                for direction in self.iface_moving:
                    self._nudge(direction, slew_step)

                guide_step = self.iface_guide_rate * SIDEREAL_RATE_DEG_PER_SEC * dt
                for direction in list(self.iface_guiding.keys()):
                    self._nudge(direction, guide_step)
                    self.iface_guiding[direction] -= dt
                    if self.iface_guiding[direction] <= 0:
                        del self.iface_guiding[direction]

    def _nudge(self, direction: Direction, step: float) -> None:
        self.iface_at_home = False
        if direction == Direction.NORTH:
            self.iface_alt = min(self.iface_alt + step, 90.0)
        elif direction == Direction.SOUTH:
            self.iface_alt = max(self.iface_alt - step, -90.0)
        elif direction == Direction.WEST:
            self.iface_az = (self.iface_az + step) % 360.0
        else:
            self.iface_az = (self.iface_az - step) % 360.0

    @speak_delay
    def write(self, data: bytes) -> None:
        '''Decode and execute each command, and queue up the responses.'''
        # If the simulator thread died, just give up.
        if not self.thread.is_alive() and not self.closed:
            raise TransportError('HOOTL simulator thread died')

        with self.iface_lock:
            if self.closed:
                raise TransportError(f'{self.port} is closed')
            for command in re.findall(r':[^#]*#', data.decode('ISO-8859-1')):
                response = self._respond(command)
                if response is not None:
                    self.output += response.encode('ISO-8859-1')
            self.iface_lock.notify_all()

    def read(self, timeout: float) -> bytes:
        with self.iface_lock:
            if self.closed:
                raise TransportError(f'{self.port} is closed')
            self.iface_lock.wait_for(lambda: bool(self.output) or self.closed, timeout)
            data = bytes(self.output)
            self.output.clear()
            return data

    def _respond(self, command: str) -> str | None:
        '''Execute one command. Return the response, or None if the mount would say nothing.'''
        body = command[1:-1]

        directions = {d.value: d for d in Direction}

        if command == zwo.get_mount_model():
            return self.model + '#'
        if command == zwo.get_version():
            return self.version + '#'
        if command == zwo.get_ra():
            return format_ra(self.iface_ra) + '#'
        if command == zwo.get_dec():
            return format_dec(self.iface_dec) + '#'
        if command == zwo.get_altitude():
            return format_dec(self.iface_alt) + '#'
        if command == zwo.get_azimuth():
            return format_az(self.iface_az) + '#'
        if command == zwo.get_tracking_status():
            return ('1' if self.iface_tracking else '0') + '#'
        if command == zwo.get_status():
            flags = ''
            if not self.iface_tracking:
                flags += 'n'
            if not self._slewing():
                flags += 'N'
            if self.iface_at_home:
                flags += 'H'
            if self.iface_parked:
                flags += 'P'
            flags += 'Z' if self.altaz_mode else 'G'
            return flags + '#'
        if command == zwo.get_latitude():
            s = angles.to_sexagesimal(self.iface_latitude)
            return '{}{:02d}*{:02d}#'.format('-' if s.negative else '+', abs(s.whole), s.minutes)
        if command == zwo.get_longitude():
            s = angles.to_sexagesimal(self.iface_longitude)
            return '{:03d}*{:02d}#'.format(s.whole, s.minutes)
        if command == zwo.get_sidereal_time():
            lst = util.get_current_time().sidereal_time('mean', longitude=self.iface_longitude * units.deg)
            return format_ra(lst.hour) + '#'
        if command == zwo.get_pier_side():
            return 'W#'
        if command == zwo.get_buzzer_volume():
            return '{}#'.format(self.iface_buzzer)

        if body.startswith('Sr'):
            ra = zwo.parse_ra(body[2:])
            self.iface_target_ra = angles.sexagesimal_to_decimal(ra)
            return '1'
        if body.startswith('Sd'):
            dec = zwo.parse_dec(body[2:])
            self.iface_target_dec = angles.sexagesimal_to_decimal(dec)
            return '1'
        if command == zwo.goto():
            if self.iface_parked:
                return '5#'
            self.iface_goto_in_progress = True
            self.iface_at_home = False
            # Like the real mount, success is a bare '0'.
            return '0'
        if command == zwo.sync():
            self.iface_ra = self.iface_target_ra
            self.iface_dec = self.iface_target_dec
            return 'N/A#'

        if command == zwo.stop_all():
            self.iface_goto_in_progress = False
            self.iface_homing_target = None
            self.iface_moving.clear()
            self.iface_guiding.clear()
            return None
        if len(body) == 2 and body[0] == 'M' and body[1] in directions:
            self.iface_moving.add(directions[body[1]])
            return None
        if len(body) == 2 and body[0] == 'Q' and body[1] in directions:
            self.iface_moving.discard(directions[body[1]])
            return None
        if len(body) == 2 and body[0] == 'R' and body[1].isdigit():
            self.iface_slew_rate = int(body[1])
            return None
        if body.startswith('Mg') and len(body) == 7 and body[2] in directions:
            self.iface_guiding[directions[body[2]]] = int(body[3:]) / 1000.0
            return None
        if body.startswith('Rg'):
            self.iface_guide_rate = float(body[2:])
            return '1#'

        if command == zwo.tracking_on():
            self.iface_tracking = True
            return '1#'
        if command == zwo.tracking_off():
            self.iface_tracking = False
            return '1#'
        if command in [zwo.set_tracking_rate(rate) for rate in zwo.TrackingRate]:
            return None

        if command == zwo.find_home():
            self.iface_parked = False
            self.iface_homing_target = (HOME_AZ, HOME_ALT)
            return None
        if command == zwo.park():
            self.iface_homing_target = (PARK_AZ, PARK_ALT)
            return None
        if command == zwo.unpark():
            self.iface_parked = False
            return None
        if command in [zwo.set_home_position(), zwo.clear_alignment()]:
            return '1#'
        if command == zwo.set_altaz_mode():
            self.altaz_mode = True
            return None
        if command == zwo.set_polar_mode():
            self.altaz_mode = False
            return None

        if body.startswith('St'):
            self.iface_latitude = angles.sexagesimal_to_decimal(zwo.parse_dec(body[2:]))
            return '1#'
        if body.startswith('Sg'):
            self.iface_longitude = angles.sexagesimal_to_decimal(zwo.parse_longitude(body[2:]))
            return '1#'
        if body.startswith('SC') or body.startswith('SL') or body.startswith('SG'):
            return '1#'
        if body.startswith('STa'):
            self.iface_meridian_flip = body[3:] == '1'
            return '1#'
        if body.startswith('SBu'):
            self.iface_buzzer = int(body[3:])
            return '1#'

        logger.warning('HOOTL ignoring unknown command %r', command)
        return None
