'''
Encoding of commands for, and decoding of responses from, ZWO AM-series mounts.

The mounts speak a dialect of the Meade LX200 serial protocol. A command is ':'
followed by a mnemonic, optional fixed-width zero-padded fields, and '#'. A
response is some text terminated by '#'.

Everything in here is stateless. The command builders check their arguments
and raise ValueError rather than produce a malformed command. The response
parsers strip the trailing '#' and raise ParseError (or UnknownCodeError) on
anything they don't recognize.
'''

import datetime
import enum
import re

from dataclasses import dataclass

import angles

from angles import Sexagesimal
from mount_base import ZwoError

class ProtocolError(ZwoError):
    '''The mount sent something we could not make sense of.'''
    pass

class ParseError(ProtocolError):
    '''A response did not match the expected format.'''
    def __init__(self, kind: str, response: str):
        super().__init__(f'Unable to parse {kind} response {response!r}')
        self.kind = kind
        self.response = response

class UnknownCodeError(ProtocolError):
    '''A response was well formed but carried a code we don't know.'''
    def __init__(self, kind: str, code: str):
        super().__init__(f'Unknown {kind} code {code!r}')
        self.kind = kind
        self.code = code

class CommandFailed(ZwoError):
    '''The mount acknowledged a command with a failure code.'''
    pass

class Direction(enum.Enum):
    NORTH = 'n'
    SOUTH = 's'
    EAST  = 'e'
    WEST  = 'w'

class TrackingRate(enum.Enum):
    SIDEREAL = 'Q'
    LUNAR    = 'L'
    SOLAR    = 'S'

class MountType(enum.Enum):
    EQUATORIAL = 'equatorial'
    ALTAZ      = 'altaz'
    UNKNOWN    = 'unknown'

class GotoResult(enum.Enum):
    OK                  = 'ok'
    BELOW_HORIZON       = 'below horizon'
    BELOW_MIN_ELEVATION = 'below minimum elevation'
    UNREACHABLE         = 'unreachable'
    NOT_ALIGNED         = 'not aligned'
    OUTSIDE_LIMITS      = 'outside limits'
    PIER_SIDE_LIMIT     = 'pier side limit'

GOTO_CODES = {
    '0':  GotoResult.OK,
    '1':  GotoResult.BELOW_HORIZON,
    '2':  GotoResult.BELOW_MIN_ELEVATION,
    '4':  GotoResult.UNREACHABLE,
    '5':  GotoResult.NOT_ALIGNED,
    '6':  GotoResult.OUTSIDE_LIMITS,
    '7':  GotoResult.PIER_SIDE_LIMIT,
    'e7': GotoResult.PIER_SIDE_LIMIT,
}

class GotoError(ZwoError):
    '''The mount refused a goto.'''
    def __init__(self, result: GotoResult):
        super().__init__(f'Goto rejected: {result.value}')
        self.result = result

@dataclass(frozen=True)
class MountStatus:
    '''Decoded form of the :GU# status flags.'''
    tracking: bool
    slewing: bool
    at_home: bool
    parked: bool
    mount_type: MountType

# Getters

def get_version() -> str:
    return ':GV#'

def get_mount_model() -> str:
    return ':GVP#'

def get_ra() -> str:
    return ':GR#'

def get_dec() -> str:
    return ':GD#'

def get_date() -> str:
    return ':GC#'

def get_time() -> str:
    return ':GL#'

def get_timezone() -> str:
    return ':GG#'

def get_sidereal_time() -> str:
    return ':GS#'

def get_latitude() -> str:
    return ':Gt#'

def get_longitude() -> str:
    return ':Gg#'

def get_meridian_settings() -> str:
    return ':GTa#'

def get_guide_rate() -> str:
    return ':Ggr#'

def get_tracking_status() -> str:
    return ':GAT#'

def get_status() -> str:
    return ':GU#'

def get_pier_side() -> str:
    return ':Gm#'

def get_buzzer_volume() -> str:
    return ':GBu#'

def get_altitude() -> str:
    return ':GA#'

def get_azimuth() -> str:
    return ':GZ#'

# Motion

def set_target_ra(hours: float) -> str:
    '''Set the goto/sync target right ascension. Seconds are truncated to whole seconds.'''
    s = angles.to_sexagesimal(hours, is_hours=True)
    return ':Sr{:02d}:{:02d}:{:02d}#'.format(s.whole, s.minutes, int(s.seconds))

def set_target_dec(degrees: float) -> str:
    '''Set the goto/sync target declination. Seconds are truncated to whole seconds.'''
    s = angles.to_sexagesimal(angles.clamp_degrees(degrees))
    sign = '-' if s.negative else '+'
    return ':Sd{}{:02d}*{:02d}:{:02d}#'.format(sign, abs(s.whole), s.minutes, int(s.seconds))

def goto() -> str:
    return ':MS#'

def sync() -> str:
    return ':CM#'

def stop_all() -> str:
    return ':Q#'

def move(direction: Direction) -> str:
    return ':M{}#'.format(direction.value)

def stop_motion(direction: Direction) -> str:
    return ':Q{}#'.format(direction.value)

def set_slew_rate(rate: int) -> str:
    '''Select one of the ten slew-rate presets, 0 (slowest) to 9 (fastest).'''
    if not isinstance(rate, int) or not 0 <= rate <= 9:
        raise ValueError(f'Slew rate must be an integer from 0 to 9, not {rate!r}')
    return ':R{}#'.format(rate)

def guide_pulse(direction: Direction, duration_ms: int) -> str:
    '''Move in direction at the guide rate for duration_ms milliseconds (0 to 9999).'''
    if not isinstance(duration_ms, int) or not 0 <= duration_ms <= 9999:
        raise ValueError(f'Guide pulse duration must be an integer from 0 to 9999 ms, not {duration_ms!r}')
    return ':Mg{}{:04d}#'.format(direction.value, duration_ms)

def set_guide_rate(rate: float) -> str:
    '''Set the guide rate as a fraction of sidereal, greater than 0 and at most 1.0.'''
    if not 0.0 < rate <= 1.0:
        raise ValueError(f'Guide rate must be in (0, 1.0], not {rate!r}')
    return ':Rg{:.1f}#'.format(rate)

# Tracking

def tracking_on() -> str:
    return ':Te#'

def tracking_off() -> str:
    return ':Td#'

def set_tracking_rate(rate: TrackingRate) -> str:
    return ':T{}#'.format(rate.value)

# Home, park and alignment

def find_home() -> str:
    return ':hC#'

def park() -> str:
    return ':hP#'

def unpark() -> str:
    return ':hR#'

def set_home_position() -> str:
    return ':SOa#'

def clear_alignment() -> str:
    return ':NSC#'

# Mount mode

def set_altaz_mode() -> str:
    return ':AA#'

def set_polar_mode() -> str:
    return ':AP#'

# Site, date and time

def set_date(date: datetime.date) -> str:
    return ':SC{:02d}/{:02d}/{:02d}#'.format(date.month, date.day, date.year % 100)

def set_time(t: datetime.time) -> str:
    return ':SL{:02d}:{:02d}:{:02d}#'.format(t.hour, t.minute, t.second)

def set_timezone(offset_hours: int) -> str:
    '''Set the UTC offset, from -12 to 12 hours.'''
    if not isinstance(offset_hours, int) or not -12 <= offset_hours <= 12:
        raise ValueError(f'UTC offset must be an integer from -12 to 12, not {offset_hours!r}')
    sign = '+' if offset_hours >= 0 else '-'
    return ':SG{}{:02d}#'.format(sign, abs(offset_hours))

def set_latitude(degrees: float) -> str:
    '''Set the site latitude, -90 to 90 degrees, to the nearest arcminute.'''
    if not -90.0 <= degrees <= 90.0:
        raise ValueError(f'Latitude must be in [-90, 90], not {degrees!r}')
    s = angles.to_sexagesimal(degrees)
    sign = '-' if s.negative else '+'
    return ':St{}{:02d}*{:02d}#'.format(sign, abs(s.whole), s.minutes)

def set_longitude(degrees: float) -> str:
    '''
    Set the site longitude to the nearest arcminute. West longitudes may be
    given as negative numbers; they are sent as 0 to 360 degrees.
    '''
    if not -180.0 <= degrees <= 360.0:
        raise ValueError(f'Longitude must be in [-180, 360], not {degrees!r}')
    if degrees < 0:
        degrees += 360.0
    s = angles.to_sexagesimal(degrees)
    return ':Sg{:03d}*{:02d}#'.format(s.whole % 360, s.minutes)

def set_meridian_action(flip: bool) -> str:
    '''0 stops at the meridian, 1 performs a meridian flip.'''
    return ':STa{}#'.format(1 if flip else 0)

def set_buzzer_volume(volume: int) -> str:
    '''0 is off, 1 is low, 2 is high.'''
    if not isinstance(volume, int) or not 0 <= volume <= 2:
        raise ValueError(f'Buzzer volume must be 0, 1 or 2, not {volume!r}')
    return ':SBu{}#'.format(volume)

# Response parsing

def strip_terminator(response: str) -> str:
    '''Remove the trailing '#' (and any surrounding whitespace) from a response.'''
    response = response.strip()
    if response.endswith('#'):
        response = response[:-1]
    return response

RA_FULL_RE = re.compile(r'^(\d{2}):(\d{2}):(\d{2})$')
RA_SHORT_RE = re.compile(r'^(\d{2}):(\d{2})\.(\d)$')
DEC_FULL_RE = re.compile(r'^([+-]?)(\d{2})[*°](\d{2}):(\d{2})$')
DEC_SHORT_RE = re.compile(r'^([+-]?)(\d{2})[*°](\d{2})$')
AZ_RE = re.compile(r'^(\d{2,3})[*°](\d{2}):(\d{2})$')
LON_RE = re.compile(r'^([+-]?)(\d{2,3})[*°](\d{2})(?::(\d{2}))?$')

def parse_ra(response: str) -> Sexagesimal:
    '''Parse HH:MM:SS or HH:MM.T, where T is tenths of a minute.'''
    text = strip_terminator(response)
    m = RA_FULL_RE.match(text)
    if m:
        return Sexagesimal(int(m.group(1)), int(m.group(2)), float(m.group(3)))
    m = RA_SHORT_RE.match(text)
    if m:
        return Sexagesimal(int(m.group(1)), int(m.group(2)), float(int(m.group(3)) * 6))
    raise ParseError('RA', response)

def parse_dec(response: str) -> Sexagesimal:
    '''Parse sDD*MM:SS or sDD*MM. The separator may also be a degree sign.'''
    text = strip_terminator(response)
    m = DEC_FULL_RE.match(text)
    if m:
        sign, d, mins, secs = m.groups()
    else:
        m = DEC_SHORT_RE.match(text)
        if not m:
            raise ParseError('DEC', response)
        sign, d, mins = m.groups()
        secs = '0'
    negative = sign == '-'
    whole = int(d)
    return Sexagesimal(-whole if negative else whole, int(mins), float(secs), negative)

def parse_altitude(response: str) -> Sexagesimal:
    '''Altitude uses the same format as declination.'''
    try:
        return parse_dec(response)
    except ParseError:
        raise ParseError('altitude', response)

def parse_azimuth(response: str) -> Sexagesimal:
    '''Parse DDD*MM:SS.'''
    m = AZ_RE.match(strip_terminator(response))
    if not m:
        raise ParseError('azimuth', response)
    return Sexagesimal(int(m.group(1)), int(m.group(2)), float(m.group(3)))

def parse_longitude(response: str) -> Sexagesimal:
    '''Parse sDDD*MM or sDDD*MM:SS.'''
    m = LON_RE.match(strip_terminator(response))
    if not m:
        raise ParseError('longitude', response)
    sign, d, mins, secs = m.groups()
    negative = sign == '-'
    whole = int(d)
    return Sexagesimal(-whole if negative else whole, int(mins), float(secs or 0), negative)

def parse_tracking_status(response: str) -> bool:
    text = strip_terminator(response)
    if text == '1':
        return True
    if text == '0':
        return False
    raise ParseError('tracking status', response)

def parse_goto_response(response: str) -> GotoResult:
    '''Map a goto reply to a GotoResult. Unlisted codes raise UnknownCodeError.'''
    code = strip_terminator(response)
    try:
        return GOTO_CODES[code]
    except KeyError:
        raise UnknownCodeError('goto', code)

def parse_ack(response: str) -> bool:
    '''Parse a generic 1 (success) or 0 (failure) acknowledgement.'''
    code = strip_terminator(response)
    if code == '1':
        return True
    if code == '0':
        return False
    raise UnknownCodeError('acknowledgement', code)

def parse_status(response: str) -> MountStatus:
    '''
    Decode the :GU# flag string. 'n' means not tracking, 'N' means not
    slewing, 'H' means at home, 'P' means parked, 'G' means equatorial and
    'Z' means alt-az.
    '''
    flags = strip_terminator(response)
    if 'G' in flags:
        mount_type = MountType.EQUATORIAL
    elif 'Z' in flags:
        mount_type = MountType.ALTAZ
    else:
        mount_type = MountType.UNKNOWN
    return MountStatus(
        tracking='n' not in flags,
        slewing='N' not in flags,
        at_home='H' in flags,
        parked='P' in flags,
        mount_type=mount_type)
