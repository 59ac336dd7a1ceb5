'''
Conversions between decimal angles and the sexagesimal forms the mount speaks.

Right ascension is in decimal hours, everything else is in decimal degrees.
'''

import math

from typing import NamedTuple

from util import clamp

class Sexagesimal(NamedTuple):
    '''
    An angle split into whole units, minutes and seconds.

    whole carries the sign of the angle, except when it is zero, which is
    why negative is recorded separately (-0.5 degrees is 0*30'00" with
    negative set).
    '''
    whole: int
    minutes: int
    seconds: float
    negative: bool = False

def normalize_hours(hours: float) -> float:
    '''Wrap a right ascension into [0, 24).'''
    hours = math.fmod(hours, 24.0)
    if hours < 0:
        hours += 24.0
    # fmod of a tiny negative number plus 24 can round up to exactly 24.
    if hours >= 24.0:
        hours = 0.0
    return hours

def clamp_degrees(degrees: float) -> float:
    '''Clamp a declination or altitude into [-90, 90].'''
    return clamp(degrees, -90.0, 90.0)

def wrap_degrees(degrees: float) -> float:
    '''Wrap an angle difference into (-180, 180].'''
    degrees = math.fmod(degrees, 360.0)
    if degrees > 180.0:
        degrees -= 360.0
    elif degrees <= -180.0:
        degrees += 360.0
    return degrees

def valid_coordinates(ra: float, dec: float) -> bool:
    '''True if ra is in [0, 24) hours and dec is in [-90, 90] degrees.'''
    return 0.0 <= ra < 24.0 and -90.0 <= dec <= 90.0

def to_sexagesimal(value: float, is_hours: bool = False) -> Sexagesimal:
    '''
    Split a decimal angle into whole units, minutes and seconds.

    Seconds are rounded to one decimal place. If rounding pushes the seconds
    up to 60, they carry into the minutes (and the minutes into the whole
    units), so seconds always end up in [0, 60).
    '''
    if is_hours:
        value = normalize_hours(value)

    negative = value < 0
    magnitude = abs(value)

    whole = int(magnitude)
    remainder = (magnitude - whole) * 60.0
    minutes = int(remainder)
    seconds = round((remainder - minutes) * 60.0, 1)

    if seconds >= 60.0:
        seconds -= 60.0
        minutes += 1
    if minutes >= 60:
        minutes -= 60
        whole += 1
    if is_hours and whole >= 24:
        whole -= 24

    return Sexagesimal(-whole if negative else whole, minutes, seconds, negative)

def from_sexagesimal(whole: int, minutes: int, seconds: float, negative: bool | None = None) -> float:
    '''
    Join whole units, minutes and seconds into a decimal angle.

    The sign comes from whole, or from negative when it is given (which is
    the only way to express angles between -1 and 0 degrees).
    '''
    if negative is None:
        negative = whole < 0
    magnitude = abs(whole) + minutes / 60.0 + seconds / 3600.0
    return -magnitude if negative else magnitude

def sexagesimal_to_decimal(value: Sexagesimal) -> float:
    '''Convenience wrapper around from_sexagesimal() for a Sexagesimal.'''
    return from_sexagesimal(value.whole, value.minutes, value.seconds, value.negative)
