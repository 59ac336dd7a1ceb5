'''Small helpers shared by the mount, tracker and command line tools.'''

import time

from typing import TypeVar, Any

import astropy.coordinates as coords
import astropy.time

import satellites

T = TypeVar('T')
Number = TypeVar('Number', bound = int | float)

def unwrap(x: T | None) -> T:
    '''Narrow an Optional that the caller knows has been set.'''
    assert x is not None
    return x

def clamp(value: Number, lower: Number, upper: Number) -> Number:
    '''Limit value to [lower, upper].'''
    return min(max(value, lower), upper)

def configured_observer(config_data: dict[str, Any], name: str) -> coords.EarthLocation:
    '''The named entry of the locations table in the config, as an EarthLocation.'''
    site = config_data['locations'][name]
    return satellites.observer(site['lat_degrees'], site['lon_degrees'], site['alt_meters'] / 1000)

def get_current_time() -> astropy.time.Time:
    '''Now, in UTC.'''
    return astropy.time.Time(time.time(), format='unix', scale='utc')
