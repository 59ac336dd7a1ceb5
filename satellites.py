'''
Where satellites are, as seen from the ground.

TLEs come from CelesTrak (https://celestrak.org/NORAD/elements) or from files
downloaded from there. Positions are computed with SGP4 and converted to
topocentric azimuth, elevation and range with astropy.
'''

import logging
import numpy
import requests

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

import astropy.time
import astropy.units as units
import astropy.coordinates as coords

from sgp4.api import Satrec, SGP4_ERRORS

logger = logging.getLogger(__name__)

CELESTRAK_URL = 'https://celestrak.org/NORAD/elements/gp.php'

class SatError(Exception):
    '''If a satellite cannot be modelled for some reason, raise this exception.'''
    pass

class TleFetchError(Exception):
    '''A TLE could not be retrieved or did not make sense.'''
    pass

@dataclass(frozen=True)
class Tle:
    '''A two-line element set, plus the name line that usually comes with it.'''
    name: str
    line1: str
    line2: str

    @property
    def catalog_num(self) -> int:
        return int(self.line1[2:7])

    def satrec(self) -> Satrec:
        return Satrec.twoline2rv(self.line1, self.line2)

@dataclass(frozen=True)
class SatPosition:
    '''Topocentric position of a satellite at a moment in time.'''
    az: float
    el: float
    range_km: float
    time: astropy.time.Time

def parse_tle(text: str) -> Tle:
    '''
    Parse a single TLE, either two lines or three lines (the first being the
    name of the satellite). Raise TleFetchError if it is malformed.
    '''
    lines = [line.rstrip() for line in text.strip().splitlines() if line.strip()]
    if len(lines) == 2:
        name = 'NORAD ' + lines[0][2:7].strip()
        one, two = lines
    elif len(lines) == 3:
        name, one, two = lines
        name = name.strip()
    else:
        raise TleFetchError(f'Expected 2 or 3 lines of TLE, got {len(lines)}: {text!r}')
    if not one.startswith('1 ') or not two.startswith('2 '):
        raise TleFetchError(f'Malformed TLE: {text!r}')
    return Tle(name, one, two)

def parse_tle_file(filename: str) -> list[Tle]:
    '''
    Parse a TLE file. Each entry should be three lines
    (the first being the name of the satellite).
    '''
    with open(filename) as f:
        lines = [line for line in f if line.strip()]
    if len(lines) % 3 != 0:
        raise TleFetchError(f'{filename} does not contain whole three-line TLEs')
    return [parse_tle(''.join(lines[i:i+3])) for i in range(0, len(lines), 3)]

def observer(latitude: float, longitude: float, altitude_km: float = 0.0) -> coords.EarthLocation:
    '''Make an observer location from degrees and kilometers.'''
    return coords.EarthLocation.from_geodetic(longitude, latitude, altitude_km*units.km, 'WGS84')

def teme_to_altaz(teme_p: numpy.ndarray, time: astropy.time.Time, location: coords.EarthLocation) -> coords.AltAz:
    '''
    Convert TEME position(s) in km, shaped (3,) or (3, N) to match time, to
    topocentric AltAz. See https://docs.astropy.org/en/stable/coordinates/satellites.html
    '''
    teme = coords.TEME(coords.CartesianRepresentation(teme_p * units.km), obstime=time)
    itrs_geo = teme.transform_to(coords.ITRS(obstime=time))
    # Subtract the observer's position so astropy treats this as a nearby object.
    topo = itrs_geo.cartesian - location.get_itrs(time).cartesian
    itrs_topo = coords.ITRS(topo, obstime=time, location=location)
    return itrs_topo.transform_to(coords.AltAz(obstime=time, location=location))

class PositionSource(ABC):
    '''Computes where a satellite appears from a location on the ground.'''

    @abstractmethod
    def position_at(self, tle: Tle, location: coords.EarthLocation, time: astropy.time.Time) -> SatPosition:
        '''Raise SatError if the position can't be computed.'''

    def positions_at(self, tle: Tle, location: coords.EarthLocation, times: Sequence[astropy.time.Time]) -> list[SatPosition]:
        '''Compute many positions. Times at which the computation fails are left out.'''
        positions = []
        for time in times:
            try:
                positions.append(self.position_at(tle, location, time))
            except SatError as e:
                logger.debug('No position for %s at %s: %s', tle.name, time, e)
        return positions

class Sgp4PositionSource(PositionSource):
    '''Propagate with SGP4.'''
    def __init__(self) -> None:
        # Only the most recent TLE is kept. The pair is replaced as a whole, so
        # callers on other threads see either the old pair or the new one.
        self.cached: tuple[Tle, Satrec] | None = None

    def _satrec(self, tle: Tle) -> Satrec:
        cached = self.cached
        if cached is not None and cached[0] == tle:
            return cached[1]
        satrec = tle.satrec()
        self.cached = (tle, satrec)
        return satrec

    def position_at(self, tle: Tle, location: coords.EarthLocation, time: astropy.time.Time) -> SatPosition:
        error_code, teme_p, _ = self._satrec(tle).sgp4(time.jd1, time.jd2)
        if error_code != 0:
            raise SatError(SGP4_ERRORS[error_code])
        altaz = teme_to_altaz(numpy.array(teme_p), time, location)
        return SatPosition(
            az=float(altaz.az.to(units.deg).value),
            el=float(altaz.alt.to(units.deg).value),
            range_km=float(altaz.distance.to(units.km).value),
            time=time)

    def positions_at(self, tle: Tle, location: coords.EarthLocation, times: Sequence[astropy.time.Time]) -> list[SatPosition]:
        '''Evaluate all the times in one go, which is much faster than one at a time.'''
        if len(times) == 0:
            return []
        t = astropy.time.Time(list(times))
        errors, teme_p, _ = self._satrec(tle).sgp4_array(numpy.atleast_1d(t.jd1), numpy.atleast_1d(t.jd2))
        ok = errors == 0
        if not numpy.any(ok):
            return []
        good_times = t[ok]
        altaz = teme_to_altaz(teme_p[ok].T, good_times, location)
        az = altaz.az.to(units.deg).value
        el = altaz.alt.to(units.deg).value
        dist = altaz.distance.to(units.km).value
        return [SatPosition(az=float(az[i]), el=float(el[i]), range_km=float(dist[i]), time=good_times[i])
                for i in range(len(good_times))]

class TleSource(ABC):
    @abstractmethod
    def fetch_latest(self, norad_id: int) -> Tle:
        '''Return the newest TLE for the satellite. Raise TleFetchError on failure.'''

class CelestrakTleSource(TleSource):
    '''Download TLEs from CelesTrak.'''
    def __init__(self, url: str = CELESTRAK_URL, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def fetch_latest(self, norad_id: int) -> Tle:
        logger.info('Fetching TLE for NORAD %d from %s', norad_id, self.url)
        try:
            response = requests.get(self.url, params={'CATNR': int(norad_id), 'FORMAT': 'TLE'}, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TleFetchError(f'Unable to fetch TLE for NORAD {norad_id}: {e}') from e
        text = response.text
        if 'No GP data found' in text:
            raise TleFetchError(f'CelesTrak has no TLE for NORAD {norad_id}')
        return parse_tle(text)

class TleFileSource(TleSource):
    '''Serve TLEs out of local files, for use without network access.'''
    def __init__(self, filenames: list[str]):
        self.filenames = filenames

    def fetch_latest(self, norad_id: int) -> Tle:
        for filename in self.filenames:
            try:
                tles = parse_tle_file(filename)
            except OSError as e:
                raise TleFetchError(f'Unable to read {filename}: {e}') from e
            for tle in tles:
                if tle.catalog_num == norad_id:
                    return tle
        raise TleFetchError(f'NORAD {norad_id} not found in ' + ', '.join(self.filenames))
