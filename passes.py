#!/usr/bin/env python3

'''Predict when a satellite will pass overhead.'''

import argparse
import logging
import sys

from dataclasses import dataclass
from typing import Any

import astropy.time
import astropy.units as units
import astropy.coordinates as coords

import config
import satellites
import util

from satellites import PositionSource, SatPosition, Tle

logger = logging.getLogger(__name__)

DEFAULT_HOURS = 24.0
DEFAULT_STEP_SECONDS = 30.0
DEFAULT_MIN_ELEVATION = 10.0

@dataclass(frozen=True)
class Pass:
    '''
    One pass of a satellite above the minimum elevation.

    Rise and set are the first and last samples above the minimum elevation,
    so they are only as precise as the sampling step.
    '''
    rise_time: astropy.time.Time
    set_time: astropy.time.Time
    max_elevation: float
    max_elevation_time: astropy.time.Time
    rise_azimuth: float
    set_azimuth: float
    duration_seconds: float

def make_pass(run: list[SatPosition]) -> Pass:
    '''Summarize a run of consecutive visible samples.'''
    peak = max(run, key=lambda s: s.el)
    return Pass(
        rise_time=run[0].time,
        set_time=run[-1].time,
        max_elevation=peak.el,
        max_elevation_time=peak.time,
        rise_azimuth=run[0].az,
        set_azimuth=run[-1].az,
        duration_seconds=float((run[-1].time - run[0].time).to_value('sec')))

def group_passes(samples: list[SatPosition], min_elevation: float) -> list[Pass]:
    '''Group a time-ordered list of samples into runs at or above min_elevation.'''
    passes = []
    run: list[SatPosition] = []
    for sample in samples:
        if sample.el >= min_elevation:
            run.append(sample)
        elif run:
            passes.append(make_pass(run))
            run = []
    if run:
        passes.append(make_pass(run))
    return passes

def predict_passes(source: PositionSource,
                   tle: Tle,
                   location: coords.EarthLocation,
                   start: astropy.time.Time | None = None,
                   hours: float = DEFAULT_HOURS,
                   step_seconds: float = DEFAULT_STEP_SECONDS,
                   min_elevation: float = DEFAULT_MIN_ELEVATION) -> list[Pass]:
    '''
    Sample the satellite's position every step_seconds for hours, starting at
    start (default now), and return the passes found, in order.
    '''
    if step_seconds <= 0:
        raise ValueError(f'step_seconds must be positive, not {step_seconds!r}')
    if start is None:
        start = util.get_current_time()
    count = int(hours * 3600 / step_seconds) + 1
    times = [start + (i * step_seconds) * units.s for i in range(count)]
    samples = source.positions_at(tle, location, times)
    passes = group_passes(samples, min_elevation)
    logger.debug('Found %d passes of %s in the next %g hours', len(passes), tle.name, hours)
    return passes

def parse_args_and_config() -> tuple[argparse.Namespace, dict[str, Any]]:
    '''Parse the configuration data and command line arguments consumed by this script.'''
    parser, config_data, validators = config.get_arg_parser_and_config_data(
        description='List the upcoming passes of a satellite.')

    config.add_arg_location(parser, config_data, validators)
    config.add_arg_tle_files(parser, config_data, validators)
    config.add_arg_verbose(parser, config_data, validators)

    parser.add_argument(
        '--hours', type=float, default=DEFAULT_HOURS,
        help=f'How far ahead to look, in hours (default: {DEFAULT_HOURS})')

    parser.add_argument(
        '--min-elevation', type=float, default=config_data['tracker']['min_elevation'],
        help='Only count the satellite as visible above this elevation, in degrees '
             '(default: {})'.format(config_data['tracker']['min_elevation']))

    parser.add_argument(
        'norad_id', type=int,
        help='NORAD catalog number of the satellite (25544 is the ISS)')

    args = parser.parse_args()
    config.validate(validators, args)
    return args, config_data

def main() -> None:
    args, config_data = parse_args_and_config()
    config.configure_logging(args)

    location = util.configured_observer(config_data, args.location)
    tle_source = config.configured_tle_source(config_data, args.tle_file)

    try:
        tle = tle_source.fetch_latest(args.norad_id)
    except satellites.TleFetchError as e:
        print(e)
        sys.exit(1)

    print(tle.name)
    found = predict_passes(satellites.Sgp4PositionSource(), tle, location,
                           hours=args.hours, min_elevation=args.min_elevation)
    if not found:
        print('No passes above {:.0f} degrees in the next {:g} hours'.format(args.min_elevation, args.hours))
    for p in found:
        print('{}  rise az {:5.1f}  peak el {:4.1f} at {}  set az {:5.1f}  {:4.0f} s'.format(
            p.rise_time.iso, p.rise_azimuth, p.max_elevation, p.max_elevation_time.iso,
            p.set_azimuth, p.duration_seconds))
    sys.stdout.flush()

if __name__ == '__main__':
    main()
