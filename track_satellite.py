#!/usr/bin/env python3

'''The main application for tracking satellites with a ZWO mount.'''

import argparse
import sys
import time
import traceback

from typing import Any

import config
import satellites
import tracker
import util

from mount_base import ZwoError

def parse_args_and_config() -> tuple[argparse.Namespace, dict[str, Any]]:
    '''Parse the configuration data and command line arguments consumed by this script.'''
    parser, config_data, validators = config.get_arg_parser_and_config_data(
        description='Point a ZWO AM5 (or AM3) mount at a satellite and follow it across the sky.')

    config.add_arg_hootl(parser, config_data, validators)
    config.add_arg_location(parser, config_data, validators)
    config.add_arg_serial_port(parser, config_data, validators)
    config.add_arg_tle_files(parser, config_data, validators)
    config.add_arg_verbose(parser, config_data, validators)

    parser.add_argument(
        '--altaz', action='store_true',
        help='Switch the mount into alt-az mode before starting.')

    parser.add_argument(
        '--home', action='store_true',
        help='Send the mount to its home position before starting.')

    parser.add_argument(
        '--duration', type=float, default=None,
        help='Stop after this many seconds (default: run until interrupted)')

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
    tracker_config = tracker.TrackerConfig.from_dict(config_data['tracker'])

    mount = config.configured_mount(config_data, args)
    mount.connect()
    sat_tracker = None
    try:
        info = mount.get_info()
        print('Connected to', info.model, 'firmware', info.version)
        sys.stdout.flush()

        if args.altaz:
            mount.set_altaz_mode()

        if args.home:
            print('Homing...')
            sys.stdout.flush()
            mount.home()
            if not mount.wait_for_idle(timeout=120):
                print('Mount did not finish homing')
                sys.exit(1)

        try:
            sat_tracker = tracker.SatelliteTracker(mount, args.norad_id, location, tle_source, config=tracker_config)
        except satellites.TleFetchError as e:
            print(e)
            sys.exit(1)

        next_pass = None
        if not sat_tracker.is_visible():
            next_pass = sat_tracker.next_pass()
        if next_pass is not None:
            print('{} is not up. Next pass rises at {} (az {:.1f}), peaking at {:.1f} degrees'.format(
                sat_tracker.get_tle().name, next_pass.rise_time.iso, next_pass.rise_azimuth, next_pass.max_elevation))

        status = sat_tracker.start_tracking()
        print('Tracking', sat_tracker.get_tle().name, '-', status.value)
        sys.stdout.flush()

        start = time.monotonic()
        while args.duration is None or time.monotonic() - start < args.duration:
            time.sleep(1)
            try:
                position = sat_tracker.current_position()
                mount_position = mount.get_altaz()
                print('{:8s}  sat az {:7.2f} el {:6.2f} range {:7.0f} km   mount az {:7.2f} alt {:6.2f}'.format(
                    sat_tracker.get_status().value, position.az, position.el, position.range_km,
                    mount_position.az, mount_position.alt))
                sys.stdout.flush()
            except (ZwoError, satellites.SatError):
                traceback.print_exc()
                print('Attempting to continue...')
                sys.stdout.flush()

            if sat_tracker.get_status() == tracker.TrackerStatus.IDLE:
                print('Tracker stopped')
                break
    except KeyboardInterrupt:
        pass
    finally:
        print('Stopping the mount')
        sys.stdout.flush()
        if sat_tracker is not None:
            sat_tracker.close()
        mount.close()

if __name__ == '__main__':
    main()
