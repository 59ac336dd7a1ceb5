#!/usr/bin/env python3

'''Send individual commands to a ZWO mount, for setup and troubleshooting.'''

import argparse
import sys
import time

from typing import Any

import angles
import config
import discovery

from mount import ZwoMount
from mount_base import ZwoError
from zwo import Direction, TrackingRate

def parse_args_and_config() -> tuple[argparse.Namespace, dict[str, Any]]:
    '''Parse the configuration data and command line arguments consumed by this script.'''
    parser, config_data, validators = config.get_arg_parser_and_config_data(
        description='Send individual commands to a ZWO AM5 (or AM3) mount.')

    config.add_arg_hootl(parser, config_data, validators)
    config.add_arg_serial_port(parser, config_data, validators)
    config.add_arg_verbose(parser, config_data, validators)

    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('ports', help='List serial ports, and which have ZWO mounts on them.')
    commands.add_parser('info', help='Print the model and firmware version.')
    commands.add_parser('status', help='Print the status flags.')
    commands.add_parser('position', help='Print RA and Dec.')
    commands.add_parser('altaz', help='Print azimuth and altitude.')
    commands.add_parser('stop', help='Stop all motion.')
    commands.add_parser('home', help='Go to the home position.')
    commands.add_parser('park', help='Go to the park position.')
    commands.add_parser('unpark', help='Leave the park position.')

    for name in ['goto', 'sync']:
        p = commands.add_parser(name, help=f'{name.capitalize()} to RA (hours) and Dec (degrees).')
        p.add_argument('ra', type=float)
        p.add_argument('dec', type=float)

    p = commands.add_parser('move', help='Move in a direction for some seconds at a slew rate.')
    p.add_argument('direction', choices=[d.name.lower() for d in Direction])
    p.add_argument('seconds', type=float)
    p.add_argument('--rate', type=int, default=9, help='Slew rate preset, 0-9 (default: 9)')

    p = commands.add_parser('guide', help='Send a guide pulse.')
    p.add_argument('direction', choices=[d.name.lower() for d in Direction])
    p.add_argument('milliseconds', type=int)

    p = commands.add_parser('tracking', help='Turn tracking on at a rate, or off.')
    p.add_argument('rate', choices=['off'] + [r.name.lower() for r in TrackingRate])

    p = commands.add_parser('site', help='Set the site latitude and longitude (degrees, east positive).')
    p.add_argument('latitude', type=float)
    p.add_argument('longitude', type=float)

    p = commands.add_parser('buzzer', help='Set the buzzer volume.')
    p.add_argument('volume', type=int, choices=[0, 1, 2])

    p = commands.add_parser('mode', help='Switch between alt-az and equatorial mode.')
    p.add_argument('mode', choices=['altaz', 'eq'])

    p = commands.add_parser('raw', help='Send a raw command, such as :GVP#, and print the response.')
    p.add_argument('raw_command')

    args = parser.parse_args()
    config.validate(validators, args)
    return args, config_data

def run_command(mount: ZwoMount, args: argparse.Namespace) -> None:
    '''Carry out the subcommand.'''
    if args.command == 'info':
        info = mount.get_info()
        print(info.model, info.version)
    elif args.command == 'status':
        status = mount.get_status()
        print('tracking:', status.tracking)
        print('slewing: ', status.slewing)
        print('at home: ', status.at_home)
        print('parked:  ', status.parked)
        print('type:    ', status.mount_type.value)
    elif args.command == 'position':
        ra, dec = mount.get_position_sexagesimal()
        print('RA  {:02d}h{:02d}m{:04.1f}s'.format(ra.whole, ra.minutes, ra.seconds))
        print('Dec {}{:02d}d{:02d}m{:04.1f}s'.format('-' if dec.negative else '+', abs(dec.whole), dec.minutes, dec.seconds))
    elif args.command == 'altaz':
        position = mount.get_altaz()
        print('Az {:.4f}  Alt {:.4f}'.format(position.az, position.alt))
    elif args.command == 'stop':
        mount.stop_all()
    elif args.command == 'home':
        mount.home()
    elif args.command == 'park':
        mount.park()
    elif args.command == 'unpark':
        mount.unpark()
    elif args.command == 'goto':
        if not angles.valid_coordinates(args.ra, args.dec):
            raise ValueError('RA must be in [0, 24) and Dec in [-90, 90]')
        mount.goto(args.ra, args.dec)
    elif args.command == 'sync':
        if not angles.valid_coordinates(args.ra, args.dec):
            raise ValueError('RA must be in [0, 24) and Dec in [-90, 90]')
        print(mount.sync(args.ra, args.dec))
    elif args.command == 'move':
        direction = Direction[args.direction.upper()]
        mount.set_slew_rate(args.rate)
        mount.move(direction)
        try:
            time.sleep(args.seconds)
        finally:
            mount.stop_motion(direction)
    elif args.command == 'guide':
        mount.guide_pulse(Direction[args.direction.upper()], args.milliseconds)
    elif args.command == 'tracking':
        if args.rate == 'off':
            mount.set_tracking(False)
        else:
            mount.set_tracking_rate(TrackingRate[args.rate.upper()])
            mount.set_tracking(True)
    elif args.command == 'site':
        mount.set_site(args.latitude, args.longitude)
    elif args.command == 'buzzer':
        mount.set_buzzer(args.volume)
    elif args.command == 'mode':
        if args.mode == 'altaz':
            mount.set_altaz_mode()
        else:
            mount.set_polar_mode()
    elif args.command == 'raw':
        print(mount.send_command(args.raw_command))

def list_ports() -> None:
    for port in discovery.list_ports():
        usb = discovery.is_usb_serial(port)
        info = discovery.probe_port(port.device) if usb else None
        print('{:30s} {:40s} {}'.format(
            port.device, port.description or '',
            '{} {}'.format(info.model, info.version) if info else ('USB' if usb else '')))

def main() -> None:
    args, config_data = parse_args_and_config()
    config.configure_logging(args)

    if args.command == 'ports':
        list_ports()
        return

    try:
        mount = config.configured_mount(config_data, args)
    except ValueError as e:
        print('Error:', e)
        sys.exit(1)

    try:
        mount.connect()
        run_command(mount, args)
    except (ZwoError, ValueError) as e:
        print('Error:', e)
        sys.exit(1)
    finally:
        # Stopping on the way out would cancel the goto we just started.
        mount.disconnect()
    sys.stdout.flush()

if __name__ == '__main__':
    main()
