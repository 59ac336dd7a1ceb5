'''
Configuration comes in layers. config_default.yaml ships with the code,
config.yaml next to it holds your own settings, and any files named with
--config go on top, in order. Later layers win, key by key, all the way down
nested tables.

The add_arg_* functions add the command line options that are shared between
the scripts, with defaults taken from the merged configuration.
'''

import argparse
import copy
import logging
import os
import yaml

import discovery
import hootl
import satellites

from mount import ZwoMount
from mount_base import SerialTransport, Transport

from typing import Any, Callable

ArgValidators = list[Callable[[argparse.Namespace], None]]

def main_config_dir() -> str:
    '''Where config_default.yaml and config.yaml live: beside this module.'''
    return os.path.dirname(os.path.abspath(__file__))

def merge_config(under: dict[str, Any], over: dict[str, Any]) -> dict[str, Any]:
    '''Return a copy of under with over laid on top. Tables present in both are merged recursively.'''
    merged = copy.deepcopy(under)
    for key, value in over.items():
        below = merged.get(key)
        if isinstance(below, dict) and isinstance(value, dict):
            merged[key] = merge_config(below, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged

def load_yaml(filename: str) -> dict[str, Any]:
    '''Read one config file. An empty file is an empty table.'''
    with open(filename) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f'{filename} should contain a table of settings')
    return data

def read_config(extra_configs: list[str]) -> dict[str, Any]:
    '''Merge the defaults, config.yaml if there is one, and extra_configs, in that order.'''
    data = load_yaml(os.path.join(main_config_dir(), 'config_default.yaml'))

    user_config = os.path.join(main_config_dir(), 'config.yaml')
    layers = [user_config] if os.path.exists(user_config) else []
    for filename in layers + extra_configs:
        data = merge_config(data, load_yaml(filename))
    return data

def get_arg_parser_and_config_data(*args: Any, **kwargs: Any) -> tuple[argparse.ArgumentParser, dict[str, Any], ArgValidators]:
    '''
    Read the configuration first, so it can supply the defaults of the other
    options. That takes two passes over the command line: a quiet one that
    only looks for --config, then the real one, built here from args and kwargs
    and returned along with the config data and an empty list of validators
    for the add_arg_* functions to fill in.
    '''
    def add_arg_config(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            '--config', action='append', type=str, default=[],
            help='Read another config file on top of config_default.yaml and config.yaml. '
                 'May be repeated; later files override earlier ones.')

    early_parser = argparse.ArgumentParser(add_help=False)
    add_arg_config(early_parser)
    early_args, _ = early_parser.parse_known_args()
    config_data = read_config(early_args.config)

    parser = argparse.ArgumentParser(*args, **kwargs)
    add_arg_config(parser)

    return parser, config_data, []

def add_arg_hootl(parser: argparse.ArgumentParser, config_data: dict[str, Any], validators: ArgValidators) -> None:
    '''Add --hootl and --no-hootl to parser.'''
    default = bool(config_data['hootl'])
    parser.add_argument(
        '--hootl', dest='run_hootl', action='store_true',
        help='Talk to the built in mount simulator instead of real hardware.' +
             (' (default)' if default else ''))
    parser.add_argument(
        '--no-hootl', dest='run_hootl', action='store_false',
        help='Talk to a real mount.' +
             ('' if default else ' (default)'))
    parser.set_defaults(run_hootl=default)

def add_arg_location(parser: argparse.ArgumentParser, config_data: dict[str, Any], validators: ArgValidators) -> None:
    '''Add --location to parser.'''
    known = sorted(config_data['locations'].keys())
    parser.add_argument(
        '--location', type=str, default=config_data['location'],
        help='Observing site, one of the locations in the config: ' + ', '.join(known) +
             ' (default: ' + config_data['location'] + ')')

    def check_location(args: argparse.Namespace) -> None:
        if args.location not in config_data['locations']:
            raise ValueError(f'Unknown --location {args.location!r}, expected one of: ' + ', '.join(known))
        site = config_data['locations'][args.location]
        missing = [key for key in ['lat_degrees', 'lon_degrees', 'alt_meters'] if key not in site]
        if missing:
            raise ValueError(f'Location {args.location!r} is missing ' + ', '.join(missing))
    validators.append(check_location)

def add_arg_serial_port(parser: argparse.ArgumentParser, config_data: dict[str, Any], validators: ArgValidators) -> None:
    '''Add --serial-port and --baud-rate to parser.'''
    parser.add_argument(
        '--serial-port', type=str, default=config_data['serial_port'],
        help='Serial port the mount is connected to, or "auto" to search for it '
             '(default: ' + config_data['serial_port'] + ')')

    parser.add_argument(
        '--baud-rate', type=int, default=config_data['baud_rate'],
        help='Serial baud rate (default: {})'.format(config_data['baud_rate']))

    def check_baud_rate(args: argparse.Namespace) -> None:
        if args.baud_rate <= 0:
            raise ValueError(f'--baud-rate must be positive, not {args.baud_rate}')
    validators.append(check_baud_rate)

def add_arg_tle_files(parser: argparse.ArgumentParser, config_data: dict[str, Any], validators: ArgValidators) -> None:
    '''Add --tle-file to parser.'''
    parser.add_argument(
        '--tle-file', type=str, action='append', default=list(config_data['tle_files']),
        help='Read TLEs from this file instead of downloading them from CelesTrak. '
             'Can be given more than once. '
             '(default: ' + (', '.join(config_data['tle_files']) or 'download') + ')')

    def check_tle_files(args: argparse.Namespace) -> None:
        for filename in args.tle_file:
            if not os.path.exists(filename):
                raise ValueError(f'--tle-file {filename!r} does not exist')
    validators.append(check_tle_files)

def add_arg_verbose(parser: argparse.ArgumentParser, config_data: dict[str, Any], validators: ArgValidators) -> None:
    '''Add --verbose to parser.'''
    parser.add_argument(
        '-v', '--verbose', action='store_true',
        help='Log every command sent to the mount, and other details.')

def validate(validators: ArgValidators, args: argparse.Namespace) -> None:
    '''Run each validator over the parsed arguments. They raise ValueError on bad input.'''
    for validator in validators:
        validator(args)

def configure_logging(args: argparse.Namespace) -> None:
    '''Set up logging for a command line tool.'''
    logging.basicConfig(
        level=logging.DEBUG if getattr(args, 'verbose', False) else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

def configured_tle_source(config_data: dict[str, Any], tle_files: list[str]) -> satellites.TleSource:
    '''Read TLEs from tle_files if there are any, otherwise download them.'''
    if tle_files:
        return satellites.TleFileSource(tle_files)
    return satellites.CelestrakTleSource(config_data['tle_url'], config_data['tle_timeout'])

def configured_mount(config_data: dict[str, Any], args: argparse.Namespace) -> ZwoMount:
    '''
    Create (but don't connect) a ZwoMount as the command line asks: the HOOTL
    simulator, the given serial port, or whichever port has a mount on it.
    '''
    if args.run_hootl:
        def make_hootl(port: str, baud_rate: int) -> Transport:
            return hootl.ZwoSerialHootl(port, baud_rate, **config_data['hootl_mount'])
        return ZwoMount('hootl', read_timeout=config_data['read_timeout'], transport_factory=make_hootl)

    port = args.serial_port
    if port == 'auto':
        found = discovery.find_mount(timeout=config_data['probe_timeout'])
        if found is None:
            raise ValueError('No ZWO mount found. Use --serial-port to say where it is.')
        port = found
    return ZwoMount(port, baud_rate=args.baud_rate, read_timeout=config_data['read_timeout'],
                    transport_factory=SerialTransport)
