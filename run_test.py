#!/usr/bin/env python3

'''This script helps run a library of useful testcases to exercise the mount and tracker in HOOTL.'''

import subprocess
import sys

from typing import Any

LOCATION = 'griffith'
TLE_FILE = 'tests/data/iss.txt'
ISS = '25544'

def fg(cmd: list[str]) -> None:
    print(' '.join(cmd))
    try:
        subprocess.check_call(cmd)
    except subprocess.CalledProcessError:
        print('Test FAILED!')
        sys.exit(1)

def run_mypy() -> None:
    fg([
        'mypy',
        'actor.py',
        'angles.py',
        'config.py',
        'discovery.py',
        'hootl.py',
        'mount.py',
        'mount_base.py',
        'mount_tool.py',
        'passes.py',
        'run_test.py',
        'satellites.py',
        'track_satellite.py',
        'tracker.py',
        'util.py',
        'zwo.py',
    ])

def run_pytest() -> None:
    fg([sys.executable, '-m', 'pytest', 'tests'])

def mount_tool(*args: str) -> None:
    fg([sys.executable, 'mount_tool.py', '--hootl', *args])

def track_satellite(*args: str) -> None:
    fg([sys.executable, 'track_satellite.py', '--hootl', '--location', LOCATION, '--tle-file', TLE_FILE, *args, ISS])

def passes(*args: str) -> None:
    fg([sys.executable, 'passes.py', '--location', LOCATION, '--tle-file', TLE_FILE, *args, ISS])

TESTS: list[tuple[Any, ...]] = [
    (0, 'MyPy', run_mypy),

    (1, 'Unit tests', run_pytest),

    (2, 'Mount info from the simulator',
     mount_tool, 'info'),

    (3, 'Mount status from the simulator',
     mount_tool, 'status'),

    (4, 'Goto on the simulator',
     mount_tool, 'goto', '5.5', '-5.25'),

    (5, 'Pass prediction',
     passes, '--hours', '12'),

    (6, 'Satellite tracking on the simulator',
     track_satellite, '--duration', '10'),

    (7, 'Satellite tracking on the simulator, after homing in alt-az mode',
     track_satellite, '--altaz', '--home', '--duration', '10'),
]

def main() -> None:
    tests_to_run = set(map(int, sys.argv[1:]))
    for test_num, description, function, *args in TESTS:
        if tests_to_run and test_num not in tests_to_run:
            continue
        print()
        print()
        print(f'TEST {test_num}: {description}')
        function(*args)

if __name__ == '__main__':
    main()
