'''Fakes shared by the tests.'''

import os

import astropy.time
import pytest

from typing import Any, Callable

from mount import HorizontalPosition, ZwoMount
from mount_base import Transport, TransportError, ZwoError
from satellites import PositionSource, SatError, SatPosition, Tle, TleFetchError, TleSource, parse_tle_file

DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'data')
ISS_TLE_FILE = os.path.join(DATA_DIR, 'iss.txt')

EPOCH = astropy.time.Time('2024-03-01T04:00:00', scale='utc')

class FakeTransport(Transport):
    '''
    Answers commands from a script. replies maps a command to what the mount
    says back: a string, or a list of strings delivered one per read. Commands
    not in replies get no answer, so reads time out.
    '''
    def __init__(self, replies: dict[str, Any] | None = None):
        self.replies = dict(replies or {})
        self.written: list[str] = []
        self.pending: list[bytes] = []
        self.closed = False
        self.fail_writes = False

    def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise TransportError('write failed')
        command = data.decode('ISO-8859-1')
        self.written.append(command)
        reply = self.replies.get(command, [])
        if isinstance(reply, str):
            reply = [reply]
        self.pending = [chunk.encode('ISO-8859-1') for chunk in reply]

    def read(self, timeout: float) -> bytes:
        if self.pending:
            return self.pending.pop(0)
        return b''

    def close(self) -> None:
        self.closed = True

@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()

@pytest.fixture
def mount(transport: FakeTransport) -> ZwoMount:
    m = ZwoMount('/dev/fake', read_timeout=0.01, transport_factory=lambda port, baud: transport)
    m.connect()
    return m

class FakeTimer:
    def __init__(self, delay: float, fun: Callable[..., Any], args: tuple[Any, ...]):
        self.delay = delay
        self.fun = fun
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

class InlineActor:
    '''
    Stands in for actor.Actor. call() runs immediately, cast() queues until
    run_pending(), and send_after() timers only fire when the test says so.
    '''
    def __init__(self) -> None:
        self.casts: list[tuple[Callable[..., Any], tuple[Any, ...]]] = []
        self.timers: list[FakeTimer] = []
        self.closed = False

    def call(self, fun: Callable[..., Any], *args: Any, timeout: float | None = None) -> Any:
        return fun(*args)

    def cast(self, fun: Callable[..., Any], *args: Any) -> None:
        self.casts.append((fun, args))

    def send_after(self, delay: float, fun: Callable[..., Any], *args: Any) -> FakeTimer:
        timer = FakeTimer(delay, fun, args)
        self.timers.append(timer)
        return timer

    def close(self) -> None:
        self.closed = True

    def run_pending(self) -> None:
        while self.casts:
            fun, args = self.casts.pop(0)
            fun(*args)

    def live_timers(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def fire_next(self) -> bool:
        '''Fire the oldest timer that hasn't been cancelled or fired. Return False if there is none.'''
        self.run_pending()
        for timer in self.timers:
            if not timer.cancelled:
                self.timers.remove(timer)
                timer.fun(*timer.args)
                self.run_pending()
                return True
        return False

class FakeMount:
    '''Records what the tracker asks the mount to do.'''
    def __init__(self, az: float = 180.0, alt: float = 45.0):
        self.position = HorizontalPosition(az=az, alt=alt)
        self.calls: list[tuple[Any, ...]] = []
        self.altaz_error: ZwoError | None = None
        self.stop_error: ZwoError | None = None
        # Called after each completed pulse with the stop direction, so tests can move the mount.
        self.on_stop: Callable[[Any], None] | None = None

    def get_altaz(self) -> HorizontalPosition:
        self.calls.append(('get_altaz',))
        if self.altaz_error is not None:
            raise self.altaz_error
        return self.position

    def move(self, direction: Any) -> None:
        self.calls.append(('move', direction))

    def stop_motion(self, direction: Any) -> None:
        self.calls.append(('stop_motion', direction))
        if self.on_stop is not None:
            self.on_stop(direction)

    def stop_all(self) -> None:
        self.calls.append(('stop_all',))
        if self.stop_error is not None:
            raise self.stop_error

    def set_slew_rate(self, rate: int) -> None:
        self.calls.append(('set_slew_rate', rate))

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]

class SyntheticSource(PositionSource):
    '''
    Positions from a function of the time, or a fixed az/el.
    Set error to make every computation fail.
    '''
    def __init__(self, az: float = 180.0, el: float = 45.0,
                 fun: Callable[[astropy.time.Time], tuple[float, float]] | None = None):
        self.az = az
        self.el = el
        self.fun = fun
        self.error: str | None = None

    def position_at(self, tle: Tle, location: Any, time: astropy.time.Time) -> SatPosition:
        if self.error is not None:
            raise SatError(self.error)
        if self.fun is not None:
            az, el = self.fun(time)
        else:
            az, el = self.az, self.el
        return SatPosition(az=az, el=el, range_km=1000.0, time=time)

class FakeTleSource(TleSource):
    def __init__(self) -> None:
        self.tles = parse_tle_file(ISS_TLE_FILE)
        self.fail = False
        self.fetches = 0

    def fetch_latest(self, norad_id: int) -> Tle:
        self.fetches += 1
        if self.fail:
            raise TleFetchError('no network')
        for tle in self.tles:
            if tle.catalog_num == norad_id:
                return tle
        raise TleFetchError(f'unknown satellite {norad_id}')
