'''
The SatelliteTracker uses a PidController per axis to generate motion pulses
for the mount. You tell the SatelliteTracker which satellite to follow, and it
will drive the mount to that satellite and keep it there.

The tracker goes through three states. It starts IDLE. When tracking starts,
if the satellite is up it goes to SLEWING, and runs a bounded, coarse,
proportional-only convergence loop (the "goto"). Then it goes to TRACKING,
where a timer fires every update interval and the PID controllers nudge the
mount. If the mount ever reports an altitude below the horizon, everything
stops and the tracker goes back to IDLE.
'''

import enum
import logging
import math
import time

from dataclasses import dataclass, fields
from typing import Any, Callable

import astropy.time
import astropy.coordinates as coords

import angles
import passes
import util

from actor import Actor
from mount import ZwoMount, HorizontalPosition
from mount_base import ZwoError
from satellites import PositionSource, SatError, SatPosition, Sgp4PositionSource, Tle, TleSource
from zwo import Direction

logger = logging.getLogger(__name__)

OPPOSITE = {
    Direction.NORTH: Direction.SOUTH,
    Direction.SOUTH: Direction.NORTH,
    Direction.EAST:  Direction.WEST,
    Direction.WEST:  Direction.EAST,
}

class TrackerStatus(enum.Enum):
    IDLE     = 'idle'
    SLEWING  = 'slewing'
    TRACKING = 'tracking'

@dataclass
class TrackerConfig:
    '''
    Every tunable of the tracker. Angles are in degrees, pulses in milliseconds.
    The PID gains are in ms per degree, ms per degree-second, and ms per
    degree-per-second.
    '''
    update_interval_ms: int = 500
    min_elevation: float = 10.0

    kp: float = 80.0
    ki: float = 15.0
    kd: float = 20.0
    deadband: float = 0.05
    integral_limit: float = 5.0
    max_pulse_ms: float = 3000.0
    min_pulse_ms: int = 30

    # Downward pulses are not sent below this altitude, to keep the
    # telescope from hitting the pier.
    low_altitude_limit: float = 5.0

    goto_tick_ms: int = 100
    goto_max_iterations: int = 60
    goto_threshold: float = 1.0
    coarse_gain: float = 100.0
    coarse_far_cap_ms: float = 3000.0
    coarse_near_cap_ms: float = 800.0
    coarse_far_threshold: float = 10.0
    coarse_el_min_error: float = 0.3

    # Slew rate preset selected when tracking starts, or None to leave it alone.
    slew_rate: int | None = 9

    # Which way the mount moves for increasing azimuth and increasing elevation.
    azimuth_increase_direction: str = 'west'
    elevation_increase_direction: str = 'north'

    pass_horizon_hours: float = 24.0

    def validate(self) -> None:
        if self.azimuth_increase_direction not in ['east', 'west']:
            raise ValueError('azimuth_increase_direction must be east or west, not ' +
                             repr(self.azimuth_increase_direction))
        if self.elevation_increase_direction not in ['north', 'south']:
            raise ValueError('elevation_increase_direction must be north or south, not ' +
                             repr(self.elevation_increase_direction))
        if self.update_interval_ms <= 0 or self.goto_tick_ms <= 0:
            raise ValueError('Timer intervals must be positive')
        if self.goto_max_iterations < 1:
            raise ValueError('goto_max_iterations must be at least 1')

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'TrackerConfig':
        '''Build from a config mapping. Unknown keys are an error.'''
        known = {f.name for f in fields(cls)}
        unknown = set(data.keys()) - known
        if unknown:
            raise ValueError('Unknown tracker settings: ' + ', '.join(sorted(unknown)))
        config = cls(**data)
        config.validate()
        return config

class PidController:
    '''Does exactly what it says on the tin, with a deadband and anti-windup.'''
    def __init__(self, kp: float, ki: float, kd: float,
                 deadband: float, integral_limit: float, output_limit: float,
                 wrap: bool = False):
        '''
        Create a new PidController with the specified gains.
        If wrap is True, errors are angles wrapped into (-180, 180].
        '''
        self.deadband = deadband
        self.integral_limit = integral_limit
        self.output_limit = output_limit
        self.wrap = wrap
        self.set_gains(kp, ki, kd)

    def set_gains(self, kp: float, ki: float, kd: float) -> None:
        '''Set the gains and reset the controller.'''
        self.kp = kp
        self.ki = ki
        self.kd = kd

        self.reset()

    def reset(self) -> None:
        '''Reset the controller.'''
        self.i_error = 0.0
        self.last_error = 0.0
        self.last_time: float | None = None

    def error(self, desired: float, actual: float) -> float:
        error = desired - actual
        if self.wrap:
            error = angles.wrap_degrees(error)
        return error

    def control(self, desired: float, actual: float, now: float, first_dt: float) -> float:
        '''
        Given a desired position and an actual position for the current
        control step, return a command output that drives the actual
        position towards the desired position.

        now is a monotonic timestamp in seconds. On the first step after a
        reset, first_dt is used as the time since the previous step.
        '''
        error = self.error(desired, actual)
        dt = first_dt if self.last_time is None else now - self.last_time
        self.last_time = now

        if abs(error) < self.deadband:
            self.i_error *= 0.9
            self.last_error = error
            return 0.0

        self.i_error = util.clamp(self.i_error + error * dt, -self.integral_limit, self.integral_limit)

        output = self.kp * error
        output += self.ki * self.i_error
        if dt > 0:
            output += self.kd * (error - self.last_error) / dt

        self.last_error = error

        return util.clamp(output, -self.output_limit, self.output_limit)

class SatelliteTracker:
    '''
    Point a mount at a satellite and keep it there.

    All of the tracker's state belongs to its Actor, and is only touched by
    handlers running on the actor's worker. Public methods hand work to the
    actor and wait for the answer.
    '''
    def __init__(self,
                 mount: ZwoMount,
                 norad_id: int,
                 location: coords.EarthLocation,
                 tle_source: TleSource,
                 position_source: PositionSource | None = None,
                 config: TrackerConfig | None = None,
                 actor: Any = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep,
                 now: Callable[[], astropy.time.Time] = util.get_current_time):
        '''
        Fetch the satellite's TLE from tle_source. If that fails the
        TleFetchError is raised and no tracker is created.

        actor, clock, sleep and now are replaceable for testing.
        '''
        self.config = config if config is not None else TrackerConfig()
        self.config.validate()

        self.mount = mount
        self.norad_id = norad_id
        self.location = location
        self.tle_source = tle_source
        self.position_source = position_source if position_source is not None else Sgp4PositionSource()
        self.clock = clock
        self.sleep = sleep
        self.now = now

        self.tle: Tle = tle_source.fetch_latest(norad_id)
        logger.info('Tracking target is %s (NORAD %d)', self.tle.name, norad_id)

        self.az_increase = Direction[self.config.azimuth_increase_direction.upper()]
        self.el_increase = Direction[self.config.elevation_increase_direction.upper()]

        output_limit = self.config.max_pulse_ms
        self.az_pid = PidController(self.config.kp, self.config.ki, self.config.kd,
                                    self.config.deadband, self.config.integral_limit, output_limit, wrap=True)
        self.el_pid = PidController(self.config.kp, self.config.ki, self.config.kd,
                                    self.config.deadband, self.config.integral_limit, output_limit)

        self.status = TrackerStatus.IDLE
        self.timer: Any = None
        # Bumped whenever the tracker starts or stops, so that ticks scheduled
        # before then can recognize themselves as stale.
        self.generation = 0
        self.goto_iteration = 0
        self.goto_target: SatPosition | None = None
        self.last_position: SatPosition | None = None
        self.closed = False

        self.actor = actor if actor is not None else Actor(f'tracker-{norad_id}')

    # Public interface

    def start_tracking(self) -> TrackerStatus:
        '''Begin following the satellite. Returns the new status (slewing or tracking).'''
        return self.actor.call(self._start)

    def stop_tracking(self) -> None:
        '''Stop following the satellite and stop the mount.'''
        self.actor.call(self._stop)

    def get_status(self) -> TrackerStatus:
        return self.actor.call(lambda: self.status)

    def wait_until_tracking(self, timeout: float, poll_interval: float = 0.2) -> bool:
        '''Wait for the goto to finish. Return False on timeout or if the tracker went idle.'''
        deadline = time.monotonic() + timeout
        while True:
            status = self.get_status()
            if status == TrackerStatus.TRACKING:
                return True
            if status == TrackerStatus.IDLE or time.monotonic() >= deadline:
                return False
            time.sleep(poll_interval)

    def get_tle(self) -> Tle:
        return self.actor.call(lambda: self.tle)

    def current_position(self) -> SatPosition:
        '''Where the satellite is now. Raises SatError.'''
        return self.actor.call(self._compute_position)

    def is_visible(self) -> bool:
        '''Is the satellite above the minimum elevation right now?'''
        try:
            return self.current_position().el >= self.config.min_elevation
        except SatError as e:
            logger.warning('Unable to compute position of %s: %s', self.tle.name, e)
            return False

    def position_at(self, time: astropy.time.Time) -> SatPosition:
        '''Where the satellite is at the given time. Raises SatError.'''
        return self.position_source.position_at(self.get_tle(), self.location, time)

    def predict_passes(self, hours: float | None = None, step_seconds: float = passes.DEFAULT_STEP_SECONDS) -> list[passes.Pass]:
        '''
        Passes above the minimum elevation, starting now. This runs on the
        caller's thread so that a long prediction doesn't hold up tracking.
        '''
        return passes.predict_passes(
            self.position_source, self.get_tle(), self.location,
            start=self.now(),
            hours=self.config.pass_horizon_hours if hours is None else hours,
            step_seconds=step_seconds,
            min_elevation=self.config.min_elevation)

    def next_pass(self) -> passes.Pass | None:
        '''The next pass in the prediction horizon, or None if there isn't one.'''
        found = self.predict_passes()
        return found[0] if found else None

    def refresh_tle(self) -> Tle:
        '''Fetch a fresh TLE. On failure the old one is kept and TleFetchError is raised.'''
        tle = self.tle_source.fetch_latest(self.norad_id)

        def replace() -> None:
            self.tle = tle
        self.actor.call(replace)
        logger.info('Refreshed TLE for %s', tle.name)
        return tle

    def close(self) -> None:
        '''Cancel everything, stop the mount (best effort), and stop the worker.'''
        if self.closed:
            return
        self.closed = True
        try:
            self.actor.call(self._shutdown)
        finally:
            self.actor.close()

    def __enter__(self) -> 'SatelliteTracker':
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # Handlers. These run on the actor.

    def _compute_position(self) -> SatPosition:
        position = self.position_source.position_at(self.tle, self.location, self.now())
        self.last_position = position
        return position

    def _visible(self, position: SatPosition) -> bool:
        return position.el >= self.config.min_elevation

    def _cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def _reset(self, status: TrackerStatus) -> None:
        self._cancel_timer()
        self.generation += 1
        self.az_pid.reset()
        self.el_pid.reset()
        self.goto_target = None
        self.goto_iteration = 0
        self.status = status

    def _start(self) -> TrackerStatus:
        self._reset(TrackerStatus.IDLE)

        if self.config.slew_rate is not None:
            self.mount.set_slew_rate(self.config.slew_rate)

        try:
            position: SatPosition | None = self._compute_position()
        except SatError as e:
            logger.warning('Unable to compute position of %s: %s', self.tle.name, e)
            position = None

        if position is not None and self._visible(position):
            logger.info('%s is up at az %.2f el %.2f, slewing', self.tle.name, position.az, position.el)
            self.status = TrackerStatus.SLEWING
            self.goto_target = position
            self.goto_iteration = 1
            self.actor.cast(self._goto_step, self.generation, 1)
        else:
            logger.info('%s is not up, waiting for it', self.tle.name)
            self._begin_tracking()
        return self.status

    def _stop(self) -> None:
        self._reset(TrackerStatus.IDLE)
        logger.info('Stopped tracking %s', self.tle.name)
        self.mount.stop_all()

    def _shutdown(self) -> None:
        self._reset(TrackerStatus.IDLE)
        try:
            self.mount.stop_all()
        except ZwoError as e:
            logger.warning('Unable to stop the mount while shutting down: %s', e)

    def _abort(self, altitude: float) -> None:
        '''The mount is below the horizon. Stop everything and don't try again.'''
        logger.error('Mount altitude %.2f is below the horizon, stopping', altitude)
        try:
            self.mount.stop_all()
        except ZwoError as e:
            logger.error('Unable to stop the mount: %s', e)
        self._reset(TrackerStatus.IDLE)

    def _begin_tracking(self) -> None:
        self.status = TrackerStatus.TRACKING
        self.goto_target = None
        self._arm_update_timer()

    def _arm_update_timer(self) -> None:
        self.timer = self.actor.send_after(self.config.update_interval_ms / 1000, self._update, self.generation)

    def _goto_step(self, generation: int, iteration: int) -> None:
        '''One iteration of the coarse convergence loop.'''
        if (generation != self.generation or self.status != TrackerStatus.SLEWING
                or iteration != self.goto_iteration):
            logger.debug('Discarding stale goto step %d', iteration)
            return
        self.timer = None

        converged = False
        try:
            try:
                self.goto_target = self._compute_position()
            except SatError as e:
                logger.warning('Unable to compute position of %s: %s', self.tle.name, e)
            target = util.unwrap(self.goto_target)

            current = self.mount.get_altaz()
            if current.alt < 0:
                self._abort(current.alt)
                return

            az_error = angles.wrap_degrees(target.az - current.az)
            el_error = target.el - current.alt
            logger.debug('Goto step %d: az error %.3f, el error %.3f', iteration, az_error, el_error)

            if abs(az_error) < self.config.goto_threshold and abs(el_error) < self.config.goto_threshold:
                converged = True
            elif iteration < self.config.goto_max_iterations:
                self._apply_pulses(*self._coarse_pulses(az_error, el_error, current.alt))
        except ZwoError as e:
            logger.warning('Goto step %d failed: %s', iteration, e)

        if converged:
            logger.info('Goto converged after %d iteration(s), tracking', iteration)
            self._begin_tracking()
        elif iteration >= self.config.goto_max_iterations:
            logger.warning('Goto did not converge in %d iterations, tracking anyway', iteration)
            self._begin_tracking()
        else:
            self.goto_iteration = iteration + 1
            self.timer = self.actor.send_after(self.config.goto_tick_ms / 1000, self._goto_step,
                                               self.generation, iteration + 1)

    def _update(self, generation: int) -> None:
        '''Periodic tracking update.'''
        if generation != self.generation or self.status != TrackerStatus.TRACKING:
            logger.debug('Discarding stale update')
            return
        self.timer = None

        try:
            current = self.mount.get_altaz()
        except ZwoError as e:
            logger.warning('Unable to read mount position: %s', e)
            self._arm_update_timer()
            return

        if current.alt < 0:
            self._abort(current.alt)
            return

        try:
            position = self._compute_position()
            if self._visible(position):
                self._apply_pulses(*self._pid_pulses(position, current))
        except SatError as e:
            logger.warning('Unable to compute position of %s: %s', self.tle.name, e)
        except ZwoError as e:
            logger.warning('Tracking correction failed: %s', e)

        self._arm_update_timer()

    # Pulse computation

    def _pid_pulses(self, target: SatPosition, current: HorizontalPosition) -> tuple[int, int]:
        '''Signed pulse lengths in ms for (azimuth, elevation); positive increases the angle.'''
        now = self.clock()
        first_dt = self.config.update_interval_ms / 1000
        az_output = self.az_pid.control(target.az, current.az, now, first_dt)
        el_output = self.el_pid.control(target.el, current.alt, now, first_dt)
        return self._gate(int(round(az_output)), int(round(el_output)), current.alt)

    def _coarse_pulses(self, az_error: float, el_error: float, altitude: float) -> tuple[int, int]:
        '''Proportional-only pulses for the goto phase.'''
        c = self.config
        az_cap = c.coarse_far_cap_ms if abs(az_error) > c.coarse_far_threshold else c.coarse_near_cap_ms
        az_ms = math.copysign(min(abs(az_error) * c.coarse_gain, az_cap), az_error)
        if abs(el_error) < c.coarse_el_min_error:
            el_ms = 0.0
        else:
            el_ms = math.copysign(min(abs(el_error) * c.coarse_gain, c.coarse_near_cap_ms), el_error)
        return self._gate(int(round(az_ms)), int(round(el_ms)), altitude)

    def _gate(self, az_ms: int, el_ms: int, altitude: float) -> tuple[int, int]:
        '''Drop pulses too short to matter, and downward pulses near the horizon.'''
        if abs(az_ms) < self.config.min_pulse_ms:
            az_ms = 0
        if abs(el_ms) < self.config.min_pulse_ms:
            el_ms = 0
        if el_ms < 0 and altitude < self.config.low_altitude_limit:
            logger.debug('Suppressing downward pulse at altitude %.2f', altitude)
            el_ms = 0
        return az_ms, el_ms

    def _apply_pulses(self, az_ms: int, el_ms: int) -> None:
        '''
        Move both axes at once. The shorter pulse is stopped when it runs out,
        and the longer one keeps going until it runs out too.
        '''
        pulses = []
        if az_ms != 0:
            pulses.append((abs(az_ms), self.az_increase if az_ms > 0 else OPPOSITE[self.az_increase]))
        if el_ms != 0:
            pulses.append((abs(el_ms), self.el_increase if el_ms > 0 else OPPOSITE[self.el_increase]))
        if not pulses:
            return
        pulses.sort(key=lambda pulse: pulse[0])

        try:
            for _, direction in pulses:
                self.mount.move(direction)
            elapsed = 0
            for duration, direction in pulses:
                if duration > elapsed:
                    self.sleep((duration - elapsed) / 1000)
                    elapsed = duration
                self.mount.stop_motion(direction)
        except ZwoError:
            # Don't leave an axis running.
            try:
                self.mount.stop_all()
            except ZwoError as e:
                logger.error('Unable to stop the mount: %s', e)
            raise
