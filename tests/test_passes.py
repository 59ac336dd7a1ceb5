import astropy.units as units
import pytest

import passes

from satellites import SatPosition

from conftest import EPOCH, FakeTleSource, SyntheticSource

def samples(elevations, step_seconds=30):
    return [SatPosition(az=float(i), el=el, range_km=1000.0, time=EPOCH + i * step_seconds * units.s)
            for i, el in enumerate(elevations)]

def test_group_passes():
    found = passes.group_passes(samples([0, 5, 12, 40, 20, 9, 0, 11, 15, 3]), 10.0)
    assert len(found) == 2

    first, second = found
    assert first.max_elevation == 40
    assert first.rise_azimuth == 2.0
    assert first.set_azimuth == 4.0
    assert first.duration_seconds == pytest.approx(60.0)
    assert (first.max_elevation_time - EPOCH).to_value('sec') == pytest.approx(90.0)

    assert second.max_elevation == 15
    assert second.rise_azimuth == 7.0
    assert second.set_azimuth == 8.0

def test_pass_in_progress_at_end():
    found = passes.group_passes(samples([0, 20, 30]), 10.0)
    assert len(found) == 1
    assert found[0].set_azimuth == 2.0

def test_min_elevation_is_inclusive():
    found = passes.group_passes(samples([10.0]), 10.0)
    assert len(found) == 1
    assert found[0].duration_seconds == 0.0

def test_no_passes():
    assert passes.group_passes(samples([0, 5, 9.9]), 10.0) == []
    assert passes.group_passes([], 10.0) == []

def test_predict_passes():
    def fun(time):
        seconds = (time - EPOCH).to_value('sec')
        return 90.0, 45.0 - abs(seconds - 1800) / 30
    tle = FakeTleSource().fetch_latest(25544)
    found = passes.predict_passes(SyntheticSource(fun=fun), tle, None, start=EPOCH, hours=1.0, step_seconds=60)
    assert len(found) == 1
    p = found[0]
    assert p.max_elevation == pytest.approx(45.0)
    assert (p.max_elevation_time - EPOCH).to_value('sec') == pytest.approx(1800.0)
    # Above 10 degrees from 750 s to 2850 s, sampled every minute.
    assert (p.rise_time - EPOCH).to_value('sec') == pytest.approx(780.0)
    assert (p.set_time - EPOCH).to_value('sec') == pytest.approx(2820.0)

def test_predict_passes_skips_failed_samples():
    source = SyntheticSource(el=50.0)
    source.error = 'decayed'
    tle = FakeTleSource().fetch_latest(25544)
    assert passes.predict_passes(source, tle, None, start=EPOCH, hours=0.5) == []

def test_predict_passes_rejects_bad_step():
    tle = FakeTleSource().fetch_latest(25544)
    with pytest.raises(ValueError):
        passes.predict_passes(SyntheticSource(), tle, None, start=EPOCH, step_seconds=0)
