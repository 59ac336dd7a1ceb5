import pytest

from tracker import PidController, TrackerConfig

def make_pid(wrap=False):
    return PidController(80.0, 15.0, 20.0, deadband=0.05, integral_limit=5.0, output_limit=3000.0, wrap=wrap)

def test_first_sample_uses_first_dt():
    pid = make_pid()
    # P = 80*2, I = 15*(2*0.5), D = 20*(2-0)/0.5
    assert pid.control(12.0, 10.0, now=100.0, first_dt=0.5) == pytest.approx(160.0 + 15.0 + 80.0)

def test_second_sample_uses_elapsed_time():
    pid = make_pid()
    pid.control(12.0, 10.0, now=100.0, first_dt=0.5)
    output = pid.control(11.0, 10.0, now=100.25, first_dt=0.5)
    expected_integral = 2 * 0.5 + 1 * 0.25
    assert output == pytest.approx(80.0 * 1 + 15.0 * expected_integral + 20.0 * (1 - 2) / 0.25)

def test_deadband_produces_no_output_and_decays_integral():
    pid = make_pid()
    pid.i_error = 1.0
    assert pid.control(10.02, 10.0, now=1.0, first_dt=0.5) == 0.0
    assert pid.i_error == pytest.approx(0.9)
    assert pid.last_error == pytest.approx(0.02)

def test_integral_is_clamped():
    pid = make_pid()
    for i in range(20):
        pid.control(20.0, 10.0, now=float(i), first_dt=1.0)
    assert pid.i_error == pytest.approx(5.0)
    for i in range(20, 60):
        pid.control(0.0, 10.0, now=float(i), first_dt=1.0)
    assert pid.i_error == pytest.approx(-5.0)

def test_output_is_clamped():
    pid = make_pid()
    assert pid.control(100.0, 0.0, now=0.0, first_dt=0.5) == 3000.0
    pid.reset()
    assert pid.control(-100.0, 0.0, now=0.0, first_dt=0.5) == -3000.0

def test_no_derivative_when_time_stands_still():
    pid = make_pid()
    pid.control(12.0, 10.0, now=5.0, first_dt=0.5)
    output = pid.control(13.0, 10.0, now=5.0, first_dt=0.5)
    assert output == pytest.approx(80.0 * 3 + 15.0 * 1.0)

def test_azimuth_error_takes_the_short_way():
    pid = make_pid(wrap=True)
    assert pid.error(350.0, 10.0) == pytest.approx(-20.0)
    assert pid.error(10.0, 350.0) == pytest.approx(20.0)
    assert pid.control(350.0, 10.0, now=0.0, first_dt=0.5) < 0

def test_reset():
    pid = make_pid()
    pid.control(12.0, 10.0, now=1.0, first_dt=0.5)
    pid.reset()
    assert pid.i_error == 0.0
    assert pid.last_error == 0.0
    assert pid.last_time is None

def test_config_from_dict():
    config = TrackerConfig.from_dict({'kp': 50.0, 'update_interval_ms': 250})
    assert config.kp == 50.0
    assert config.update_interval_ms == 250
    assert config.ki == 15.0

def test_config_rejects_unknown_keys():
    with pytest.raises(ValueError):
        TrackerConfig.from_dict({'kq': 1.0})

def test_config_rejects_bad_direction():
    with pytest.raises(ValueError):
        TrackerConfig.from_dict({'azimuth_increase_direction': 'north'})
