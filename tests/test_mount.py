import datetime

import pytest

import zwo

from mount import ZwoMount
from mount_base import MountConnectionError, NotConnectedError, ReadTimeout, TransportError
from zwo import Direction, GotoResult, MountType

from conftest import FakeTransport

def test_connect_failure_leaves_session_disconnected():
    def fail(port, baud):
        raise MountConnectionError('no such port')
    m = ZwoMount('/dev/missing', transport_factory=fail)
    with pytest.raises(MountConnectionError):
        m.connect()
    assert not m.connected
    with pytest.raises(NotConnectedError):
        m.get_status()

def test_connect_passes_port_and_baud_rate():
    opened = []
    def factory(port, baud):
        opened.append((port, baud))
        return FakeTransport()
    m = ZwoMount('/dev/ttyACM0', baud_rate=115200, transport_factory=factory)
    m.connect()
    m.connect()
    assert opened == [('/dev/ttyACM0', 115200)]
    assert m.connected

def test_disconnect_is_idempotent(mount, transport):
    mount.disconnect()
    mount.disconnect()
    assert transport.closed
    assert not mount.connected

def test_close_stops_then_disconnects(mount, transport):
    mount.close()
    assert transport.written == [':Q#']
    assert transport.closed

def test_close_swallows_stop_failure(mount, transport):
    transport.fail_writes = True
    mount.close()
    assert transport.closed
    assert not mount.connected

def test_context_manager_stops_on_exit(transport):
    with ZwoMount('/dev/fake', transport_factory=lambda port, baud: transport) as m:
        assert m.connected
    assert transport.written == [':Q#']
    assert transport.closed

def test_response_accumulates_across_reads(mount, transport):
    transport.replies[':GVP#'] = ['ZWO ', 'AM', '5#']
    transport.replies[':GV#'] = '1.2.5#'
    info = mount.get_info()
    assert info.model == 'ZWO AM5'
    assert info.version == '1.2.5'

def test_read_timeout_with_nothing_received(mount):
    with pytest.raises(ReadTimeout):
        mount.get_status()

def test_partial_response_is_returned_on_timeout(mount, transport):
    transport.replies[':GVP#'] = 'ZWO AM5'
    assert mount.send_command(':GVP#') == 'ZWO AM5'

def test_write_failure_is_raised(mount, transport):
    transport.fail_writes = True
    with pytest.raises(TransportError):
        mount.move(Direction.NORTH)

def test_get_position(mount, transport):
    transport.replies[':GR#'] = '12:30:00#'
    transport.replies[':GD#'] = '-23*30:00#'
    ra, dec = mount.get_position()
    assert ra == pytest.approx(12.5)
    assert dec == pytest.approx(-23.5)

def test_get_position_fails_if_either_query_fails(mount, transport):
    transport.replies[':GR#'] = '12:30:00#'
    transport.replies[':GD#'] = 'nonsense#'
    with pytest.raises(zwo.ParseError):
        mount.get_position()

def test_get_altaz(mount, transport):
    transport.replies[':GA#'] = '-00*30:00#'
    transport.replies[':GZ#'] = '270*15:00#'
    position = mount.get_altaz()
    assert position.alt == pytest.approx(-0.5)
    assert position.az == pytest.approx(270.25)

def test_goto_sends_target_then_goto(mount, transport):
    transport.replies[':Sr12:30:00#'] = '1'
    transport.replies[':Sd-23*30:00#'] = '1'
    transport.replies[':MS#'] = '0'
    mount.goto(12.5, -23.5)
    assert transport.written == [':Sr12:30:00#', ':Sd-23*30:00#', ':MS#']
    assert mount.slewing

def test_goto_normalizes_inputs(mount, transport):
    transport.replies[':Sr01:00:00#'] = '1'
    transport.replies[':Sd+90*00:00#'] = '1'
    transport.replies[':MS#'] = '0#'
    mount.goto(25.0, 95.0)
    assert mount.slewing

def test_goto_rejected(mount, transport):
    transport.replies[':Sr06:00:00#'] = '1'
    transport.replies[':Sd-80*00:00#'] = '1'
    transport.replies[':MS#'] = '1#'
    with pytest.raises(zwo.GotoError) as excinfo:
        mount.goto(6.0, -80.0)
    assert excinfo.value.result == GotoResult.BELOW_HORIZON
    assert not mount.slewing

def test_goto_target_rejected(mount, transport):
    transport.replies[':Sr06:00:00#'] = '0'
    with pytest.raises(zwo.CommandFailed):
        mount.goto(6.0, 10.0)
    assert transport.written == [':Sr06:00:00#']

def test_unknown_goto_reply_clears_slewing(mount, transport):
    transport.replies[':Sr06:00:00#'] = '1'
    transport.replies[':Sd+10*00:00#'] = '1'
    transport.replies[':MS#'] = '0'
    mount.goto(6.0, 10.0)
    assert mount.slewing
    transport.replies[':MS#'] = '9#'
    with pytest.raises(zwo.UnknownCodeError):
        mount.goto(6.0, 10.0)
    assert not mount.slewing

def test_rejected_target_clears_slewing(mount, transport):
    mount.slewing = True
    transport.replies[':Sr06:00:00#'] = '0'
    with pytest.raises(zwo.CommandFailed):
        mount.goto(6.0, 10.0)
    assert not mount.slewing

def test_sync_returns_reply(mount, transport):
    transport.replies[':Sr06:00:00#'] = '1'
    transport.replies[':Sd+10*00:00#'] = '1'
    transport.replies[':CM#'] = 'N/A#'
    assert mount.sync(6.0, 10.0) == 'N/A'

def test_motion_commands_do_not_wait_for_reply(mount, transport):
    mount.move(Direction.EAST)
    mount.stop_motion(Direction.EAST)
    mount.set_slew_rate(7)
    mount.guide_pulse(Direction.SOUTH, 250)
    mount.set_tracking_rate(zwo.TrackingRate.LUNAR)
    assert transport.written == [':Me#', ':Qe#', ':R7#', ':Mgs0250#', ':TL#']

def test_stop_all_clears_slewing(mount, transport):
    mount.slewing = True
    mount.stop_all()
    assert not mount.slewing
    assert transport.written == [':Q#']

def test_home_and_park_tolerate_silence(mount, transport):
    mount.home()
    assert mount.slewing
    mount.slewing = False
    mount.park()
    assert mount.slewing
    assert transport.written == [':hC#', ':hP#']

def test_set_tracking(mount, transport):
    transport.replies[':Te#'] = '1#'
    transport.replies[':Td#'] = '1#'
    mount.set_tracking(True)
    assert mount.tracking
    mount.set_tracking(False)
    assert not mount.tracking

def test_get_tracking(mount, transport):
    transport.replies[':GAT#'] = '1#'
    assert mount.get_tracking()
    assert mount.tracking

def test_set_site(mount, transport):
    transport.replies[':St+34*07#'] = '1'
    transport.replies[':Sg241*41#'] = '1'
    mount.set_site(34.118434, -118.300393)
    assert transport.written == [':St+34*07#', ':Sg241*41#']

def test_set_site_rejected(mount, transport):
    transport.replies[':St+34*07#'] = '0'
    with pytest.raises(zwo.CommandFailed):
        mount.set_site(34.118434, -118.300393)

def test_set_site_validates_before_sending(mount, transport):
    with pytest.raises(ValueError):
        mount.set_site(95.0, 0.0)
    assert transport.written == []

def test_set_date_time(mount, transport):
    for command in [':SG-08#', ':SC03/09/24#', ':SL21:05:07#']:
        transport.replies[command] = '1#'
    mount.set_date_time(datetime.datetime(2024, 3, 9, 21, 5, 7), -8)
    assert transport.written == [':SG-08#', ':SC03/09/24#', ':SL21:05:07#']

def test_get_status(mount, transport):
    transport.replies[':GU#'] = 'NHZ#'
    status = mount.get_status()
    assert status.tracking
    assert not status.slewing
    assert status.at_home
    assert status.mount_type == MountType.ALTAZ

def test_wait_for_idle(mount, transport):
    transport.replies[':GU#'] = 'nNZ#'
    mount.slewing = True
    assert mount.wait_for_idle(timeout=1.0, poll_interval=0.0)
    assert not mount.slewing

def test_wait_for_idle_times_out(mount, transport):
    transport.replies[':GU#'] = 'nZ#'
    assert not mount.wait_for_idle(timeout=0.0, poll_interval=0.0)

def test_buzzer(mount, transport):
    transport.replies[':SBu2#'] = '1#'
    transport.replies[':GBu#'] = '2#'
    mount.set_buzzer(2)
    assert mount.get_buzzer() == 2
    with pytest.raises(ValueError):
        mount.set_buzzer(5)

def test_mode_switch_tolerates_silence(mount, transport):
    mount.set_altaz_mode()
    mount.set_polar_mode()
    assert transport.written == [':AA#', ':AP#']

def test_raw_command(mount, transport):
    transport.replies[':GVP#'] = 'ZWO AM5#'
    assert mount.send_command(':GVP#') == 'ZWO AM5'
