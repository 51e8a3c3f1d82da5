from datetime import date, datetime, time, timedelta

import pytest

from biometric.shifts import ShiftAssigner, REGULAR, GRAVEYARD, OVERNIGHT
from factories import schedule_stub

MON = date(2025, 11, 3)
TUE = date(2025, 11, 4)

assigner = ShiftAssigner(early_arrival_minutes=240, graveyard_cutoff="05:00")


def at(day, hh, mm, ss=0):
    return datetime.combine(day, time(hh, mm, ss))


def test_classify():
    assert assigner.classify(schedule_stub(time(9, 0), time(18, 0))) == REGULAR
    assert assigner.classify(schedule_stub(time(0, 30), time(9, 30))) == GRAVEYARD
    assert assigner.classify(schedule_stub(time(22, 0), time(6, 0))) == OVERNIGHT


def test_graveyard_early_arrival_and_checkout_share_a_shift_date():
    s = schedule_stub(time(0, 30), time(9, 30))
    assert assigner.assign_shift_date(at(MON, 23, 15), s) == MON
    assert assigner.assign_shift_date(at(TUE, 9, 2), s) == MON


def test_midnight_start_belongs_to_previous_day():
    s = schedule_stub(time(0, 0), time(9, 0))
    assert assigner.assign_shift_date(at(TUE, 0, 2), s) == MON
    start, end = assigner.scheduled_bounds(s, MON)
    assert start == at(TUE, 0, 0)
    assert end == at(TUE, 9, 0)


def test_regular_shift_uses_calendar_date():
    s = schedule_stub(time(9, 0), time(18, 0))
    assert assigner.assign_shift_date(at(MON, 23, 59), s) == MON
    assert assigner.assign_shift_date(at(TUE, 0, 1), s) == TUE


def test_overnight_shift():
    s = schedule_stub(time(22, 0), time(6, 0))
    assert assigner.assign_shift_date(at(MON, 21, 50), s) == MON
    assert assigner.assign_shift_date(at(TUE, 6, 5), s) == MON
    assert assigner.assign_shift_date(at(TUE, 18, 0), s) == TUE
    assert assigner.scheduled_bounds(s, MON) == (at(MON, 22, 0), at(TUE, 6, 0))


def test_non_work_day_returns_none():
    s = schedule_stub(time(9, 0), time(18, 0), work_days=["monday", "tuesday", "wednesday", "thursday", "friday"])
    saturday = date(2025, 11, 8)
    assert assigner.assign_shift_date(at(saturday, 10, 0), s) is None
    assert assigner.shift_date_for(at(saturday, 10, 0), s) == saturday


@pytest.mark.parametrize("t_in, t_out", [
    (time(9, 0), time(18, 0)),
    (time(0, 30), time(9, 30)),
    (time(22, 0), time(6, 0)),
    (time(7, 0), time(7, 0)),
])
def test_windows_tile_the_timeline(t_in, t_out):
    s = schedule_stub(t_in, t_out)
    for offset in range(3):
        d = MON + timedelta(days=offset)
        _, closes = assigner.window(s, d)
        opens_next, _ = assigner.window(s, d + timedelta(days=1))
        assert closes == opens_next


def test_early_window_clamped_to_gap():
    # 20h shift leaves a 4h gap; a 6h early window would overlap the previous shift
    wide = ShiftAssigner(early_arrival_minutes=360)
    s = schedule_stub(time(22, 0), time(18, 0))
    opens, _ = wide.window(s, TUE)
    prev_start, prev_end = wide.scheduled_bounds(s, MON)
    assert opens >= prev_end
