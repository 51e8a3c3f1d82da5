from datetime import date, datetime, time
from types import SimpleNamespace

from biometric.reconciler import reconcile, minutes_between, DEFAULT_SETTINGS
from biometric.shifts import ShiftAssigner
from factories import schedule_stub

MON = date(2025, 11, 3)
assigner = ShiftAssigner()
day_shift = schedule_stub(time(9, 0), time(18, 0))


def at(hh, mm, ss=0, day=MON):
    return datetime.combine(day, time(hh, mm, ss))


def run(punches, schedule=day_shift):
    return reconcile(punches, schedule, MON, assigner, DEFAULT_SETTINGS)


def test_tardy_computation():
    fields = run([at(9, 15), at(18, 0)])
    assert fields["tardy_minutes"] == 15
    assert fields["undertime_minutes"] == 0
    assert fields["status"] == "tardy"
    assert fields["actual_time_in"] == at(9, 15)
    assert fields["actual_time_out"] == at(18, 0)


def test_seconds_are_truncated():
    assert run([at(9, 15, 59), at(18, 0)])["tardy_minutes"] == 15
    assert minutes_between(at(9, 0, 59), at(9, 0, 1)) == 0


def test_no_punches_is_ncns():
    fields = run([])
    assert fields["status"] == "ncns"
    assert fields["actual_time_in"] is None
    assert fields["actual_time_out"] is None


def test_single_punch_near_time_in():
    fields = run([at(9, 5)])
    assert fields["status"] == "failed_bio_out"
    assert fields["actual_time_in"] == at(9, 5)
    assert fields["actual_time_out"] is None
    assert fields["tardy_minutes"] == 5


def test_single_punch_near_time_out():
    fields = run([at(17, 40)])
    assert fields["status"] == "failed_bio_in"
    assert fields["actual_time_out"] == at(17, 40)
    assert fields["actual_time_in"] is None
    assert fields["undertime_minutes"] == 20


def test_single_punch_equidistant_counts_as_time_in():
    fields = run([at(13, 30)])
    assert fields["status"] == "failed_bio_out"


def test_intermediate_punches_are_ignored():
    fields = run([at(12, 0), at(8, 58), at(13, 0), at(18, 2)])
    assert fields["actual_time_in"] == at(8, 58)
    assert fields["actual_time_out"] == at(18, 2)
    assert fields["status"] == "on_time"
    assert fields["punch_count"] == 4


def test_tardy_and_undertime():
    fields = run([at(9, 10), at(17, 0)])
    assert fields["status"] == "tardy_undertime"
    assert fields["secondary_status"] is None
    assert fields["tardy_minutes"] == 10
    assert fields["undertime_minutes"] == 60


def test_late_past_grace_is_half_day_absence():
    fields = run([at(9, 16), at(18, 0)])
    assert fields["status"] == "half_day_absence"
    assert fields["tardy_minutes"] == 16
    assert fields["secondary_status"] is None


def test_half_day_absence_keeps_undertime_as_secondary():
    fields = run([at(9, 30), at(16, 30)])
    assert fields["status"] == "half_day_absence"
    assert fields["secondary_status"] == "undertime_more_than_hour"
    assert fields["undertime_minutes"] == 90


def test_undertime_over_an_hour():
    assert run([at(9, 0), at(17, 0)])["status"] == "undertime"
    fields = run([at(9, 0), at(16, 59)])
    assert fields["status"] == "undertime_more_than_hour"
    assert fields["undertime_minutes"] == 61


def test_overtime_threshold():
    assert run([at(9, 0), at(18, 20)])["overtime_minutes"] == 0
    assert run([at(9, 0), at(18, 45)])["overtime_minutes"] == 45


def test_double_punch_collapses_to_one():
    fields = run([at(9, 0), at(9, 4)])
    assert fields["status"] == "failed_bio_out"
    assert fields["actual_time_in"] == at(9, 0)
    assert fields["punch_count"] == 2
    assert "Double punch" in fields["warnings"][0]


def test_excessive_span_needs_review():
    fields = run([at(9, 0), datetime(2025, 11, 4, 6, 0)])
    assert fields["status"] == "pending_review"
    assert fields["secondary_status"] == "on_time"
    assert fields["warnings"]


def test_utility_shift_only_counts_hours():
    utility = schedule_stub(time(7, 0), time(7, 0), shift_type="utility_24h")
    fields = run([at(11, 0), at(20, 0)], utility)
    assert fields["status"] == "on_time"
    assert fields["tardy_minutes"] == 0

    short = run([at(11, 0), at(16, 0)], utility)
    assert short["status"] == "undertime_more_than_hour"
    assert short["undertime_minutes"] == 180

    nearly = run([at(11, 0), at(19, 30)], utility)
    assert nearly["status"] == "undertime"
    assert nearly["undertime_minutes"] == 30


def test_grace_period_separates_tardy_from_half_day():
    strict = schedule_stub(time(9, 0), time(18, 0))
    strict.grace_period_minutes = 10

    within = run([at(9, 7), at(18, 0)], strict)
    assert within["tardy_minutes"] == 7
    assert within["status"] == "tardy"

    past = run([at(9, 11), at(18, 0)], strict)
    assert past["tardy_minutes"] == 11
    assert past["status"] == "half_day_absence"


def test_cross_site_flag():
    site_shift = schedule_stub(time(9, 0), time(18, 0), site_id=1)
    punches = [
        SimpleNamespace(punched_at=at(9, 0), site_id=1),
        SimpleNamespace(punched_at=at(18, 0), site_id=2),
    ]
    assert run(punches, site_shift)["is_cross_site_bio"] is True
