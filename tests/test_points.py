from datetime import date, datetime, time
from decimal import Decimal

import pytest

from models import db
from models.attendance import AttendanceRecord
from models.attendance_point import AttendancePoint
from biometric.exceptions import PointLockedError, ValidationError
from biometric.points import (
    PointPolicy, add_months, sync_point_for_record, excuse_point, unexcuse_point,
    create_manual_point, update_manual_point, delete_manual_point, point_statistics,
    gbro_roll_offs, gbro_eligible_points,
)
from factories import make_employee

WED = date(2025, 11, 5)


def make_record(employee, status, shift_date=WED, **extra):
    record = AttendanceRecord(employee_id=employee.id, shift_date=shift_date, status=status,
                              total_minutes_worked=0, **extra)
    db.session.add(record)
    db.session.flush()
    return record


def test_add_months_clamps_to_month_end():
    assert add_months(date(2025, 8, 31), 6) == date(2026, 2, 28)
    assert add_months(date(2025, 11, 5), 12) == date(2026, 11, 5)


def test_point_type_for_combined_status_takes_heavier():
    assert PointPolicy().point_type_for("tardy_undertime") == "tardy"
    heavy_undertime = PointPolicy(values={"undertime": 0.5})
    assert heavy_undertime.point_type_for("tardy_undertime") == "undertime"
    assert PointPolicy().point_type_for("failed_bio_in") is None
    assert PointPolicy().point_type_for("on_time") is None


def test_point_types_for_half_day_and_long_undertime():
    policy = PointPolicy()
    assert policy.point_type_for("half_day_absence") == "half_day_absence"
    assert policy.point_type_for("undertime_more_than_hour") == "undertime_more_than_hour"
    assert policy.value("half_day_absence") == policy.value("undertime_more_than_hour") == Decimal("0.50")

    # Long undertime outweighs tardiness
    assert policy.point_type_for("tardy_undertime", undertime_minutes=60) == "tardy"
    assert policy.point_type_for("tardy_undertime", undertime_minutes=61) == "undertime_more_than_hour"

    # Undertime carried as secondary status never adds a second point
    assert policy.point_type_for("half_day_absence", 90, "undertime_more_than_hour") == "half_day_absence"
    assert policy.point_type_for("pending_review", 0, "undertime") is None


def test_expiry_windows():
    policy = PointPolicy()
    assert policy.expires_at(WED, "whole_day_absence", False) == datetime(2026, 11, 5)
    assert policy.expires_at(WED, "whole_day_absence", True) == datetime(2026, 5, 5)
    assert policy.expires_at(WED, "tardy", False) == datetime(2026, 5, 5)


def test_sync_keeps_one_point_per_record(app):
    emp = make_employee("John", "Doe")
    record = make_record(emp, "ncns")

    point, outcome = sync_point_for_record(record)
    db.session.commit()
    assert outcome == "created"
    assert point.point_type == "whole_day_absence"
    assert float(point.points) == 1.0
    assert point.is_gbro_eligible_at(datetime(2025, 12, 1)) is False

    _, outcome = sync_point_for_record(record)
    assert outcome == "unchanged"
    assert AttendancePoint.query.count() == 1

    record.status = "tardy"
    record.tardy_minutes = 12
    point, outcome = sync_point_for_record(record)
    db.session.commit()
    assert outcome == "updated"
    assert point.point_type == "tardy"
    assert float(point.points) == 0.25
    assert AttendancePoint.query.count() == 1

    record.status = "on_time"
    _, outcome = sync_point_for_record(record)
    db.session.commit()
    assert outcome == "deleted"
    assert AttendancePoint.query.count() == 0


def test_update_preserves_excuse(app):
    emp = make_employee("John", "Doe")
    record = make_record(emp, "tardy", tardy_minutes=5)
    point, _ = sync_point_for_record(record)
    excuse_point(point, 1, "Traffic accident")
    db.session.commit()

    record.status = "undertime"
    record.undertime_minutes = 30
    point, _ = sync_point_for_record(record)
    assert point.is_excused is True
    assert point.excuse_reason == "Traffic accident"


def test_excuse_round_trip(app):
    emp = make_employee("John", "Doe")
    point, _ = sync_point_for_record(make_record(emp, "ncns"))

    with pytest.raises(ValidationError):
        excuse_point(point, 1, "   ")
    assert point.is_excused is False

    excuse_point(point, 1, "Hospitalized")
    assert (point.is_excused, point.excused_by, point.excuse_reason) == (True, 1, "Hospitalized")
    assert point.excused_at is not None

    unexcuse_point(point)
    assert point.is_excused is False
    assert point.excused_by is None
    assert point.excused_at is None
    assert point.excuse_reason is None


def test_expiry_and_gbro_are_read_time_predicates(app):
    emp = make_employee("John", "Doe")
    point, _ = sync_point_for_record(make_record(emp, "tardy", tardy_minutes=3))
    db.session.commit()

    assert point.is_expired_at(datetime(2026, 5, 4, 23, 59)) is False
    assert point.is_expired_at(datetime(2026, 5, 5)) is True
    assert point.is_gbro_eligible_at(datetime(2025, 12, 1)) is True
    assert point.is_gbro_eligible_at(datetime(2026, 6, 1)) is False


def test_statistics_buckets(app):
    emp = make_employee("John", "Doe")
    ncns, _ = sync_point_for_record(make_record(emp, "ncns", shift_date=date(2025, 11, 3)))
    sync_point_for_record(make_record(emp, "tardy", shift_date=date(2025, 11, 4), tardy_minutes=9))
    excused, _ = sync_point_for_record(make_record(emp, "undertime", shift_date=date(2025, 11, 5),
                                                   undertime_minutes=15))
    excuse_point(excused, 1, "Approved early out")
    db.session.commit()

    stats = point_statistics(emp.id, date(2025, 11, 1), date(2025, 11, 30), as_of=datetime(2025, 12, 1))
    assert stats["total_points"] == 1.5
    assert stats["active_points"] == 1.25
    assert stats["expired_points"] == 0
    assert stats["excused_points"] == 0.25
    assert stats["by_type"] == {"whole_day_absence": 1.0, "tardy": 0.25}

    # Six months on the tardy point has expired, the NCNS point has not
    later = point_statistics(emp.id, as_of=datetime(2026, 6, 1))
    assert later["active_points"] == 1.0
    assert later["expired_points"] == 0.25
    assert later["excused_points"] == 0.25


def test_manual_points(app):
    emp = make_employee("John", "Doe")
    point = create_manual_point(emp.id, WED, "tardy", actor_id=1, notes="Late from break")
    db.session.commit()
    assert point.is_manual is True
    assert point.attendance_record_id is None
    assert float(point.points) == 0.25

    update_manual_point(point, point_type="whole_day_absence", is_advised=True)
    db.session.commit()
    assert float(point.points) == 1.0
    assert point.expires_at == datetime(2026, 5, 5)

    delete_manual_point(point)
    db.session.commit()
    assert AttendancePoint.query.count() == 0


def test_system_points_are_locked(app):
    emp = make_employee("John", "Doe")
    point, _ = sync_point_for_record(make_record(emp, "ncns"))
    db.session.commit()

    with pytest.raises(PointLockedError):
        update_manual_point(point, points=0.5)
    with pytest.raises(PointLockedError):
        delete_manual_point(point)


def test_new_point_starts_unexcused_before_flush(app):
    emp = make_employee("John", "Doe")
    point, _ = sync_point_for_record(make_record(emp, "tardy", tardy_minutes=4))
    manual = create_manual_point(emp.id, WED, "undertime", actor_id=1)

    assert point.is_excused is False
    assert manual.is_excused is False


def test_half_day_point_from_record(app):
    emp = make_employee("John", "Doe")
    record = make_record(emp, "half_day_absence", tardy_minutes=40, undertime_minutes=15,
                         secondary_status="undertime")

    point, outcome = sync_point_for_record(record)
    db.session.commit()

    assert outcome == "created"
    assert point.point_type == "half_day_absence"
    assert float(point.points) == 0.5
    assert point.expires_at == datetime(2026, 5, 5)
    assert "40 minute(s)" in point.violation_details


def test_points_can_require_verification(app):
    emp = make_employee("John", "Doe")
    record = make_record(emp, "ncns")
    policy = PointPolicy(require_verification=True)

    point, outcome = sync_point_for_record(record, policy)
    assert (point, outcome) == (None, "none")

    record.admin_verified = True
    point, outcome = sync_point_for_record(record, policy)
    db.session.commit()
    assert outcome == "created"
    assert point.point_type == "whole_day_absence"


def _tardy_points(emp, *days):
    points = [create_manual_point(emp.id, d, "tardy", actor_id=1) for d in days]
    db.session.commit()
    return points


def test_gbro_rolls_off_two_newest_after_clean_streak(app):
    emp = make_employee("John", "Doe")
    first, second, third = _tardy_points(emp, date(2025, 11, 3), date(2025, 11, 4), date(2025, 11, 5))

    # Sixty days after the newest point is not yet a roll-off
    assert gbro_roll_offs([first, second, third], as_of=datetime(2026, 1, 4)) == {}

    rolled = gbro_roll_offs([first, second, third], as_of=datetime(2026, 1, 10))
    assert rolled == {second.id: date(2026, 1, 4), third.id: date(2026, 1, 4)}

    # Another clean streak takes the remaining point
    rolled = gbro_roll_offs([first, second, third], as_of=datetime(2026, 3, 10))
    assert rolled[first.id] == date(2026, 3, 5)


def test_gbro_gap_rolls_off_points_before_it(app):
    emp = make_employee("John", "Doe")
    old, recent = _tardy_points(emp, date(2025, 8, 1), date(2025, 11, 3))

    rolled = gbro_roll_offs([old, recent], as_of=datetime(2025, 11, 10))

    assert rolled == {old.id: date(2025, 9, 30)}


def test_gbro_skips_unadvised_ncns_and_excused_points(app):
    emp = make_employee("John", "Doe")
    ncns = create_manual_point(emp.id, date(2025, 8, 1), "whole_day_absence", actor_id=1)
    excused, = _tardy_points(emp, date(2025, 8, 2))
    excuse_point(excused, 1, "Doctor's note")
    db.session.commit()

    assert gbro_roll_offs([ncns, excused], as_of=datetime(2025, 12, 1)) == {}


def test_gbro_eligible_points_respect_range(app):
    emp = make_employee("John", "Doe")
    first, second, third = _tardy_points(emp, date(2025, 11, 3), date(2025, 11, 4), date(2025, 11, 5))

    assert gbro_eligible_points(emp.id, datetime(2025, 12, 1)) == [first, second, third]
    assert gbro_eligible_points(emp.id, datetime(2025, 12, 1), date(2025, 11, 4), date(2025, 11, 4)) == [second]
    # The two newest rolled off already
    assert gbro_eligible_points(emp.id, datetime(2026, 1, 10)) == [first]
