"""
Attendance reconciliation.

``reconcile`` is pure: punches + schedule in, record fields out. The
``upsert_record`` step persists them under the (employee_id, shift_date)
unique key and never touches admin-verified rows.
"""
from datetime import datetime, date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from config import Config
from models import db
from models.attendance import AttendanceRecord, STATUSES, REVIEW_STATUSES
from biometric.exceptions import ValidationError
from biometric.shifts import ShiftAssigner

SETTING_KEYS = (
    "DOUBLE_PUNCH_MINUTES",
    "OVERTIME_THRESHOLD_MINUTES",
    "MAX_SHIFT_MINUTES",
    "UTILITY_REQUIRED_MINUTES",
    "UNDERTIME_HOUR_MINUTES",
    "LUNCH_DEDUCTION_MINUTES",
    "LUNCH_DEDUCTION_AFTER_MINUTES",
)

DEFAULT_SETTINGS = {key: getattr(Config, key) for key in SETTING_KEYS}

RECORD_FIELDS = (
    "employee_schedule_id", "scheduled_time_in", "scheduled_time_out",
    "actual_time_in", "actual_time_out", "status", "secondary_status",
    "tardy_minutes", "undertime_minutes", "overtime_minutes",
    "punch_count", "is_cross_site_bio", "warnings",
)


def settings_from_config(config) -> Dict[str, Any]:
    return {k: config.get(k, v) for k, v in DEFAULT_SETTINGS.items()}


def _floor_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def minutes_between(later: datetime, earlier: datetime) -> int:
    """Whole minutes from earlier to later, seconds truncated, never negative."""
    diff = _floor_minute(later) - _floor_minute(earlier)
    return max(0, int(diff.total_seconds() // 60))


def compute_minutes(actual_in: Optional[datetime], actual_out: Optional[datetime],
                    sched_in: datetime, sched_out: datetime, settings: Dict[str, Any]) -> Dict[str, int]:
    tardy = minutes_between(actual_in, sched_in) if actual_in else 0
    undertime = minutes_between(sched_out, actual_out) if actual_out else 0
    overtime = minutes_between(actual_out, sched_out) if actual_out else 0
    if overtime <= settings["OVERTIME_THRESHOLD_MINUTES"]:
        overtime = 0
    return {"tardy_minutes": tardy, "undertime_minutes": undertime, "overtime_minutes": overtime}


def undertime_status(undertime: int, hour_minutes: int = 60) -> Optional[str]:
    if undertime <= 0:
        return None
    return "undertime_more_than_hour" if undertime > hour_minutes else "undertime"


def status_from_minutes(tardy: int, undertime: int, grace: int = 15,
                        hour_minutes: int = 60) -> Tuple[str, Optional[str]]:
    """
    Returns (status, secondary_status).

    Lateness past the grace period is a half-day absence, lateness within it
    is tardy. Undertime is kept as the secondary status of a half-day
    absence and folds into ``tardy_undertime`` otherwise.
    """
    early_out = undertime_status(undertime, hour_minutes)
    if tardy > grace:
        return "half_day_absence", early_out
    if tardy > 0:
        return ("tardy_undertime" if early_out else "tardy"), None
    return early_out or "on_time", None


def _punch_time(punch) -> datetime:
    return punch if isinstance(punch, datetime) else punch.punched_at


def reconcile(punches: List, schedule, shift_date: date, assigner: ShiftAssigner,
              settings: Dict[str, Any] = None) -> Dict[str, Any]:
    """
    Derive attendance fields for one (employee, shift-date).

    Rules, first match wins:
      0 punches   -> ncns
      1 punch     -> failed_bio_out when nearer scheduled in (ties too),
                     otherwise failed_bio_in
      2+ punches  -> first is time-in, last is time-out, status from minutes
    """
    settings = settings or DEFAULT_SETTINGS
    sched_in, sched_out = assigner.scheduled_bounds(schedule, shift_date)
    times = sorted(_punch_time(p) for p in punches)
    warnings = []

    fields = {
        "employee_schedule_id": schedule.id,
        "scheduled_time_in": sched_in,
        "scheduled_time_out": sched_out,
        "actual_time_in": None,
        "actual_time_out": None,
        "secondary_status": None,
        "tardy_minutes": 0,
        "undertime_minutes": 0,
        "overtime_minutes": 0,
        "punch_count": len(times),
        "is_cross_site_bio": _is_cross_site(punches, schedule),
    }

    if len(times) > 1 and minutes_between(times[-1], times[0]) < settings["DOUBLE_PUNCH_MINUTES"]:
        warnings.append(
            f"Double punch: {len(times)} scans within {settings['DOUBLE_PUNCH_MINUTES']} minutes treated as one"
        )
        times = times[:1]

    if not times:
        fields["status"] = "ncns"

    elif len(times) == 1:
        t = times[0]
        if abs(t - sched_in) <= abs(t - sched_out):
            fields["actual_time_in"] = t
            fields["tardy_minutes"] = minutes_between(t, sched_in)
            fields["status"] = "failed_bio_out"
        else:
            fields["actual_time_out"] = t
            fields["undertime_minutes"] = minutes_between(sched_out, t)
            fields["status"] = "failed_bio_in"

    elif schedule.shift_type == "utility_24h":
        fields.update(_reconcile_utility(times[0], times[-1], settings))

    else:
        t_in, t_out = times[0], times[-1]
        fields["actual_time_in"] = t_in
        fields["actual_time_out"] = t_out
        fields.update(compute_minutes(t_in, t_out, sched_in, sched_out, settings))
        fields["status"], fields["secondary_status"] = status_from_minutes(
            fields["tardy_minutes"], fields["undertime_minutes"],
            schedule.grace_period_minutes or 0, settings["UNDERTIME_HOUR_MINUTES"],
        )

        span = minutes_between(t_out, t_in)
        if span > settings["MAX_SHIFT_MINUTES"]:
            warnings.append(f"Shift span of {span} minutes exceeds {settings['MAX_SHIFT_MINUTES']}; needs review")
            fields["secondary_status"] = fields["status"]
            fields["status"] = "pending_review"

    fields["warnings"] = warnings or None
    return fields


def _reconcile_utility(t_in: datetime, t_out: datetime, settings: Dict[str, Any]) -> Dict[str, Any]:
    # 24h utility staff: only worked time matters
    worked = minutes_between(t_out, t_in)
    if worked > settings["LUNCH_DEDUCTION_AFTER_MINUTES"]:
        worked -= settings["LUNCH_DEDUCTION_MINUTES"]
    undertime = max(0, settings["UTILITY_REQUIRED_MINUTES"] - worked)
    return {
        "actual_time_in": t_in,
        "actual_time_out": t_out,
        "undertime_minutes": undertime,
        "status": undertime_status(undertime, settings["UNDERTIME_HOUR_MINUTES"]) or "on_time",
    }


def _is_cross_site(punches: List, schedule) -> bool:
    if schedule.site_id is None:
        return False
    sites = {getattr(p, "site_id", None) for p in punches}
    sites.discard(None)
    return any(s != schedule.site_id for s in sites)


# -----------------------------
# Persistence
# -----------------------------
def _assign(row: AttendanceRecord, fields: Dict[str, Any], settings: Dict[str, Any]) -> bool:
    before = {k: getattr(row, k) for k in RECORD_FIELDS}
    before["total_minutes_worked"] = row.total_minutes_worked

    for key in RECORD_FIELDS:
        if key in fields:
            setattr(row, key, fields[key])
    row.recalc_total_minutes(settings["LUNCH_DEDUCTION_MINUTES"], settings["LUNCH_DEDUCTION_AFTER_MINUTES"])

    after = {k: getattr(row, k) for k in RECORD_FIELDS}
    after["total_minutes_worked"] = row.total_minutes_worked
    return before != after


def get_record(employee_id: int, shift_date: date) -> Optional[AttendanceRecord]:
    return AttendanceRecord.query.filter_by(employee_id=employee_id, shift_date=shift_date).first()


def upsert_record(employee_id: int, shift_date: date, fields: Dict[str, Any],
                  settings: Dict[str, Any] = None) -> Tuple[AttendanceRecord, str]:
    """
    UPSERT on (employee_id, shift_date).

    Returns (row, outcome) with outcome one of
    created / updated / unchanged / skipped_verified.
    """
    settings = settings or DEFAULT_SETTINGS
    row = get_record(employee_id, shift_date)

    if row is None:
        try:
            with db.session.begin_nested():
                row = AttendanceRecord(employee_id=employee_id, shift_date=shift_date, total_minutes_worked=0)
                _assign(row, fields, settings)
                db.session.add(row)
            return row, "created"
        except IntegrityError:
            # Lost a race with a concurrent insert, update theirs instead
            row = AttendanceRecord.query.filter_by(employee_id=employee_id, shift_date=shift_date).one()

    if row.admin_verified:
        return row, "skipped_verified"

    changed = _assign(row, fields, settings)
    return row, "updated" if changed else "unchanged"


# -----------------------------
# Administrative transitions
# -----------------------------
def verify_record(record: AttendanceRecord, actor_id: int, actual_time_in: Optional[datetime],
                  actual_time_out: Optional[datetime], status: str, notes: str = None,
                  settings: Dict[str, Any] = None) -> AttendanceRecord:
    """
    Manual override. Minutes are recomputed from the supplied times, the
    status is taken as given.
    """
    settings = settings or DEFAULT_SETTINGS
    if status not in STATUSES:
        raise ValidationError(f"Unknown status: {status}")
    if actual_time_in and actual_time_out and actual_time_out < actual_time_in:
        raise ValidationError("actual_time_out must not be before actual_time_in")

    record.actual_time_in = actual_time_in
    record.actual_time_out = actual_time_out
    record.status = status
    record.secondary_status = None
    record.is_advised = status == "advised_absence"

    if record.scheduled_time_in and record.scheduled_time_out:
        minutes = compute_minutes(
            actual_time_in, actual_time_out, record.scheduled_time_in, record.scheduled_time_out, settings
        )
    else:
        minutes = {"tardy_minutes": 0, "undertime_minutes": 0, "overtime_minutes": 0}
    for key, value in minutes.items():
        setattr(record, key, value)
    record.recalc_total_minutes(settings["LUNCH_DEDUCTION_MINUTES"], settings["LUNCH_DEDUCTION_AFTER_MINUTES"])

    record.admin_verified = True
    record.verified_by = actor_id
    record.verified_at = datetime.utcnow()
    record.verification_notes = notes
    return record


def mark_advised(record: AttendanceRecord, actor_id: int, notes: str = None) -> AttendanceRecord:
    record.status = "advised_absence"
    record.secondary_status = None
    record.is_advised = True
    record.tardy_minutes = 0
    record.undertime_minutes = 0
    record.overtime_minutes = 0

    record.admin_verified = True
    record.verified_by = actor_id
    record.verified_at = datetime.utcnow()
    record.verification_notes = notes
    return record


def review_queue(date_from: date, date_to: date) -> List[AttendanceRecord]:
    return AttendanceRecord.query.filter(
        AttendanceRecord.shift_date >= date_from,
        AttendanceRecord.shift_date <= date_to,
        AttendanceRecord.status.in_(REVIEW_STATUSES),
        AttendanceRecord.admin_verified.is_(False),
    ).order_by(AttendanceRecord.shift_date.asc(), AttendanceRecord.employee_id.asc()).all()
