"""
Attendance point accrual.

One system point per attendance record, derived from its status. Expiry,
excuse state and GBRO eligibility are read-time predicates on the point,
statistics filter on them at query time.
"""
import calendar
from datetime import datetime, date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, case, and_, or_

from config import Config
from models import db
from models.attendance import AttendanceRecord
from models.attendance_point import AttendancePoint, POINT_TYPES
from biometric.exceptions import ValidationError, PointLockedError

# Point types a status can bear, the heaviest one wins
STATUS_POINT_TYPES = {
    "ncns": ("whole_day_absence",),
    "advised_absence": ("whole_day_absence",),
    "half_day_absence": ("half_day_absence",),
    "tardy": ("tardy",),
    "undertime": ("undertime",),
    "undertime_more_than_hour": ("undertime_more_than_hour",),
}

UNDERTIME_TYPES = ("undertime", "undertime_more_than_hour")


def _value(values: Dict[str, Any], point_type: str) -> Decimal:
    return Decimal(str(values[point_type])).quantize(Decimal("0.01"))


def add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class PointPolicy:
    """Point values and retention windows, usually read from app config."""

    def __init__(self, values: Dict[str, Any] = None,
                 expiry_months: int = Config.POINT_EXPIRY_MONTHS,
                 ncns_expiry_months: int = Config.NCNS_POINT_EXPIRY_MONTHS,
                 undertime_hour_minutes: int = Config.UNDERTIME_HOUR_MINUTES,
                 require_verification: bool = Config.POINTS_REQUIRE_VERIFICATION):
        self.values = dict(Config.POINT_VALUES)
        self.values.update(values or {})
        self.expiry_months = expiry_months
        self.ncns_expiry_months = ncns_expiry_months
        self.undertime_hour_minutes = undertime_hour_minutes
        self.require_verification = require_verification

    @classmethod
    def from_config(cls, config):
        return cls(
            values=config.get("POINT_VALUES"),
            expiry_months=config.get("POINT_EXPIRY_MONTHS", Config.POINT_EXPIRY_MONTHS),
            ncns_expiry_months=config.get("NCNS_POINT_EXPIRY_MONTHS", Config.NCNS_POINT_EXPIRY_MONTHS),
            undertime_hour_minutes=config.get("UNDERTIME_HOUR_MINUTES", Config.UNDERTIME_HOUR_MINUTES),
            require_verification=config.get("POINTS_REQUIRE_VERIFICATION", Config.POINTS_REQUIRE_VERIFICATION),
        )

    def value(self, point_type: str) -> Decimal:
        return _value(self.values, point_type)

    def point_type_for(self, status: str, undertime_minutes: int = 0,
                       secondary_status: str = None) -> Optional[str]:
        if status == "tardy_undertime":
            long_undertime = undertime_minutes > self.undertime_hour_minutes
            candidates = ["tardy", "undertime_more_than_hour" if long_undertime else "undertime"]
        else:
            candidates = list(STATUS_POINT_TYPES.get(status, ()))
        if candidates and secondary_status in UNDERTIME_TYPES:
            candidates.append(secondary_status)

        # Only one point per record, the heavier one. Ties keep the first.
        best = None
        for point_type in candidates:
            if best is None or self.value(point_type) > self.value(best):
                best = point_type
        return best

    def point_type_for_record(self, record: AttendanceRecord) -> Optional[str]:
        if self.require_verification and not record.admin_verified:
            return None
        return self.point_type_for(record.status, record.undertime_minutes or 0, record.secondary_status)

    def expires_at(self, shift_date: date, point_type: str, is_advised: bool) -> datetime:
        if point_type == "whole_day_absence" and not is_advised:
            months = self.ncns_expiry_months
        else:
            months = self.expiry_months
        return datetime.combine(add_months(shift_date, months), datetime.min.time())


def _violation_details(record: AttendanceRecord, point_type: str) -> str:
    d = record.shift_date.isoformat()
    if point_type == "whole_day_absence":
        if record.is_advised or record.status == "advised_absence":
            return f"Advised absence on {d}"
        return f"No call, no show on {d}"
    if point_type == "half_day_absence":
        return f"Late {record.tardy_minutes} minute(s), past the grace period, on {d}"
    if point_type == "tardy":
        return f"Tardy {record.tardy_minutes} minute(s) on {d}"
    if point_type == "undertime_more_than_hour":
        return f"Undertime of more than an hour ({record.undertime_minutes} minutes) on {d}"
    return f"Undertime {record.undertime_minutes} minute(s) on {d}"


def sync_point_for_record(record: AttendanceRecord, policy: PointPolicy = None) -> Tuple[Optional[AttendancePoint], str]:
    """
    Bring the record's system point in line with its status.

    Returns (point, outcome) with outcome one of
    created / updated / unchanged / deleted / none.
    Excuse fields survive an update.
    """
    policy = policy or PointPolicy()
    point = AttendancePoint.query.filter_by(attendance_record_id=record.id).first() if record.id else None
    point_type = policy.point_type_for_record(record)

    if point_type is None:
        if point is not None:
            db.session.delete(point)
            return None, "deleted"
        return None, "none"

    is_advised = bool(record.is_advised or record.status == "advised_absence")
    wanted = {
        "employee_id": record.employee_id,
        "shift_date": record.shift_date,
        "point_type": point_type,
        "points": policy.value(point_type),
        "is_advised": is_advised,
        "expires_at": policy.expires_at(record.shift_date, point_type, is_advised),
        "violation_details": _violation_details(record, point_type),
    }

    if point is None:
        point = AttendancePoint(attendance_record_id=record.id, is_manual=False, is_excused=False, **wanted)
        db.session.add(point)
        return point, "created"

    changed = False
    for key, value in wanted.items():
        current = getattr(point, key)
        if key == "points" and current is not None:
            current = Decimal(str(current)).quantize(Decimal("0.01"))
        if current != value:
            setattr(point, key, value)
            changed = True
    return point, "updated" if changed else "unchanged"


# -----------------------------
# Excuse / un-excuse
# -----------------------------
def excuse_point(point: AttendancePoint, actor_id: int, reason: str, notes: str = None) -> AttendancePoint:
    if not reason or not str(reason).strip():
        raise ValidationError("An excuse reason is required")

    point.is_excused = True
    point.excused_by = actor_id
    point.excused_at = datetime.utcnow()
    point.excuse_reason = str(reason).strip()
    if notes is not None:
        point.notes = notes
    return point


def unexcuse_point(point: AttendancePoint) -> AttendancePoint:
    point.is_excused = False
    point.excused_by = None
    point.excused_at = None
    point.excuse_reason = None
    return point


# -----------------------------
# Manual points
# -----------------------------
def create_manual_point(employee_id: int, shift_date: date, point_type: str, actor_id: int,
                        points=None, is_advised: bool = False, notes: str = None,
                        violation_details: str = None, policy: PointPolicy = None) -> AttendancePoint:
    policy = policy or PointPolicy()
    if point_type not in POINT_TYPES:
        raise ValidationError(f"Unknown point type: {point_type}")

    value = policy.value(point_type) if points is None else Decimal(str(points)).quantize(Decimal("0.01"))
    if value <= 0:
        raise ValidationError("Point value must be positive")

    point = AttendancePoint(
        employee_id=employee_id,
        attendance_record_id=None,
        shift_date=shift_date,
        point_type=point_type,
        points=value,
        is_manual=True,
        is_excused=False,
        is_advised=is_advised,
        expires_at=policy.expires_at(shift_date, point_type, is_advised),
        violation_details=violation_details,
        notes=notes,
        created_by=actor_id,
    )
    db.session.add(point)
    return point


def _ensure_manual(point: AttendancePoint):
    if not point.is_manual:
        raise PointLockedError("System-derived points can only change through their attendance record")


def update_manual_point(point: AttendancePoint, policy: PointPolicy = None, **changes) -> AttendancePoint:
    _ensure_manual(point)
    policy = policy or PointPolicy()

    if "point_type" in changes and changes["point_type"] not in POINT_TYPES:
        raise ValidationError(f"Unknown point type: {changes['point_type']}")

    for key in ("shift_date", "point_type", "is_advised", "notes", "violation_details"):
        if key in changes:
            setattr(point, key, changes[key])
    if changes.get("points") is not None:
        point.points = Decimal(str(changes["points"])).quantize(Decimal("0.01"))
    elif "point_type" in changes:
        point.points = policy.value(point.point_type)

    point.expires_at = policy.expires_at(point.shift_date, point.point_type, point.is_advised)
    return point


def delete_manual_point(point: AttendancePoint):
    _ensure_manual(point)
    db.session.delete(point)


# -----------------------------
# Statistics
# -----------------------------
def point_statistics(employee_id: int = None, date_from: date = None, date_to: date = None,
                     as_of: datetime = None) -> Dict[str, Any]:
    """
    Sums filtered at query time:
      total_points    every point in range
      active_points   not excused, not yet expired
      expired_points  expired, not excused
      excused_points  excused
    """
    as_of = as_of or datetime.utcnow()

    excused = AttendancePoint.is_excused.is_(True)
    expired = and_(AttendancePoint.is_excused.is_(False), AttendancePoint.expires_at <= as_of)
    active = and_(AttendancePoint.is_excused.is_(False), AttendancePoint.expires_at > as_of)

    def _sum(cond):
        return func.coalesce(func.sum(case((cond, AttendancePoint.points), else_=0)), 0)

    filters = []
    if employee_id is not None:
        filters.append(AttendancePoint.employee_id == employee_id)
    if date_from is not None:
        filters.append(AttendancePoint.shift_date >= date_from)
    if date_to is not None:
        filters.append(AttendancePoint.shift_date <= date_to)

    row = db.session.query(
        func.coalesce(func.sum(AttendancePoint.points), 0),
        _sum(active),
        _sum(expired),
        _sum(excused),
        func.count(AttendancePoint.id),
    ).filter(*filters).one()

    by_type_rows = db.session.query(
        AttendancePoint.point_type, func.sum(AttendancePoint.points)
    ).filter(*filters).filter(active).group_by(AttendancePoint.point_type).all()

    def _num(v):
        return float(Decimal(str(v or 0)).quantize(Decimal("0.01")))

    return {
        "employee_id": employee_id,
        "as_of": as_of.isoformat(sep=" "),
        "total_points": _num(row[0]),
        "active_points": _num(row[1]),
        "expired_points": _num(row[2]),
        "excused_points": _num(row[3]),
        "violation_count": int(row[4] or 0),
        "by_type": {t: _num(v) for t, v in by_type_rows},
    }


# -----------------------------
# GBRO
# -----------------------------
def _next_roll_off(points: List[AttendancePoint], last_roll_off: Optional[date], today: date,
                   clean_days: int) -> Optional[date]:
    newest = points[-1].shift_date
    clean = timedelta(days=clean_days)
    after_newest = newest + clean if (today - newest).days > clean_days else None

    if last_roll_off is not None:
        scheduled = last_roll_off + clean
        violation = next((p for p in points if p.shift_date > last_roll_off), None)
        if violation is not None and violation.shift_date < scheduled:
            # A new point restarts the clean streak
            return after_newest
        return scheduled if scheduled <= today else None

    for current, nxt in zip(points, points[1:]):
        if (nxt.shift_date - current.shift_date).days > clean_days:
            roll_off = current.shift_date + clean
            if roll_off <= today:
                return roll_off
    return after_newest


def gbro_roll_offs(points, as_of: datetime = None, clean_days: int = Config.GBRO_CLEAN_DAYS,
                   per_roll_off: int = Config.GBRO_ROLL_OFF_COUNT) -> Dict[int, date]:
    """
    Good-behaviour roll-off over one employee's points, replayed at read time.

    Every ``clean_days`` without a new GBRO-eligible point rolls off the
    ``per_roll_off`` newest points dated before that day. Returns
    {point_id: roll_off_date}.
    """
    as_of = as_of or datetime.utcnow()
    today = as_of.date()
    pending = sorted(
        (p for p in points if p.is_gbro_eligible_at(as_of)),
        key=lambda p: (p.shift_date, p.id),
    )

    rolled = {}
    last_roll_off = None
    while pending:
        roll_off = _next_roll_off(pending, last_roll_off, today, clean_days)
        if roll_off is None:
            break
        before = [p for p in pending if p.shift_date < roll_off]
        taken = sorted(before, key=lambda p: (p.shift_date, p.id), reverse=True)[:per_roll_off]
        if not taken:
            break
        for p in taken:
            rolled[p.id] = roll_off
        taken_ids = {p.id for p in taken}
        pending = [p for p in pending if p.id not in taken_ids]
        last_roll_off = roll_off
    return rolled


def _gbro_candidates(employee_id: int, as_of: datetime) -> List[AttendancePoint]:
    return AttendancePoint.query.filter(
        AttendancePoint.employee_id == employee_id,
        AttendancePoint.is_excused.is_(False),
        AttendancePoint.expires_at > as_of,
        or_(AttendancePoint.point_type != "whole_day_absence", AttendancePoint.is_advised.is_(True)),
    ).order_by(AttendancePoint.shift_date.asc(), AttendancePoint.id.asc()).all()


def _in_range(point: AttendancePoint, date_from: date = None, date_to: date = None) -> bool:
    if date_from is not None and point.shift_date < date_from:
        return False
    if date_to is not None and point.shift_date > date_to:
        return False
    return True


def gbro_eligible_points(employee_id: int, as_of: datetime = None, date_from: date = None,
                         date_to: date = None,
                         clean_days: int = Config.GBRO_CLEAN_DAYS,
                         per_roll_off: int = Config.GBRO_ROLL_OFF_COUNT) -> List[AttendancePoint]:
    """Points in range that can still roll off. Roll-offs replay over the whole history."""
    as_of = as_of or datetime.utcnow()
    rows = _gbro_candidates(employee_id, as_of)
    rolled = gbro_roll_offs(rows, as_of, clean_days, per_roll_off)
    return [
        p for p in rows
        if p.id not in rolled and p.is_gbro_eligible_at(as_of) and _in_range(p, date_from, date_to)
    ]


def gbro_rolled_off_points(employee_id: int, as_of: datetime = None, date_from: date = None,
                           date_to: date = None, clean_days: int = Config.GBRO_CLEAN_DAYS,
                           per_roll_off: int = Config.GBRO_ROLL_OFF_COUNT) -> List[Tuple[AttendancePoint, date]]:
    as_of = as_of or datetime.utcnow()
    rows = _gbro_candidates(employee_id, as_of)
    rolled = gbro_roll_offs(rows, as_of, clean_days, per_roll_off)
    return [(p, rolled[p.id]) for p in rows if p.id in rolled and _in_range(p, date_from, date_to)]
