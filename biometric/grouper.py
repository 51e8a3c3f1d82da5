from collections import OrderedDict
from datetime import datetime, date, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from models.biometric import BiometricRecord
from biometric.shifts import ShiftAssigner

# Punches of a shift-date can sit up to a day either side of it
QUERY_PADDING_DAYS = 2


class ShiftGroup:
    """Punches of one employee for one shift-date, ordered by time."""

    def __init__(self, employee_id: int, shift_date: date, schedule, punches: List[BiometricRecord] = None):
        self.employee_id = employee_id
        self.shift_date = shift_date
        self.schedule = schedule
        self.punches = punches or []

    @property
    def key(self) -> Tuple[int, date]:
        return self.employee_id, self.shift_date

    def __repr__(self):
        return f"<ShiftGroup emp={self.employee_id} {self.shift_date} punches={len(self.punches)}>"


def _schedule_near(schedule_for: Callable, employee_id: int, day: date):
    # Graveyard check-outs land on the day after the schedule's last date
    return schedule_for(employee_id, day) or schedule_for(employee_id, day - timedelta(days=1))


def query_punches(employee_ids: Optional[Iterable[int]], start: datetime, end: datetime,
                  archived_before: datetime = None) -> List[BiometricRecord]:
    q = BiometricRecord.query.filter(
        BiometricRecord.employee_id.isnot(None),
        BiometricRecord.punched_at >= start,
        BiometricRecord.punched_at < end,
    )
    if employee_ids is not None:
        q = q.filter(BiometricRecord.employee_id.in_(list(employee_ids)))
    if archived_before is not None:
        q = q.filter(BiometricRecord.archived_at <= archived_before)
    return q.order_by(BiometricRecord.punched_at.asc(), BiometricRecord.id.asc()).all()


def collect_shift_groups(employee_ids: Optional[Iterable[int]], date_from: date, date_to: date,
                         schedule_for: Callable, assigner: ShiftAssigner,
                         archived_before: datetime = None):
    """
    Groups archived punches into shift-dates within [date_from, date_to].

    Works off the archive, never a single upload, so a shift split across
    two files is grouped the same regardless of upload order.

    Returns (groups, diagnostics):
      groups       OrderedDict {(employee_id, shift_date): ShiftGroup}, sorted by key
      diagnostics  {"no_schedule": [...], "non_work_day": [...]}
    """
    start = datetime.combine(date_from - timedelta(days=QUERY_PADDING_DAYS), datetime.min.time())
    end = datetime.combine(date_to + timedelta(days=QUERY_PADDING_DAYS + 1), datetime.min.time())

    punches = query_punches(employee_ids, start, end, archived_before)

    groups: Dict[Tuple[int, date], ShiftGroup] = {}
    no_schedule = {}
    non_work_day = []

    for punch in punches:
        schedule = _schedule_near(schedule_for, punch.employee_id, punch.punched_at.date())
        if schedule is None:
            if date_from <= punch.punched_at.date() <= date_to:
                no_schedule.setdefault((punch.employee_id, punch.punched_at.date()), 0)
                no_schedule[(punch.employee_id, punch.punched_at.date())] += 1
            continue

        shift_date = assigner.shift_date_for(punch.punched_at, schedule)
        if shift_date < date_from or shift_date > date_to:
            continue

        if not schedule.works_on(shift_date):
            non_work_day.append({
                "employee_id": punch.employee_id,
                "shift_date": shift_date.isoformat(),
                "punched_at": punch.punched_at.isoformat(sep=" "),
            })
            continue

        key = (punch.employee_id, shift_date)
        if key not in groups:
            groups[key] = ShiftGroup(punch.employee_id, shift_date, schedule)
        groups[key].punches.append(punch)

    ordered = OrderedDict((k, groups[k]) for k in sorted(groups))
    diagnostics = {
        "no_schedule": [
            {"employee_id": emp_id, "date": d.isoformat(), "punches": count}
            for (emp_id, d), count in sorted(no_schedule.items())
        ],
        "non_work_day": non_work_day,
    }
    return ordered, diagnostics
