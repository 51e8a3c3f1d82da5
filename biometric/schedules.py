from datetime import date
from typing import Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy import or_

from models.schedule import EmployeeSchedule


def _pick(schedules: List[EmployeeSchedule], employee_id: int, day: date) -> Optional[EmployeeSchedule]:
    candidates = [s for s in schedules if s.covers(day)]
    if not candidates:
        return None
    if len(candidates) > 1:
        current_app.logger.warning(
            f"Employee {employee_id} has {len(candidates)} active schedules on {day}; using the latest"
        )
    candidates.sort(key=lambda s: (s.effective_date, s.id), reverse=True)
    return candidates[0]


def active_schedule_for(employee_id: int, day: date) -> Optional[EmployeeSchedule]:
    """Default schedule provider: the active schedule effective on ``day``."""
    rows = EmployeeSchedule.query.filter(
        EmployeeSchedule.employee_id == employee_id,
        EmployeeSchedule.is_active.is_(True),
        EmployeeSchedule.effective_date <= day,
        or_(EmployeeSchedule.end_date.is_(None), EmployeeSchedule.end_date >= day),
    ).all()
    return _pick(rows, employee_id, day)


class ScheduleBook:
    """
    Preloaded schedule provider for a batch. Callable like
    ``active_schedule_for`` but issues one query per batch.
    """

    def __init__(self, employee_ids: Iterable[int] = None):
        q = EmployeeSchedule.query.filter(EmployeeSchedule.is_active.is_(True))
        if employee_ids is not None:
            ids = list(employee_ids)
            if not ids:
                self._by_employee: Dict[int, List[EmployeeSchedule]] = {}
                return
            q = q.filter(EmployeeSchedule.employee_id.in_(ids))

        self._by_employee = {}
        for s in q.order_by(EmployeeSchedule.id.asc()).all():
            self._by_employee.setdefault(s.employee_id, []).append(s)

    def __call__(self, employee_id: int, day: date) -> Optional[EmployeeSchedule]:
        return _pick(self._by_employee.get(employee_id, []), employee_id, day)

    @property
    def employee_ids(self):
        return list(self._by_employee.keys())
