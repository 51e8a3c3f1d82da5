from datetime import date

from models import db
from models.employee import Employee
from models.schedule import EmployeeSchedule, WEEKDAYS

HEADER = "No\tDevNo\tUserId\tName\tMode\tDateTime"


def make_employee(first, last, code=None, middle=None, biometric_name=None):
    emp = Employee(
        employee_code=code or f"EMP-{first}-{last}",
        first_name=first,
        middle_name=middle,
        last_name=last,
        biometric_name=biometric_name,
        is_active=True,
    )
    db.session.add(emp)
    db.session.commit()
    return emp


def make_schedule(employee, time_in, time_out, work_days=None, shift_type="regular", site_id=1,
                  effective_date=date(2025, 1, 1), grace=15):
    schedule = EmployeeSchedule(
        employee_id=employee.id,
        site_id=site_id,
        shift_type=shift_type,
        scheduled_time_in=time_in,
        scheduled_time_out=time_out,
        work_days=list(work_days or WEEKDAYS[:5]),
        grace_period_minutes=grace,
        is_active=True,
        effective_date=effective_date,
    )
    db.session.add(schedule)
    db.session.commit()
    return schedule


def schedule_stub(time_in, time_out, shift_type="regular", work_days=None, site_id=None):
    """Unsaved schedule for tests that never touch the database."""
    return EmployeeSchedule(
        id=None,
        site_id=site_id,
        shift_type=shift_type,
        scheduled_time_in=time_in,
        scheduled_time_out=time_out,
        work_days=list(work_days or WEEKDAYS),
        grace_period_minutes=15,
        is_active=True,
    )


def punch_file(*punches):
    """punches: (name, "YYYY-MM-DD HH:MM:SS") pairs, laid out like a scanner export."""
    lines = [HEADER]
    for i, (name, stamp) in enumerate(punches, start=1):
        day, clock = stamp.split(" ")
        lines.append(f"{i}\t1\t{100 + i}\t{name}\tFP\t{day}  {clock}")
    return "\r\n".join(lines) + "\r\n"
