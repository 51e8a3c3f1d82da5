from datetime import datetime, date
from models import db

SHIFT_TYPES = ("regular", "graveyard", "utility_24h")

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class EmployeeSchedule(db.Model):
    __tablename__ = "employee_schedules"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)
    site_id = db.Column(db.Integer, nullable=True)

    shift_type = db.Column(db.String(20), default="regular", nullable=False)
    scheduled_time_in = db.Column(db.Time, nullable=False)
    scheduled_time_out = db.Column(db.Time, nullable=False)

    # ["monday", "tuesday", ...]
    work_days = db.Column(db.JSON, nullable=False, default=lambda: list(WEEKDAYS[:5]))
    grace_period_minutes = db.Column(db.Integer, default=15, nullable=False)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    effective_date = db.Column(db.Date, nullable=False, default=date.today)
    end_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    employee = db.relationship("Employee", backref="schedules")

    def works_on(self, day: date) -> bool:
        return WEEKDAYS[day.weekday()] in [str(d).lower() for d in (self.work_days or [])]

    def covers(self, day: date) -> bool:
        if not self.is_active:
            return False
        if self.effective_date and day < self.effective_date:
            return False
        if self.end_date and day > self.end_date:
            return False
        return True
