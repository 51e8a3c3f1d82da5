from datetime import datetime
from models import db

STATUSES = (
    "on_time", "tardy", "half_day_absence", "undertime", "undertime_more_than_hour",
    "tardy_undertime", "ncns",
    "failed_bio_in", "failed_bio_out", "advised_absence",
    "pending_review", "non_work_day",
)

REVIEW_STATUSES = ("failed_bio_in", "failed_bio_out", "pending_review")


class AttendanceRecord(db.Model):
    """
    One row per employee per shift-date (UPSERT key)
    """
    __tablename__ = "attendance_records"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)
    employee_schedule_id = db.Column(db.Integer, db.ForeignKey("employee_schedules.id"), nullable=True)

    # Main unique key for UPSERT
    shift_date = db.Column(db.Date, nullable=False, index=True)

    # Schedule snapshot
    scheduled_time_in = db.Column(db.DateTime, nullable=True)
    scheduled_time_out = db.Column(db.DateTime, nullable=True)

    actual_time_in = db.Column(db.DateTime, nullable=True)
    actual_time_out = db.Column(db.DateTime, nullable=True)

    status = db.Column(db.String(30), default="ncns", nullable=False)
    secondary_status = db.Column(db.String(30), nullable=True)

    tardy_minutes = db.Column(db.Integer, default=0, nullable=False)
    undertime_minutes = db.Column(db.Integer, default=0, nullable=False)
    overtime_minutes = db.Column(db.Integer, default=0, nullable=False)
    total_minutes_worked = db.Column(db.Integer, default=0, nullable=False)
    punch_count = db.Column(db.Integer, default=0, nullable=False)

    is_cross_site_bio = db.Column(db.Boolean, default=False, nullable=False)
    is_advised = db.Column(db.Boolean, default=False, nullable=False)
    warnings = db.Column(db.JSON, nullable=True)

    # Admin review
    admin_verified = db.Column(db.Boolean, default=False, nullable=False)
    verified_by = db.Column(db.Integer, nullable=True)
    verified_at = db.Column(db.DateTime, nullable=True)
    verification_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    employee = db.relationship("Employee", backref="attendance_records")

    __table_args__ = (
        db.UniqueConstraint("employee_id", "shift_date", name="uq_att_emp_shift_date"),
    )

    def recalc_total_minutes(self, lunch_minutes=60, lunch_after=300):
        if self.actual_time_in and self.actual_time_out and self.actual_time_out > self.actual_time_in:
            start = self.actual_time_in
            if self.scheduled_time_in and self.scheduled_time_in > start:
                start = self.scheduled_time_in
            end = self.actual_time_out
            if self.scheduled_time_out and end > self.scheduled_time_out and not self.overtime_minutes:
                end = self.scheduled_time_out
            minutes = max(0, int((end - start).total_seconds() // 60))
            if minutes > lunch_after:
                minutes -= lunch_minutes
            self.total_minutes_worked = minutes
        else:
            self.total_minutes_worked = 0
