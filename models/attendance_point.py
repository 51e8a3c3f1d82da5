from datetime import datetime
from models import db

POINT_TYPES = (
    "whole_day_absence", "half_day_absence", "undertime_more_than_hour", "tardy", "undertime",
)


class AttendancePoint(db.Model):
    __tablename__ = "attendance_points"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)

    # One system point per record; manual points have no record
    attendance_record_id = db.Column(
        db.Integer, db.ForeignKey("attendance_records.id", ondelete="CASCADE"), nullable=True, unique=True
    )
    shift_date = db.Column(db.Date, nullable=False, index=True)

    point_type = db.Column(db.String(30), nullable=False)
    points = db.Column(db.Numeric(5, 2), nullable=False)

    is_manual = db.Column(db.Boolean, default=False, nullable=False)
    is_advised = db.Column(db.Boolean, default=False, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)

    is_excused = db.Column(db.Boolean, default=False, nullable=False)
    excused_by = db.Column(db.Integer, nullable=True)
    excused_at = db.Column(db.DateTime, nullable=True)
    excuse_reason = db.Column(db.Text, nullable=True)

    violation_details = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    attendance_record = db.relationship("AttendanceRecord", backref=db.backref("point", uselist=False))

    @property
    def is_ncns(self):
        return self.point_type == "whole_day_absence" and not self.is_advised

    def is_expired_at(self, moment: datetime) -> bool:
        return moment >= self.expires_at

    @property
    def is_expired(self):
        return self.is_expired_at(datetime.utcnow())

    def is_gbro_eligible_at(self, moment: datetime) -> bool:
        """Good-behaviour roll-off: unadvised NCNS never rolls off early."""
        return not self.is_ncns and not self.is_excused and not self.is_expired_at(moment)

    @property
    def is_gbro_eligible(self):
        return self.is_gbro_eligible_at(datetime.utcnow())
