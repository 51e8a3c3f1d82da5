from datetime import datetime
from models import db


class AttendanceUpload(db.Model):
    """
    One row per ingested punch-log file (batch)
    """
    __tablename__ = "attendance_uploads"

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, nullable=True)
    date_from = db.Column(db.Date, nullable=False)
    date_to = db.Column(db.Date, nullable=False)
    uploaded_by = db.Column(db.Integer, nullable=True)
    original_filename = db.Column(db.String(255), nullable=True)

    # pending / processing / completed / failed
    status = db.Column(db.String(20), default="pending", nullable=False)

    total_records = db.Column(db.Integer, default=0, nullable=False)
    matched_count = db.Column(db.Integer, default=0, nullable=False)
    unmatched_count = db.Column(db.Integer, default=0, nullable=False)
    duplicate_count = db.Column(db.Integer, default=0, nullable=False)

    unmatched_names = db.Column(db.JSON, nullable=True)
    date_warnings = db.Column(db.JSON, nullable=True)
    skipped_lines = db.Column(db.JSON, nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    processed_at = db.Column(db.DateTime, nullable=True)


class BiometricRecord(db.Model):
    """
    Raw punch archive. Append-only, one row per scanner observation.
    """
    __tablename__ = "biometric_records"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=True, index=True)

    device_name = db.Column(db.String(150), nullable=False)
    normalized_name = db.Column(db.String(150), nullable=False, index=True)
    site_id = db.Column(db.Integer, nullable=True)

    punched_at = db.Column(db.DateTime, nullable=False, index=True)
    record_date = db.Column(db.Date, nullable=False, index=True)
    device_sequence_no = db.Column(db.Integer, nullable=True)

    upload_id = db.Column(db.Integer, db.ForeignKey("attendance_uploads.id"), nullable=True)
    archived_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("site_id", "normalized_name", "punched_at", name="uq_bio_site_name_time"),
    )
