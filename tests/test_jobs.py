from datetime import date, time

import pytest

from models import db
from models.attendance import AttendanceRecord
from models.biometric import AttendanceUpload
from biometric.exceptions import PermissionDenied
from biometric.jobs import start_ingest_job
from factories import make_employee, make_schedule, punch_file

MON = date(2025, 11, 3)


def test_background_ingest_completes_upload(app, admin):
    emp = make_employee("John", "Doe")
    make_schedule(emp, time(9, 0), time(18, 0))
    emp_id = emp.id
    db.session.commit()
    db.session.close()

    text = punch_file(("Doe John", "2025-11-03 09:00:00"), ("Doe John", "2025-11-03 18:00:00"))
    upload_id, thread = start_ingest_job(app, text, MON, MON, 1, admin)
    thread.join(timeout=30)

    upload = db.session.get(AttendanceUpload, upload_id)
    assert upload.status == "completed"
    assert upload.total_records == 2
    assert AttendanceRecord.query.filter_by(employee_id=emp_id, shift_date=MON).one().status == "on_time"


def test_background_ingest_requires_permission(app, viewer):
    with pytest.raises(PermissionDenied):
        start_ingest_job(app, "", MON, MON, 1, viewer)
    assert AttendanceUpload.query.count() == 0
