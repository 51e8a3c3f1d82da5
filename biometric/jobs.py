import threading

from biometric.exceptions import AttendanceError
from biometric.services import create_upload, ingest
from utils.decorators import permission_required


def _run_ingest(app, upload_id, raw_text, date_from, date_to, site_id, actor):
    """Runs in a separate thread with its own app context and session."""
    with app.app_context():
        try:
            ingest(raw_text, date_from, date_to, site_id, actor, upload_id=upload_id)
        except AttendanceError as e:
            app.logger.warning(f"Background ingest of upload {upload_id} rejected: {e}")
        except Exception:
            # ingest already marked the upload failed and logged the traceback
            app.logger.error(f"Background ingest of upload {upload_id} failed")


@permission_required("attendance.upload")
def start_ingest_job(app, raw_text, date_from, date_to, site_id, actor, filename=None):
    """
    Registers the upload (status pending) and processes it in the background,
    so the caller can return the upload id right away and poll it.
    Returns (upload_id, thread).
    """
    with app.app_context():
        upload_id = create_upload(date_from, date_to, site_id, actor, filename).id

    # Run in separate thread
    thread = threading.Thread(
        target=_run_ingest,
        args=(app, upload_id, raw_text, date_from, date_to, site_id, actor),
        daemon=True,
    )
    thread.start()
    return upload_id, thread
