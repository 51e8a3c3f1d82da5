"""
Attendance engine operations.

Every mutating operation takes an ``actor`` and is guarded by
``permission_required``. One call is one transaction: it commits on success
and rolls back on any error.
"""
import traceback
from collections import Counter
from datetime import datetime, date, timedelta
from typing import Any, Dict, Iterable, Optional, Set

from flask import current_app

from models import db
from models.attendance import AttendanceRecord
from models.attendance_point import AttendancePoint
from models.biometric import AttendanceUpload, BiometricRecord
from models.employee import Employee
from utils.decorators import permission_required

from biometric.audit_logger import log_action
from biometric.exceptions import EmptyPunchFileError, NotFoundError, ValidationError
from biometric.grouper import collect_shift_groups
from biometric.matcher import EmployeeMatcher
from biometric.parser import parse_content
from biometric.points import (
    PointPolicy, sync_point_for_record, excuse_point, unexcuse_point,
    create_manual_point as _create_manual_point,
    update_manual_point as _update_manual_point,
    delete_manual_point as _delete_manual_point,
    point_statistics, gbro_eligible_points, gbro_rolled_off_points,
)
from biometric.reconciler import (
    reconcile, upsert_record, verify_record, mark_advised, settings_from_config,
)
from biometric.schedules import ScheduleBook
from biometric.shifts import ShiftAssigner


# -----------------------------
# Helpers
# -----------------------------
def daterange(d1: date, d2: date):
    cur = d1
    while cur <= d2:
        yield cur
        cur += timedelta(days=1)


def _check_range(date_from: date, date_to: date):
    if not date_from or not date_to:
        raise ValidationError("date_from and date_to are required")
    if date_to < date_from:
        raise ValidationError("date_to must not be before date_from")


def _get_or_404(model, object_id):
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFoundError(f"{model.__name__} {object_id} not found")
    return obj


def _commit():
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _engine_parts():
    config = current_app.config
    return ShiftAssigner.from_config(config), settings_from_config(config), PointPolicy.from_config(config)


def reconcile_range(employee_ids: Iterable[int], date_from: date, date_to: date,
                    fill_employee_ids: Iterable[int] = None, fill_from: date = None, fill_to: date = None,
                    schedule_for=None, archived_before: datetime = None,
                    now: datetime = None) -> Dict[str, Any]:
    """
    Regroup archived punches and upsert one record per (employee, shift-date).

    Shift-dates with punches in [date_from, date_to] are reconciled. Work days
    in [fill_from, fill_to] without punches become ncns for the employees in
    ``fill_employee_ids``, once the scheduled shift has ended by ``now``
    (local time). Admin-verified records are never modified.
    """
    assigner, settings, policy = _engine_parts()
    employee_ids = set(employee_ids)
    fill_ids = set(fill_employee_ids or [])
    if schedule_for is None:
        schedule_for = ScheduleBook(employee_ids | fill_ids)

    groups, diagnostics = collect_shift_groups(
        employee_ids, date_from, date_to, schedule_for, assigner, archived_before=archived_before
    )

    now = now or datetime.now()
    if fill_to:
        fill_to = min(fill_to, now.date())
    keys = set(groups.keys())
    if fill_ids and fill_from and fill_to:
        for emp_id in fill_ids:
            for d in daterange(fill_from, fill_to):
                schedule = schedule_for(emp_id, d)
                if not schedule or not schedule.works_on(d):
                    continue
                # A shift that has not ended yet is not an absence
                if assigner.scheduled_bounds(schedule, d)[1] <= now:
                    keys.add((emp_id, d))

    counts = Counter()
    for emp_id, shift_date in sorted(keys):
        group = groups.get((emp_id, shift_date))
        schedule = schedule_for(emp_id, shift_date) or (group.schedule if group else None)
        if schedule is None:
            continue

        fields = reconcile(group.punches if group else [], schedule, shift_date, assigner, settings)
        row, outcome = upsert_record(emp_id, shift_date, fields, settings)
        counts[outcome] += 1
        if outcome == "skipped_verified":
            continue

        db.session.flush()
        _, point_outcome = sync_point_for_record(row, policy)
        counts[f"points_{point_outcome}"] += 1

    return {
        "records_created": counts["created"],
        "records_updated": counts["updated"],
        "records_unchanged": counts["unchanged"],
        "records_skipped_verified": counts["skipped_verified"],
        "points_created": counts["points_created"],
        "points_updated": counts["points_updated"],
        "points_deleted": counts["points_deleted"],
        "no_schedule": diagnostics["no_schedule"],
        "non_work_day_scans": diagnostics["non_work_day"],
    }


# -----------------------------
# Ingest
# -----------------------------
def create_upload(date_from: date, date_to: date, site_id: Optional[int], actor,
                  filename: str = None) -> AttendanceUpload:
    _check_range(date_from, date_to)
    upload = AttendanceUpload(
        site_id=site_id,
        date_from=date_from,
        date_to=date_to,
        uploaded_by=getattr(actor, "id", None),
        original_filename=filename,
        status="pending",
    )
    db.session.add(upload)
    _commit()
    return upload


def _fail_upload(upload_id: int, message: str, skipped_lines=None):
    upload = db.session.get(AttendanceUpload, upload_id)
    if upload is None:
        return
    upload.status = "failed"
    upload.error_message = message
    upload.skipped_lines = skipped_lines or None
    upload.processed_at = datetime.utcnow()
    _commit()


def _archive(records, upload: AttendanceUpload, matcher: EmployeeMatcher, archived_at: datetime):
    """Insert punches not already archived for this site. Returns the new rows."""
    lo = min(r["punched_at"] for r in records)
    hi = max(r["punched_at"] for r in records)
    site_filter = (
        BiometricRecord.site_id.is_(None) if upload.site_id is None
        else BiometricRecord.site_id == upload.site_id
    )
    existing = {
        (name, ts) for name, ts in db.session.query(
            BiometricRecord.normalized_name, BiometricRecord.punched_at
        ).filter(site_filter, BiometricRecord.punched_at >= lo, BiometricRecord.punched_at <= hi).all()
    }

    archived = []
    for rec in records:
        key = (rec["normalized_name"], rec["punched_at"])
        if key in existing:
            continue
        existing.add(key)
        row = BiometricRecord(
            employee_id=matcher.match(rec["normalized_name"]),
            device_name=rec["name"],
            normalized_name=rec["normalized_name"],
            site_id=upload.site_id,
            punched_at=rec["punched_at"],
            record_date=rec["punched_at"].date(),
            device_sequence_no=rec["sequence_no"],
            upload_id=upload.id,
            archived_at=archived_at,
        )
        db.session.add(row)
        archived.append(row)
    return archived


def _site_employee_ids(book: ScheduleBook, site_id: Optional[int], date_from: date, date_to: date) -> Set[int]:
    ids = set()
    for emp_id in book.employee_ids:
        for d in daterange(date_from, date_to):
            schedule = book(emp_id, d)
            if schedule and (site_id is None or schedule.site_id == site_id):
                ids.add(emp_id)
                break
    return ids


@permission_required("attendance.upload")
def ingest(raw_text, date_from: date, date_to: date, site_id: Optional[int], actor,
           filename: str = None, upload_id: int = None) -> Dict[str, Any]:
    """
    Parse a punch log, archive every punch (matched or not) and reconcile
    the affected shift-dates.
    """
    _check_range(date_from, date_to)
    if upload_id is None:
        upload_id = create_upload(date_from, date_to, site_id, actor, filename).id

    upload = _get_or_404(AttendanceUpload, upload_id)
    upload.status = "processing"
    _commit()

    try:
        parsed = parse_content(raw_text, date_from, date_to)
    except EmptyPunchFileError as e:
        current_app.logger.warning(f"Upload {upload_id}: {e}")
        _fail_upload(upload_id, str(e), e.skipped_lines)
        raise

    records = parsed["records"]
    try:
        employees = Employee.query.filter_by(is_active=True).all()
        matcher = EmployeeMatcher(employees)

        archived = _archive(records, upload, matcher, datetime.utcnow())
        db.session.flush()

        # Counted over the whole file, already archived punches included
        matches = [matcher.match(r["normalized_name"]) for r in records]
        matched_ids = {emp_id for emp_id in matches if emp_id is not None}
        matched_count = sum(1 for emp_id in matches if emp_id is not None)
        unmatched = sorted({r["name"] for r, emp_id in zip(records, matches) if emp_id is None})

        book = ScheduleBook()
        fill_ids = _site_employee_ids(book, site_id, date_from, date_to)
        result = reconcile_range(
            matched_ids | fill_ids,
            date_from - timedelta(days=1), date_to + timedelta(days=1),
            fill_employee_ids=fill_ids, fill_from=date_from, fill_to=date_to,
            schedule_for=book,
        )

        upload.status = "completed"
        upload.total_records = len(records)
        upload.matched_count = matched_count
        upload.unmatched_count = len(records) - matched_count
        upload.duplicate_count = len(records) - len(archived)
        upload.unmatched_names = unmatched or None
        upload.date_warnings = parsed["date_warnings"] or None
        upload.skipped_lines = parsed["skipped_lines"] or None
        upload.processed_at = datetime.utcnow()

        log_action(actor, "INGEST_PUNCH_LOG", "attendance_upload", upload.id, meta={
            "total_records": len(records),
            "archived": len(archived),
            "unmatched": len(unmatched),
        })
        _commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"--- INGEST FAILED (upload {upload_id}) ---\n{traceback.format_exc()}")
        _fail_upload(upload_id, str(e), parsed["skipped_lines"])
        raise

    if unmatched:
        current_app.logger.warning(f"Upload {upload_id}: {len(unmatched)} unmatched device name(s): {unmatched[:10]}")
    current_app.logger.info(
        f"Upload {upload_id} completed: {len(records)} punches, {len(archived)} archived, "
        f"{result['records_created']} created, {result['records_updated']} updated"
    )

    return {
        "upload_id": upload_id,
        "total_records": len(records),
        "matched_count": matched_count,
        "unmatched_count": len(records) - matched_count,
        "matched_employees": len(matched_ids),
        "unmatched_names": unmatched,
        "duplicate_count": len(records) - len(archived),
        "date_warnings": parsed["date_warnings"],
        "skipped_lines": parsed["skipped_lines"],
        "records_created": result["records_created"],
        "records_updated": result["records_updated"],
        "records_skipped_verified": result["records_skipped_verified"],
        "non_work_day_scans": result["non_work_day_scans"],
        "no_schedule": result["no_schedule"],
    }


# -----------------------------
# Reprocess
# -----------------------------
@permission_required("attendance.reprocess")
def reprocess(date_from: date, date_to: date, actor, dry_run: bool = False) -> Dict[str, Any]:
    """
    Rebuild records in [date_from, date_to] from the archive as of now.
    Punches archived while this runs are left for the next run.
    """
    _check_range(date_from, date_to)
    snapshot = datetime.utcnow()

    book = ScheduleBook()
    scheduled_ids = _site_employee_ids(book, None, date_from, date_to)
    punch_ids = {
        emp_id for (emp_id,) in db.session.query(BiometricRecord.employee_id).filter(
            BiometricRecord.employee_id.isnot(None),
            BiometricRecord.record_date >= date_from - timedelta(days=1),
            BiometricRecord.record_date <= date_to + timedelta(days=1),
            BiometricRecord.archived_at <= snapshot,
        ).distinct().all()
    }

    try:
        result = reconcile_range(
            punch_ids | scheduled_ids, date_from, date_to,
            fill_employee_ids=scheduled_ids, fill_from=date_from, fill_to=date_to,
            schedule_for=book, archived_before=snapshot,
        )
        if dry_run:
            db.session.rollback()
        else:
            log_action(actor, "REPROCESS_ATTENDANCE", "attendance_record", None, meta={
                "date_from": date_from.isoformat(),
                "date_to": date_to.isoformat(),
                "created": result["records_created"],
                "updated": result["records_updated"],
            })
            _commit()
    except Exception:
        db.session.rollback()
        current_app.logger.error(f"--- REPROCESS FAILED ---\n{traceback.format_exc()}")
        raise

    result["warnings"] = [
        f"Employee {w['employee_id']} has punches on {w['date']} but no active schedule"
        for w in result["no_schedule"]
    ]
    result["dry_run"] = dry_run
    current_app.logger.info(
        f"Reprocess {date_from} to {date_to}{' (dry run)' if dry_run else ''}: "
        f"{result['records_created']} created, {result['records_updated']} updated, "
        f"{result['records_unchanged']} unchanged, {result['records_skipped_verified']} verified skipped"
    )
    return result


# -----------------------------
# Administrative actions
# -----------------------------
@permission_required("attendance.verify")
def verify(record_id: int, actor, actual_time_in: datetime = None, actual_time_out: datetime = None,
           status: str = None, notes: str = None) -> AttendanceRecord:
    _, settings, policy = _engine_parts()
    record = _get_or_404(AttendanceRecord, record_id)
    previous = record.status

    verify_record(record, actor.id, actual_time_in, actual_time_out, status or record.status, notes, settings)
    db.session.flush()
    sync_point_for_record(record, policy)
    log_action(actor, "VERIFY_ATTENDANCE", "attendance_record", record.id, meta={
        "from_status": previous, "to_status": record.status,
    })
    _commit()
    return record


@permission_required("attendance.verify")
def mark_advised_absence(record_id: int, actor, notes: str = None) -> AttendanceRecord:
    _, _, policy = _engine_parts()
    record = _get_or_404(AttendanceRecord, record_id)

    mark_advised(record, actor.id, notes)
    db.session.flush()
    sync_point_for_record(record, policy)
    log_action(actor, "MARK_ADVISED_ABSENCE", "attendance_record", record.id)
    _commit()
    return record


@permission_required("points.excuse")
def excuse(point_id: int, actor, reason: str, notes: str = None) -> AttendancePoint:
    point = _get_or_404(AttendancePoint, point_id)
    excuse_point(point, actor.id, reason, notes)
    log_action(actor, "EXCUSE_POINT", "attendance_point", point.id, meta={"reason": point.excuse_reason})
    _commit()
    return point


@permission_required("points.excuse")
def unexcuse(point_id: int, actor) -> AttendancePoint:
    point = _get_or_404(AttendancePoint, point_id)
    unexcuse_point(point)
    log_action(actor, "UNEXCUSE_POINT", "attendance_point", point.id)
    _commit()
    return point


@permission_required("points.manage")
def create_manual_point(employee_id: int, shift_date: date, point_type: str, actor,
                        points=None, is_advised: bool = False, notes: str = None,
                        violation_details: str = None) -> AttendancePoint:
    _get_or_404(Employee, employee_id)
    point = _create_manual_point(
        employee_id, shift_date, point_type, actor.id, points=points, is_advised=is_advised,
        notes=notes, violation_details=violation_details, policy=PointPolicy.from_config(current_app.config),
    )
    db.session.flush()
    log_action(actor, "CREATE_MANUAL_POINT", "attendance_point", point.id, meta={"point_type": point_type})
    _commit()
    return point


@permission_required("points.manage")
def update_manual_point(point_id: int, actor, **changes) -> AttendancePoint:
    point = _get_or_404(AttendancePoint, point_id)
    _update_manual_point(point, policy=PointPolicy.from_config(current_app.config), **changes)
    log_action(actor, "UPDATE_MANUAL_POINT", "attendance_point", point.id, meta={"fields": sorted(changes)})
    _commit()
    return point


@permission_required("points.manage")
def delete_manual_point(point_id: int, actor):
    point = _get_or_404(AttendancePoint, point_id)
    _delete_manual_point(point)
    log_action(actor, "DELETE_MANUAL_POINT", "attendance_point", point_id)
    _commit()


def statistics(employee_id: int, date_from: date = None, date_to: date = None,
               as_of: datetime = None) -> Dict[str, Any]:
    """
    Point sums for one employee. Points rolled off by GBRO count as expired,
    ``gbro_eligible_count`` covers the remaining points that can still roll off.
    """
    as_of = as_of or datetime.utcnow()
    config = current_app.config
    gbro = {
        "clean_days": config.get("GBRO_CLEAN_DAYS", 60),
        "per_roll_off": config.get("GBRO_ROLL_OFF_COUNT", 2),
    }

    stats = point_statistics(employee_id, date_from, date_to, as_of)

    rolled_off = 0.0
    for point, _ in gbro_rolled_off_points(employee_id, as_of, date_from, date_to, **gbro):
        value = float(point.points)
        rolled_off += value
        stats["by_type"][point.point_type] = round(stats["by_type"].get(point.point_type, 0) - value, 2)
    stats["active_points"] = round(stats["active_points"] - rolled_off, 2)
    stats["expired_points"] = round(stats["expired_points"] + rolled_off, 2)
    stats["by_type"] = {t: v for t, v in stats["by_type"].items() if v}
    stats["gbro_rolled_off_points"] = round(rolled_off, 2)

    stats["gbro_eligible_count"] = len(gbro_eligible_points(employee_id, as_of, date_from, date_to, **gbro))
    return stats
