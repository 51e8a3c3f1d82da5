"""
Read-only review aid over the punch archive. Flags scan patterns that
usually mean buddy punching, device glitches or a mis-set clock.
"""
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Dict, List

from models.biometric import BiometricRecord

MAX_TRAVEL_MINUTES = 30
UNUSUAL_HOUR_START = 2
UNUSUAL_HOUR_END = 5
MAX_SCANS_PER_DAY = 6


def _load(date_from: date, date_to: date, employee_ids=None) -> List[BiometricRecord]:
    q = BiometricRecord.query.filter(
        BiometricRecord.employee_id.isnot(None),
        BiometricRecord.record_date >= date_from,
        BiometricRecord.record_date <= date_to,
    )
    if employee_ids is not None:
        q = q.filter(BiometricRecord.employee_id.in_(list(employee_ids)))
    return q.order_by(BiometricRecord.employee_id.asc(), BiometricRecord.punched_at.asc(),
                      BiometricRecord.id.asc()).all()


def simultaneous_sites(records: List[BiometricRecord]) -> List[Dict[str, Any]]:
    found = []
    by_employee = defaultdict(list)
    for r in records:
        by_employee[r.employee_id].append(r)

    for emp_id, rows in by_employee.items():
        for current, nxt in zip(rows, rows[1:]):
            if current.site_id is None or nxt.site_id is None or current.site_id == nxt.site_id:
                continue
            minutes_apart = int((nxt.punched_at - current.punched_at).total_seconds() // 60)
            if minutes_apart < MAX_TRAVEL_MINUTES:
                found.append({
                    "type": "simultaneous_sites",
                    "severity": "high" if minutes_apart < 10 else "medium",
                    "employee_id": emp_id,
                    "record_ids": [current.id, nxt.id],
                    "sites": [current.site_id, nxt.site_id],
                    "minutes_apart": minutes_apart,
                    "description": f"Scans {minutes_apart} minute(s) apart at different sites",
                })
    return found


def duplicate_scans(records: List[BiometricRecord]) -> List[Dict[str, Any]]:
    by_minute = defaultdict(list)
    for r in records:
        by_minute[(r.employee_id, r.punched_at.replace(second=0, microsecond=0))].append(r)

    found = []
    for (emp_id, minute), rows in by_minute.items():
        if len(rows) > 1:
            found.append({
                "type": "duplicate_scans",
                "severity": "high" if len(rows) > 3 else "low",
                "employee_id": emp_id,
                "datetime": minute.isoformat(sep=" "),
                "scan_count": len(rows),
                "record_ids": [r.id for r in rows],
                "description": f"{len(rows)} scans within the same minute",
            })
    return found


def unusual_hours(records: List[BiometricRecord]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "unusual_hours",
            "severity": "low",
            "employee_id": r.employee_id,
            "datetime": r.punched_at.isoformat(sep=" "),
            "record_id": r.id,
            "description": f"Scan at unusual hour ({r.punched_at.strftime('%H:%M')})",
        }
        for r in records
        if UNUSUAL_HOUR_START <= r.punched_at.hour < UNUSUAL_HOUR_END
    ]


def excessive_scans(records: List[BiometricRecord]) -> List[Dict[str, Any]]:
    by_day = defaultdict(list)
    for r in records:
        by_day[(r.employee_id, r.record_date)].append(r)

    found = []
    for (emp_id, d), rows in by_day.items():
        if len(rows) > MAX_SCANS_PER_DAY:
            found.append({
                "type": "excessive_scans",
                "severity": "high" if len(rows) > 10 else "medium",
                "employee_id": emp_id,
                "date": d.isoformat(),
                "scan_count": len(rows),
                "record_ids": [r.id for r in rows],
                "description": f"{len(rows)} scans on {d.isoformat()} (expected <= {MAX_SCANS_PER_DAY})",
            })
    return found


def detect_anomalies(date_from: date = None, date_to: date = None, employee_ids=None) -> Dict[str, List]:
    date_to = date_to or date.today()
    date_from = date_from or (date_to - timedelta(days=7))
    records = _load(date_from, date_to, employee_ids)
    return {
        "simultaneous_sites": simultaneous_sites(records),
        "duplicate_scans": duplicate_scans(records),
        "unusual_hours": unusual_hours(records),
        "excessive_scans": excessive_scans(records),
    }


def anomaly_statistics(anomalies: Dict[str, List]) -> Dict[str, Any]:
    by_severity = {"high": 0, "medium": 0, "low": 0}
    for items in anomalies.values():
        for item in items:
            by_severity[item["severity"]] += 1
    return {
        "total_anomalies": sum(len(v) for v in anomalies.values()),
        "by_type": {k: len(v) for k, v in anomalies.items()},
        "by_severity": by_severity,
    }
