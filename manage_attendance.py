import argparse
import sys
from datetime import datetime

from app import app, db
from biometric.actors import SYSTEM_ACTOR
from biometric.anomalies import detect_anomalies, anomaly_statistics
from biometric.exceptions import AttendanceError
from biometric.reconciler import review_queue
from biometric.services import ingest, reprocess, statistics


def _date(value):
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date (expected YYYY-MM-DD): {value}")


def ingest_file(args):
    """Ingests a scanner punch-log file."""
    with open(args.file, "rb") as f:
        raw = f.read()

    print(f"📥 Ingesting {args.file} ({args.date_from} to {args.date_to})...")
    with app.app_context():
        try:
            result = ingest(raw, args.date_from, args.date_to, args.site, SYSTEM_ACTOR, filename=args.file)
        except AttendanceError as e:
            print(f"❌ {e}")
            sys.exit(1)

    print(f"✅ Upload {result['upload_id']}: {result['total_records']} punches, "
          f"{result['matched_count']} matched, {result['duplicate_count']} already archived")
    print(f"   Records created: {result['records_created']}, updated: {result['records_updated']}")
    for name in result["unmatched_names"]:
        print(f"⚠️  Unmatched device name: {name}")
    for warning in result["date_warnings"]:
        print(f"⚠️  {warning}")
    for line in result["skipped_lines"]:
        print(f"⚠️  Line {line['line_no']} skipped: {line['reason']}")


def reprocess_range(args):
    """Rebuilds attendance records for a date range from the punch archive."""
    with app.app_context():
        try:
            result = reprocess(args.date_from, args.date_to, SYSTEM_ACTOR, dry_run=args.dry)
        except AttendanceError as e:
            print(f"❌ {e}")
            sys.exit(1)

    label = " (dry run, nothing saved)" if args.dry else ""
    print(f"🔄 Reprocessed {args.date_from} to {args.date_to}{label}")
    print(f"   Created: {result['records_created']}")
    print(f"   Updated: {result['records_updated']}")
    print(f"   Unchanged: {result['records_unchanged']}")
    print(f"   Skipped (admin verified): {result['records_skipped_verified']}")
    print(f"   Non-work-day scans: {len(result['non_work_day_scans'])}")
    for warning in result["warnings"]:
        print(f"⚠️  {warning}")


def show_stats(args):
    """Shows attendance point totals for an employee."""
    with app.app_context():
        stats = statistics(args.employee_id, args.date_from, args.date_to)

    print(f"{'Total':<10} {'Active':<10} {'Expired':<10} {'Excused':<10}")
    print("-" * 42)
    print(f"{stats['total_points']:<10} {stats['active_points']:<10} "
          f"{stats['expired_points']:<10} {stats['excused_points']:<10}")
    for point_type, value in sorted(stats["by_type"].items()):
        print(f"   {point_type}: {value}")
    print(f"GBRO: {stats['gbro_rolled_off_points']} rolled off, "
          f"{stats['gbro_eligible_count']} point(s) still eligible")


def show_anomalies(args):
    """Lists suspicious scan patterns in the punch archive."""
    with app.app_context():
        anomalies = detect_anomalies(args.date_from, args.date_to)

    summary = anomaly_statistics(anomalies)
    print(f"🔎 {summary['total_anomalies']} anomalies "
          f"(high {summary['by_severity']['high']}, medium {summary['by_severity']['medium']}, "
          f"low {summary['by_severity']['low']})")
    for kind, items in anomalies.items():
        for item in items:
            print(f"[{item['severity']:<6}] {kind:<20} employee {item['employee_id']}: {item['description']}")


def show_review_queue(args):
    """Lists records waiting for an administrator."""
    with app.app_context():
        rows = review_queue(args.date_from, args.date_to)
        if not rows:
            print("No records need review.")
            return

        print(f"{'ID':<6} {'Employee':<10} {'Shift date':<12} {'Status':<16} {'In':<20} {'Out':<20}")
        print("-" * 88)
        for r in rows:
            print(f"{r.id:<6} {r.employee_id:<10} {r.shift_date.isoformat():<12} {r.status:<16} "
                  f"{str(r.actual_time_in or '-'):<20} {str(r.actual_time_out or '-'):<20}")


def init_db(args):
    """Creates all tables."""
    with app.app_context():
        db.create_all()
    print("✅ Database initialized")


def _add_range(p, required=True):
    p.add_argument("--from", dest="date_from", type=_date, required=required, help="Start date (YYYY-MM-DD).")
    p.add_argument("--to", dest="date_to", type=_date, required=required, help="End date (YYYY-MM-DD).")


def main():
    parser = argparse.ArgumentParser(description="Biometric attendance utility.")
    subparsers = parser.add_subparsers(dest="command", help="Available commands", required=True)

    # --- Ingest Command ---
    ingest_parser = subparsers.add_parser("ingest", help="Ingest a scanner punch-log file.")
    ingest_parser.add_argument("file", type=str, help="Path to the exported TXT file.")
    _add_range(ingest_parser)
    ingest_parser.add_argument("--site", type=int, default=None, help="Site id of the scanner.")
    ingest_parser.set_defaults(func=ingest_file)

    # --- Reprocess Command ---
    reprocess_parser = subparsers.add_parser("reprocess", help="Rebuild records from archived punches.")
    _add_range(reprocess_parser)
    reprocess_parser.add_argument("--dry", action="store_true", help="Show what would change without saving.")
    reprocess_parser.set_defaults(func=reprocess_range)

    # --- Stats Command ---
    stats_parser = subparsers.add_parser("stats", help="Show point totals for an employee.")
    stats_parser.add_argument("employee_id", type=int, help="Employee id.")
    _add_range(stats_parser, required=False)
    stats_parser.set_defaults(func=show_stats)

    # --- Anomalies Command ---
    anomalies_parser = subparsers.add_parser("anomalies", help="Detect suspicious scan patterns.")
    _add_range(anomalies_parser, required=False)
    anomalies_parser.set_defaults(func=show_anomalies)

    # --- Review Queue Command ---
    review_parser = subparsers.add_parser("review", help="List records that need manual review.")
    _add_range(review_parser)
    review_parser.set_defaults(func=show_review_queue)

    # --- Init DB Command ---
    init_parser = subparsers.add_parser("init-db", help="Create database tables.")
    init_parser.set_defaults(func=init_db)

    if len(sys.argv) == 1:
        parser.print_help(sys.stderr)
        sys.exit(1)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
