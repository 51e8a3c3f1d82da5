import os
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

SECRET_KEY = os.getenv("SECRET_KEY", "attendance-secret-key")

# Attendance database (SQLite for now, can switch to PostgreSQL)
ATTENDANCE_DB = os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(BASE_DIR, 'attendance.db')}")


def _int_env(name, default):
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


class Config:
    SQLALCHEMY_DATABASE_URI = ATTENDANCE_DB
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = SECRET_KEY

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

    # Shift-date assignment
    EARLY_ARRIVAL_MINUTES = _int_env("EARLY_ARRIVAL_MINUTES", 240)
    GRAVEYARD_START_CUTOFF = os.getenv("GRAVEYARD_START_CUTOFF", "05:00")

    # Reconciliation
    DOUBLE_PUNCH_MINUTES = _int_env("DOUBLE_PUNCH_MINUTES", 10)
    OVERTIME_THRESHOLD_MINUTES = _int_env("OVERTIME_THRESHOLD_MINUTES", 30)
    MAX_SHIFT_MINUTES = _int_env("MAX_SHIFT_MINUTES", 1200)
    UTILITY_REQUIRED_MINUTES = _int_env("UTILITY_REQUIRED_MINUTES", 480)
    UNDERTIME_HOUR_MINUTES = _int_env("UNDERTIME_HOUR_MINUTES", 60)
    LUNCH_DEDUCTION_MINUTES = 60
    LUNCH_DEDUCTION_AFTER_MINUTES = 300

    # Points
    POINT_VALUES = {
        "whole_day_absence": 1.00,
        "half_day_absence": 0.50,
        "undertime_more_than_hour": 0.50,
        "tardy": 0.25,
        "undertime": 0.25,
    }
    POINT_EXPIRY_MONTHS = _int_env("POINT_EXPIRY_MONTHS", 6)
    NCNS_POINT_EXPIRY_MONTHS = _int_env("NCNS_POINT_EXPIRY_MONTHS", 12)
    # Only admin-verified records accrue system points when set
    POINTS_REQUIRE_VERIFICATION = os.getenv("POINTS_REQUIRE_VERIFICATION", "false").lower() == "true"

    # GBRO: days without a new point before the newest points roll off
    GBRO_CLEAN_DAYS = _int_env("GBRO_CLEAN_DAYS", 60)
    GBRO_ROLL_OFF_COUNT = _int_env("GBRO_ROLL_OFF_COUNT", 2)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    LOG_LEVEL = "WARNING"
