# models/__init__.py
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Import all models
from .employee import Employee
from .schedule import EmployeeSchedule
from .biometric import AttendanceUpload, BiometricRecord
from .attendance import AttendanceRecord
from .attendance_point import AttendancePoint
from .audit_log import AuditLog
