class AttendanceError(Exception):
    """Base class for attendance engine errors."""


class ValidationError(AttendanceError, ValueError):
    pass


class EmptyPunchFileError(ValidationError):
    """Raised when a punch log yields no valid records."""

    def __init__(self, message, skipped_lines=None):
        super().__init__(message)
        self.skipped_lines = skipped_lines or []


class NotFoundError(AttendanceError, LookupError):
    pass


class PermissionDenied(AttendanceError):
    def __init__(self, permission_code):
        super().__init__(f"Insufficient permissions: {permission_code}")
        self.permission_code = permission_code


class PointLockedError(AttendanceError):
    """System-derived points can only be changed through their record."""
