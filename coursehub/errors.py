class CourseHubError(Exception):
    """Base error. `code` is machine readable, `status` is the HTTP status."""

    code = "ERROR"
    status = 500

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class ValidationError(CourseHubError):
    """Invalid input."""
    code = "VALIDATION_ERROR"
    status = 400


class OutOfRangeError(ValidationError):
    """Value out of range."""
    code = "OUT_OF_RANGE"


class BadRequest(CourseHubError):
    """Bad request."""
    code = "BAD_REQUEST"
    status = 400


class DuplicateOrInvalidInput(CourseHubError):
    """User already exists or invalid input"""
    code = "DUPLICATE_OR_INVALID_INPUT"
    status = 400


class InvalidCredentials(CourseHubError):
    """Invalid email or password"""
    code = "INVALID_CREDENTIALS"
    status = 401


class Forbidden(CourseHubError):
    """You do not have access to this page."""
    code = "FORBIDDEN"
    status = 403


class NotFound(CourseHubError):
    """Not found."""
    code = "NOT_FOUND"
    status = 404


class UpstreamError(CourseHubError):
    """AI request failed"""
    code = "UPSTREAM_ERROR"
    status = 502


class DatabaseError(CourseHubError):
    """Something went wrong"""
    code = "DATABASE_ERROR"
    status = 500
