"""Custom exceptions for the testlog media services.

Every failure the import, sync, composition and repair services raise is a
``TestLogError`` subclass carrying a machine-readable code (see
``testlog.constants.error_codes``) and the HTTP status the API maps it to.
"""

from testlog.constants.error_codes import get_error_spec
from testlog.schemas.envelope import ErrorInfo


class TestLogError(Exception):
    """Base exception for all testlog application errors."""

    __test__ = False  # not a pytest test class

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        field: str | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.field = field
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        return ErrorInfo(
            code=self.code,
            message=self.message,
            field=self.field,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
        )


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class ResourceNotFoundError(TestLogError):
    """Base class for resource not found errors."""

    status_code = 404


class TestNotFoundError(ResourceNotFoundError):
    """Pull test not found."""

    code = "TEST_NOT_FOUND"
    message = "Test not found"

    def __init__(self, test_id: str | None = None):
        message = f"Test not found: {test_id}" if test_id else self.message
        super().__init__(message)


class AssetNotFoundError(ResourceNotFoundError):
    """Asset not found."""

    code = "ASSET_NOT_FOUND"
    message = "Asset not found"

    def __init__(self, asset_id: str | None = None):
        message = f"Asset not found: {asset_id}" if asset_id else self.message
        super().__init__(message)


# =============================================================================
# Import Validation Errors (400)
# =============================================================================


class ValidationError(TestLogError):
    """Base class for validation errors."""

    code = "VALIDATION_ERROR"
    status_code = 400


class UnsupportedFileTypeError(ValidationError):
    """Video file extension is not one of the supported containers."""

    code = "UNSUPPORTED_FILE_TYPE"
    message = "Unsupported file type"

    def __init__(self, extension: str):
        self.extension = extension
        super().__init__(f"Unsupported file type: .{extension}" if extension else self.message)


class FileTooLargeError(ValidationError):
    code = "FILE_TOO_LARGE"
    message = "File is too large. Maximum size is 1 GB."


class TooManyVideosError(ValidationError):
    code = "TOO_MANY_VIDEOS"
    message = "A test can have at most 2 videos."


class DuplicateVideoRoleError(ValidationError):
    code = "DUPLICATE_VIDEO_ROLE"
    message = "Each video role can only be assigned once."

    def __init__(self, role: str | None = None):
        message = f"Video role already assigned: {role}" if role else self.message
        super().__init__(message, field="video_role")


class TooManyTesterFilesError(ValidationError):
    code = "TOO_MANY_TESTER_FILES"
    message = "A test can have only one tester binary file."


# =============================================================================
# Composition / Export Errors
# =============================================================================


class MissingPrimaryVideoError(ValidationError):
    code = "MISSING_PRIMARY_VIDEO"
    message = "Select a primary video before exporting."


class TrimRangeRequiredError(ValidationError):
    code = "TRIM_RANGE_REQUIRED"
    message = "Set both trim in and trim out before exporting."


class InvalidTrimRangeError(ValidationError):
    code = "INVALID_TRIM_RANGE"
    message = "Trim out must be greater than trim in."

    def __init__(self, trim_in: float | None = None, trim_out: float | None = None):
        message = self.message
        if trim_in is not None and trim_out is not None:
            message = f"Invalid trim range: {trim_in:.3f}s to {trim_out:.3f}s"
        super().__init__(message, field="trim_out")


class AssetNotReadableError(TestLogError):
    code = "ASSET_NOT_READABLE"
    status_code = 422
    message = "Selected media could not be loaded."


class ExportFailedError(TestLogError):
    code = "EXPORT_FAILED"
    status_code = 500
    message = "Video export failed."


# =============================================================================
# Reconciliation Errors (counted in the repair report, not propagated)
# =============================================================================


class HashFailureError(TestLogError):
    code = "HASH_FAILURE"
    message = "Could not hash file"


class AmbiguousMatchError(TestLogError):
    code = "AMBIGUOUS_MATCH"
    status_code = 409
    message = "Storage folder matches more than one test"


class StorageError(TestLogError):
    code = "STORAGE_ERROR"
    status_code = 500
    message = "Managed storage operation failed"
