"""Error codes dictionary.

Single source of truth for every error code raised by the media services,
its retryability and a human-readable recovery hint. Used by
``TestLogError.to_error_info`` and the API exception handlers.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Resource errors
    # ==========================================================================
    "TEST_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "Check the test id; the record may have been deleted",
    },
    "ASSET_NOT_FOUND": {
        "retryable": True,
        "suggested_fix": "Refresh the asset list and retry with a current asset id",
    },
    # ==========================================================================
    # Import validation errors (abort the batch before any copy)
    # ==========================================================================
    "UNSUPPORTED_FILE_TYPE": {
        "retryable": False,
        "suggested_fix": "Videos must be .mov, .mp4 or .m4v files",
    },
    "FILE_TOO_LARGE": {
        "retryable": False,
        "suggested_fix": "Trim or re-encode the video so it is at most 1 GiB",
    },
    "TOO_MANY_VIDEOS": {
        "retryable": False,
        "suggested_fix": "Remove an existing video before importing another one",
    },
    "DUPLICATE_VIDEO_ROLE": {
        "retryable": False,
        "suggested_fix": "Assign a different role or set the video to unassigned",
    },
    "TOO_MANY_TESTER_FILES": {
        "retryable": False,
        "suggested_fix": "Remove the existing tester data file first",
    },
    # ==========================================================================
    # Composition / export errors
    # ==========================================================================
    "MISSING_PRIMARY_VIDEO": {
        "retryable": False,
        "suggested_fix": "Select a primary (anchor view) video in the sync workspace",
    },
    "TRIM_RANGE_REQUIRED": {
        "retryable": False,
        "suggested_fix": "Set both trim in and trim out before exporting",
    },
    "INVALID_TRIM_RANGE": {
        "retryable": False,
        "suggested_fix": "Trim out must be later than trim in",
    },
    "ASSET_NOT_READABLE": {
        "retryable": False,
        "suggested_fix": "Check that the media file exists and is a valid video",
    },
    "EXPORT_FAILED": {
        "retryable": True,
        "suggested_fix": "Retry the export; check ffmpeg output in the server log",
    },
    # ==========================================================================
    # Reconciliation (counted, non-fatal)
    # ==========================================================================
    "HASH_FAILURE": {
        "retryable": True,
    },
    "AMBIGUOUS_MATCH": {
        "retryable": False,
        "suggested_fix": "Rename the storage folder so it matches exactly one test",
    },
    # ==========================================================================
    # Storage / generic errors
    # ==========================================================================
    "STORAGE_ERROR": {
        "retryable": True,
        "suggested_fix": "Check permissions and free space of the media root",
    },
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": "Check request parameters",
    },
    "INTERNAL_ERROR": {
        "retryable": True,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code, falling back to INTERNAL_ERROR."""
    return ERROR_CODES.get(code, ERROR_CODES["INTERNAL_ERROR"])
