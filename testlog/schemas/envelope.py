from pydantic import BaseModel


class ErrorInfo(BaseModel):
    code: str
    message: str
    field: str | None = None
    retryable: bool = False
    suggested_fix: str | None = None  # Human-readable fix suggestion


class ErrorResponse(BaseModel):
    error: ErrorInfo
