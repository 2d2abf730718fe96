# FILE: medkit/core/exceptions.py
from __future__ import annotations

from typing import Any, Optional


class MedkitError(Exception):
    """Base for every error the API maps to an explicit response."""

    status_code: int = 500
    code: str = "ERROR"

    def __init__(self, msg: str) -> None:
        super().__init__(msg)
        self.msg = msg


# ---------- not found ----------
class NotFoundError(MedkitError):
    status_code = 404
    code = "NOT_FOUND"


class DrugNotFoundError(NotFoundError):
    code = "DRUG_NOT_FOUND"

    def __init__(self, drug_id: Any) -> None:
        super().__init__(f"Drug not found with ID: {drug_id}")
        self.drug_id = drug_id


# ---------- invalid input ----------
class InvalidInputError(MedkitError):
    status_code = 400
    code = "INVALID_INPUT"

    def __init__(self, field: str, value: Any, msg: Optional[str] = None) -> None:
        super().__init__(msg or f"Invalid value for '{field}': {value!r}")
        self.field = field
        self.value = value


class InvalidDrugFormError(InvalidInputError):
    code = "INVALID_DRUG_FORM"

    def __init__(self, value: Any) -> None:
        super().__init__("form", value, f"No such drug form for 'form': {value!r}")


class InvalidSortFieldError(InvalidInputError):
    code = "INVALID_SORT_FIELD"

    def __init__(self, value: Any, allowed) -> None:
        super().__init__(
            "sort", value,
            f"Invalid sort field for 'sort': {value!r}. "
            f"Allowed: {', '.join(allowed)}")


class InvalidDateRangeError(InvalidInputError):
    code = "INVALID_DATE_RANGE"


class InvalidPageRequestError(InvalidInputError):
    code = "INVALID_PAGE_REQUEST"


# ---------- auth ----------
class UnauthenticatedError(MedkitError):
    status_code = 401
    code = "UNAUTHENTICATED"


class InvalidPasswordError(MedkitError):
    status_code = 401
    code = "INVALID_PASSWORD"

    def __init__(self, msg: str = "Invalid password") -> None:
        super().__init__(msg)


class ForbiddenError(MedkitError):
    status_code = 403
    code = "FORBIDDEN"


# ---------- infrastructure ----------
class EmailSendingError(MedkitError):
    status_code = 502
    code = "EMAIL_SEND_FAILED"


class CacheUnavailableError(MedkitError):
    status_code = 503
    code = "CACHE_UNAVAILABLE"


class JobAlreadyRunningError(MedkitError):
    status_code = 409
    code = "JOB_ALREADY_RUNNING"
