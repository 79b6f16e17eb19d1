# backend/firewatch/errors.py
from typing import Optional


class FireWatchError(Exception):
    """Base class for every error the ingestion core reports to its callers."""

    status_code = 500

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class NotFoundError(FireWatchError):
    """A referenced receiver, market or ledger id does not exist."""

    status_code = 404


class RangeTooWideError(FireWatchError):
    status_code = 400

    def __init__(self, max_days: int, requested_days: int):
        super().__init__(f"조회 기간은 최대 {max_days}일입니다 (요청: {requested_days}일)")
        self.max_days = max_days
        self.requested_days = requested_days


class RegistryUnavailableError(FireWatchError):
    """The common code table could not be loaded; callers degrade to raw codes."""

    status_code = 503


class ValidationError(FireWatchError):
    status_code = 422


class StorageError(FireWatchError):
    status_code = 500


class DeviceIntegrityError(FireWatchError):
    """Device references disagree, e.g. one receiver MAC registered in two markets."""

    status_code = 409
