import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class GradebookError(Exception):
    """Base class for every failure raised by the ledger core."""


class StorageError(GradebookError):
    """A ledger read or write failed in the database layer."""

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class StaleWriteError(GradebookError):
    def __init__(self, key_description: str, expected_version: Optional[int], current_version: Optional[int]):
        super().__init__(
            f"Attendance for {key_description} changed since it was loaded "
            f"(expected version {expected_version}, stored version {current_version})"
        )
        self.expected_version = expected_version
        self.current_version = current_version


class GroupNotFoundError(GradebookError):
    def __init__(self, group_id: str):
        super().__init__(f"Group {group_id} not found")
        self.group_id = group_id


class GradeNotFoundError(GradebookError):
    def __init__(self, grade_id: str):
        super().__init__(f"Grade {grade_id} not found")
        self.grade_id = grade_id


class AttendanceNotFoundError(GradebookError):
    def __init__(self, entry_id: str):
        super().__init__(f"Attendance entry {entry_id} not found")
        self.entry_id = entry_id


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Re-raise driver failures inside the block as StorageError."""
    try:
        yield
    except PyMongoError as exc:
        logger.error("%s failed: %s", operation, exc)
        raise StorageError(operation, exc) from exc
