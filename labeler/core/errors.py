# labeler/core/errors.py
from typing import Any, Dict


class LabelingError(Exception):
    """Base class for every error raised by the labeling engines."""

    name = "Labeling error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "message": self.message}


class LabelValidationError(LabelingError):
    """A label assignment or schema edit was rejected. State is left untouched."""

    name = "Label validation error"


class CrossPageLabelError(LabelValidationError):
    name = "Cross-page label error"

    def __init__(self, message: str = (
        "Sorry, we don't support cross-page labeling with the same field. "
        "You can create a new field to label the value on another page."
    )):
        super().__init__(message)


class PersistenceError(LabelingError):
    """The storage collaborator was unreachable or rejected a read/write."""

    name = "Persistence error"

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "code": self.code, "message": self.message}


# storage providers raise this name
StorageError = PersistenceError


class NotFoundError(PersistenceError):
    def __init__(self, path: str):
        super().__init__("NotFound", f"File not found: {path}")
        self.path = path


class InvariantViolation(LabelingError):
    """A lookup that must succeed did not, e.g. a label path with no field behind it."""

    name = "Invariant violation"


class UnknownFieldError(InvariantViolation):
    def __init__(self, field_key: str):
        super().__init__(f"Field '{field_key}' does not exist in the schema.")
        self.field_key = field_key
