from __future__ import annotations


class SegtuiError(Exception):
    pass


class ValidationError(SegtuiError, ValueError):
    pass


class EmptyBatch(ValidationError):
    def __init__(self, root: str | None = None) -> None:
        self.root = root
        where = f" in {root}" if root else ""
        super().__init__(f"No media files found{where}")


class EmptySelection(ValidationError):
    def __init__(self) -> None:
        super().__init__("Select at least one frame range before generating")


class InvalidRange(ValidationError):
    pass


class OverlappingRange(ValidationError):
    def __init__(self, start: int, end: int, existing: tuple[int, int]) -> None:
        self.start = start
        self.end = end
        self.existing = existing
        super().__init__(
            f"Range {start}-{end} overlaps confirmed range {existing[0]}-{existing[1]}"
        )


class RangeIndexError(ValidationError, IndexError):
    pass


class InvalidTransition(ValidationError):
    def __init__(self, entity: str, current: str, target: str) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Invalid {entity} transition: {current} -> {target}")


class InvalidControllerState(ValidationError):
    def __init__(self, operation: str, state: str) -> None:
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while {state}")


class PreparationError(SegtuiError, RuntimeError):
    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to prepare {path}: {reason}")


class ProcessingError(SegtuiError, RuntimeError):
    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(reason)


class IncompatibleInputs(SegtuiError, RuntimeError):
    """Generation cannot proceed with the current options.

    Not fatal: retrying with ``force`` re-encodes and skips the check.
    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class PersistError(SegtuiError, OSError):
    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to write checkpoint {path}: {reason}")
