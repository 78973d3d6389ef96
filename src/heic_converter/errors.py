from __future__ import annotations


class ConverterError(RuntimeError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class BatchValidationError(ConverterError):
    """Raised when a submission is rejected as a whole."""

    def __init__(self, code: str, message: str, names: list[str] | None = None) -> None:
        super().__init__(code, message)
        self.names = list(names or [])


class ConversionError(ConverterError):
    """Raised by the codec adapter for a single failed item."""


class ArchiveError(ConverterError):
    """Raised when the output archive cannot be assembled."""


class BatchFailedError(ConverterError):
    """Raised when a batch finishes without a single usable output."""

    def __init__(self, code: str, message: str, summary: object | None = None) -> None:
        super().__init__(code, message)
        self.summary = summary


class InvalidTransitionError(ConverterError):
    def __init__(self, operation: str, state: str) -> None:
        super().__init__("INVALID_TRANSITION", f"Cannot {operation} while job is {state}")
        self.operation = operation
        self.state = state


__all__ = [
    "ArchiveError",
    "BatchFailedError",
    "BatchValidationError",
    "ConversionError",
    "ConverterError",
    "InvalidTransitionError",
]
