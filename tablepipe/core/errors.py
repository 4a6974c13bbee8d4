"""Exception taxonomy for pipeline runs and target writers."""

from typing import Any, Dict, List, Optional


class TablePipeError(Exception):
    """Base exception for all tablepipe errors.

    Args:
    ----
        message: Human-readable error message
        context: Additional context information

    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }
        if self.__cause__ is not None:
            result["cause"] = f"{type(self.__cause__).__name__}: {self.__cause__}"
        return result


class ConfigurationError(TablePipeError):
    """Invalid options detected before any row is written."""


class ProviderError(ConfigurationError):
    """A source or target string does not name a known provider."""

    def __init__(self, location: str, known_prefixes: List[str]):
        prefixes = ", ".join(known_prefixes)
        super().__init__(
            f"Cannot determine provider for '{location}'. Known prefixes: {prefixes}",
            context={"location": location},
        )


class WriterStateError(TablePipeError):
    """A writer operation was called in a state that does not allow it."""

    def __init__(self, operation: str, state: Any):
        super().__init__(
            f"Cannot {operation} while writer is {getattr(state, 'name', state)}",
            context={"operation": operation, "state": str(state)},
        )


class SchemaIncompatibleError(TablePipeError):
    """Strict schema validation found hard incompatibilities."""

    def __init__(self, report: Any):
        self.report = report
        details = "; ".join(report.error_messages()) or "unknown incompatibility"
        super().__init__(
            f"Source schema is incompatible with target: {details}",
            context={"errors": report.error_messages()},
        )


class BatchWriteError(TablePipeError):
    """A batch failed and the failure analyzer localized the offending value.

    The analysis is prepended to the original driver message, which is also
    kept as ``__cause__``.
    """

    def __init__(self, analysis: str, original: BaseException, batch_size: int):
        self.analysis = analysis
        self.original = original
        self.batch_size = batch_size
        super().__init__(
            f"{analysis}\n\nOriginal error: {type(original).__name__}: {original}",
            context={"batch_size": batch_size},
        )


class HookError(TablePipeError):
    """A pre or post hook command failed."""

    def __init__(self, hook_name: str, command: str, message: str):
        self.hook_name = hook_name
        self.command = command
        super().__init__(
            f"{hook_name} hook failed: {message}",
            context={"hook": hook_name, "command": command},
        )
