"""
Unified error handling for stackdeploy.

Three kinds of failure are always kept apart:

- Usage errors: the caller asked for something that cannot be satisfied
  (unknown stack, ambiguous stack selection). Shown verbatim.
- Internal errors: the orchestrator violated its own sequencing
  (e.g. reading a plan before diff ran). Indicates a defect.
- External tool errors: Terraform itself failed. Carries the raw
  diagnostic text the engine produced.

Exit Codes:
- 0: Success
- 1: Run failed for a reason no phase classified
- 130: Interrupted

A run that reaches its error state raises ``ExecutionFailed`` carrying the
exit code of the error the failing phase raised, so `stackdeploy deploy`
exits 2 for an unknown stack and 11 for a terraform failure.
- 2: Usage error
- 11: External tool error (terraform / Terraform Cloud)
- 127: Internal or unknown error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    RUN_FAILED = 1
    USAGE_ERROR = 2
    EXTERNAL_TOOL_ERROR = 11
    INTERNAL_ERROR = 127


class StackDeployError(Exception):
    """Base exception for stackdeploy errors with exit code support."""

    exit_code: ExitCode = ExitCode.INTERNAL_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UsageError(StackDeployError):
    """Raised for caller-correctable input (unknown or ambiguous stack)."""

    exit_code = ExitCode.USAGE_ERROR


class InternalError(StackDeployError):
    """Raised when the orchestrator's own sequencing is violated."""

    exit_code = ExitCode.INTERNAL_ERROR
    show_traceback = True


class ExternalToolError(StackDeployError):
    """Raised when terraform or a remote workspace reports a failure."""

    exit_code = ExitCode.EXTERNAL_TOOL_ERROR

    def __init__(
        self,
        message: str,
        *,
        diagnostic: str = "",
        returncode: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.diagnostic = diagnostic
        self.returncode = returncode


class ExecutionFailed(StackDeployError):
    """Raised when a run ends in the error state."""

    exit_code = ExitCode.RUN_FAILED

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        if exit_code is not None:
            self.exit_code = ExitCode(exit_code)


class InterpolationError(UsageError):
    """Raised when an attribute reference cannot be built."""


INTERRUPTED = 130

F = TypeVar("F", bound=Callable[..., int])


def exit_code_for(error: BaseException) -> int:
    """Exit code a command should return for ``error``."""
    if isinstance(error, StackDeployError):
        return error.exit_code
    if isinstance(error, KeyboardInterrupt):
        return INTERRUPTED
    return ExitCode.INTERNAL_ERROR


def format_error_message(error: StackDeployError) -> str:
    """
    Render an error for the terminal.

    Usage errors and failed runs are shown verbatim. Internal errors add
    their debugging details; external tool errors add the engine's
    diagnostic unless the message already quotes it.
    """
    message = error.message
    if isinstance(error, InternalError) and error.details:
        message += " (" + ", ".join(f"{k}={v}" for k, v in error.details.items()) + ")"
    elif isinstance(error, ExternalToolError) and error.diagnostic and error.diagnostic not in message:
        message += "\n" + error.diagnostic
    return message


def main_with_error_handling(
    *,
    render: Callable[[str], None] | None = None,
    show_traceback: bool = False,
) -> Callable[[F], F]:
    """
    Decorator for CLI entrypoints: turn exceptions into exit codes.

    ``render`` receives the user-facing message of every failure. Interrupts
    are not rendered.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except KeyboardInterrupt:
                logger.info("command_interrupted")
                return INTERRUPTED
            except StackDeployError as exc:
                code = exit_code_for(exc)
                logger.error(
                    "command_failed",
                    error_type=type(exc).__name__,
                    message=exc.message,
                    exit_code=int(code),
                    **exc.details,
                )
                if render is not None:
                    render(format_error_message(exc))
                if exc.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return code
            except Exception as exc:
                logger.exception("unexpected_error", error_type=type(exc).__name__)
                if render is not None:
                    render(f"Unexpected error: {exc}")
                return ExitCode.INTERNAL_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator
