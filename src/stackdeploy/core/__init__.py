"""Core modules for stackdeploy - centralized definitions and utilities."""

from stackdeploy.core.errors import (
    ExecutionFailed,
    ExitCode,
    ExternalToolError,
    InternalError,
    InterpolationError,
    StackDeployError,
    UsageError,
    exit_code_for,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "StackDeployError",
    "UsageError",
    "InternalError",
    "ExternalToolError",
    "ExecutionFailed",
    "InterpolationError",
    "exit_code_for",
    "main_with_error_handling",
    "format_error_message",
]
