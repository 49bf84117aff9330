"""
Centralized logging and error handling utilities for the chat relay.

This module provides decorators and helper functions to standardize logging
and error handling patterns across the codebase, so that route handlers and
service methods report failures the same way.

Features:
- Structured logging with contextual information
- Error classification into HTTP status codes and categories
- Route decorator that converts unexpected errors into API errors
- Performance timing for operations
"""

from __future__ import annotations

import functools
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import aiosqlite
import structlog
from pydantic import ValidationError

from chatrelay.exceptions import (
    AuthenticationError,
    ChatNotFoundError,
    UnsupportedModelError,
)
from chatrelay.llm.exceptions import LLMError

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Type variables for generic decorators
P = ParamSpec("P")
T = TypeVar("T")
AsyncCallable = Callable[P, Awaitable[T]]

logger = structlog.get_logger(__name__)

HTTP_BAD_REQUEST = 400
HTTP_INTERNAL_ERROR = 500


class ApiError(Exception):
    """Error that maps directly onto an HTTP error response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        category: str,
        data: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.category = category
        self.data = data or {}


class ErrorHandler:
    """Centralized error classification with structured logging."""

    @staticmethod
    def classify_error(error: Exception) -> tuple[int, str]:
        """
        Classify an error and return the HTTP status code and error category.

        Args:
            error: The exception to classify

        Returns:
            Tuple of (status_code, error_category)
        """
        if isinstance(error, ApiError):
            return error.status_code, error.category
        if isinstance(error, ChatNotFoundError):
            return 404, "not_found"
        if isinstance(error, AuthenticationError):
            return 401, "authentication_error"
        if isinstance(error, ValidationError | UnsupportedModelError):
            return HTTP_BAD_REQUEST, "validation_error"
        if isinstance(error, LLMError):
            return 502, "provider_error"
        if isinstance(error, TimeoutError):
            return 504, "timeout_error"
        if isinstance(error, aiosqlite.Error):
            return HTTP_INTERNAL_ERROR, "persistence_error"
        if isinstance(error, ConnectionError | OSError):
            return 503, "connection_error"
        return HTTP_INTERNAL_ERROR, "unknown_error"

    @staticmethod
    def create_api_error(
        error: Exception,
        operation: str,
        context: dict[str, Any] | None = None,
        custom_message: str | None = None,
    ) -> ApiError:
        """
        Create a standardized ApiError with structured logging.

        Client errors (4xx) keep the original message, since it tells the
        caller what to fix. Server errors use ``custom_message`` so internal
        details never reach the response body.

        Args:
            error: Original exception
            operation: Description of the operation that failed
            context: Additional context for logging and error data
            custom_message: Message returned for server-side failures

        Returns:
            ApiError with status code and category filled in
        """
        status_code, error_category = ErrorHandler.classify_error(error)
        context = context or {}

        if status_code < HTTP_INTERNAL_ERROR:
            message = str(error)
        else:
            message = custom_message or f"{operation} failed"

        log = logger.warning if status_code < HTTP_INTERNAL_ERROR else logger.error
        log(
            "Operation failed",
            operation=operation,
            error_type=type(error).__name__,
            error_category=error_category,
            status_code=status_code,
            error_message=str(error),
            **context,
        )

        return ApiError(
            status_code=status_code,
            message=message,
            category=error_category,
            data={"operation": operation, **context},
        )


def log_operation(
    operation: str,
    *,
    log_args: bool = False,
    log_result: bool = False,
    log_timing: bool = True,
    context: dict[str, Any] | None = None,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator for logging async operations with structured context.

    Args:
        operation: Description of the operation being performed
        log_args: Whether to log function arguments
        log_result: Whether to log function result
        log_timing: Whether to log execution timing
        context: Additional context to include in logs

    Returns:
        Decorated function with logging
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            operation_logger = logger.bind(
                operation=operation,
                function=func.__name__,
                **(context or {}),
            )

            log_data = {}
            if log_args:
                log_data.update({
                    "args": args[1:] if args else [],  # Skip 'self' if present
                    "kwargs": kwargs,
                })

            operation_logger.info("Operation started", **log_data)

            start_time = time.perf_counter() if log_timing else None

            try:
                result = await func(*args, **kwargs)

                end_log_data: dict[str, Any] = {}
                if log_timing and start_time is not None:
                    duration = round((time.perf_counter() - start_time) * 1000, 2)
                    end_log_data["duration_ms"] = duration
                if log_result:
                    end_log_data["result"] = result

                operation_logger.info(
                    "Operation completed successfully", **end_log_data
                )
                return result

            except Exception as e:
                error_log_data: dict[str, Any] = {
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
                if log_timing and start_time is not None:
                    duration = round((time.perf_counter() - start_time) * 1000, 2)
                    error_log_data["duration_ms"] = duration

                operation_logger.error("Operation failed", **error_log_data)
                raise

        return wrapper
    return decorator


def handle_api_errors(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
    custom_message: str | None = None,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator for route handlers: any exception becomes an ApiError.

    Args:
        operation: Description of the operation for error context
        context: Additional context to include in error data
        custom_message: Message used for server-side failures

    Returns:
        Decorated function with API error handling
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except ApiError:
                raise
            except Exception as e:
                raise ErrorHandler.create_api_error(
                    e, operation, context, custom_message
                ) from e

        return wrapper
    return decorator


@asynccontextmanager
async def operation_context(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
    log_timing: bool = True,
):
    """
    Async context manager for operation logging and error handling.

    Args:
        operation: Description of the operation
        context: Additional context for logging
        log_timing: Whether to log operation timing

    Yields:
        Bound logger for the operation
    """
    operation_logger = logger.bind(
        operation=operation,
        **(context or {}),
    )

    operation_logger.info("Operation started")
    start_time = time.perf_counter() if log_timing else None

    try:
        yield operation_logger

        log_data: dict[str, Any] = {}
        if log_timing and start_time is not None:
            duration = round((time.perf_counter() - start_time) * 1000, 2)
            log_data["duration_ms"] = duration

        operation_logger.info("Operation completed successfully", **log_data)

    except Exception as e:
        error_log_data: dict[str, Any] = {
            "error_type": type(e).__name__,
            "error_message": str(e),
        }
        if log_timing and start_time is not None:
            duration = round((time.perf_counter() - start_time) * 1000, 2)
            error_log_data["duration_ms"] = duration

        operation_logger.error("Operation failed", **error_log_data)
        raise
