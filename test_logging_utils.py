#!/usr/bin/env python3
"""
Test script for logging utilities.

This validates that the centralized logging and error handling works correctly.
"""

import aiosqlite
import pytest
from pydantic import ValidationError

from chatrelay.exceptions import (
    AuthenticationError,
    ChatNotFoundError,
    UnsupportedModelError,
)
from chatrelay.llm.exceptions import ProviderError
from chatrelay.logging_utils import (
    ApiError,
    ErrorHandler,
    handle_api_errors,
    log_operation,
    operation_context,
)


class TestErrorHandler:
    """Test the ErrorHandler class."""

    def test_classify_not_found(self):
        """Test classification of ChatNotFoundError."""
        status, category = ErrorHandler.classify_error(ChatNotFoundError("abc"))
        assert status == 404
        assert category == "not_found"

    def test_classify_authentication_error(self):
        status, category = ErrorHandler.classify_error(
            AuthenticationError("Token expired")
        )
        assert status == 401
        assert category == "authentication_error"

    def test_classify_validation_error(self):
        """Test classification of ValidationError."""
        validation_error = ValidationError.from_exception_data(
            "ValidationError", [{"type": "missing", "loc": ("field",), "input": {}}]
        )
        status, category = ErrorHandler.classify_error(validation_error)
        assert status == 400
        assert category == "validation_error"

    def test_classify_unsupported_model(self):
        status, category = ErrorHandler.classify_error(UnsupportedModelError("x"))
        assert status == 400
        assert category == "validation_error"

    def test_classify_provider_error(self):
        error = ProviderError("Gemini API error 500", provider="gemini", model="m")
        status, category = ErrorHandler.classify_error(error)
        assert status == 502
        assert category == "provider_error"

    def test_classify_timeout_error(self):
        status, category = ErrorHandler.classify_error(TimeoutError("slow"))
        assert status == 504
        assert category == "timeout_error"

    def test_classify_database_error(self):
        status, category = ErrorHandler.classify_error(
            aiosqlite.OperationalError("database is locked")
        )
        assert status == 500
        assert category == "persistence_error"

    def test_classify_connection_error(self):
        """Test classification of ConnectionError."""
        status, category = ErrorHandler.classify_error(
            ConnectionError("Network unreachable")
        )
        assert status == 503
        assert category == "connection_error"

    def test_classify_unknown_error(self):
        """Test classification of unknown error type."""
        status, category = ErrorHandler.classify_error(RuntimeError("Unknown error"))
        assert status == 500
        assert category == "unknown_error"

    def test_client_errors_keep_their_message(self):
        api_error = ErrorHandler.create_api_error(
            ChatNotFoundError("abc"), "get_chat", {"chat_id": "abc"}, "Failed to fetch chat"
        )

        assert api_error.status_code == 404
        assert api_error.message == "Chat not found"
        assert api_error.data["operation"] == "get_chat"
        assert api_error.data["chat_id"] == "abc"

    def test_server_errors_use_custom_message(self):
        """Internal details never reach the message of a 5xx error."""
        api_error = ErrorHandler.create_api_error(
            RuntimeError("secret stack detail"), "list_chats", None, "Failed to fetch chats"
        )

        assert api_error.status_code == 500
        assert api_error.message == "Failed to fetch chats"

    def test_server_error_default_message(self):
        api_error = ErrorHandler.create_api_error(RuntimeError("x"), "list_chats")
        assert api_error.message == "list_chats failed"


class TestDecorators:
    """Test logging and error handling decorators."""

    @pytest.mark.asyncio
    async def test_log_operation_success(self):
        """Test log_operation decorator with successful function."""

        @log_operation("test_operation", log_timing=True, log_result=True)
        async def successful_function():
            return "success"

        result = await successful_function()
        assert result == "success"

    @pytest.mark.asyncio
    async def test_log_operation_with_error(self):
        """Test log_operation decorator with function that raises error."""

        @log_operation("test_operation", log_timing=True)
        async def failing_function():
            raise ValueError("Test error")

        with pytest.raises(ValueError, match="Test error"):
            await failing_function()

    @pytest.mark.asyncio
    async def test_handle_api_errors_converts_exception(self):
        """Test handle_api_errors converts regular exceptions to ApiError."""

        @handle_api_errors("test_operation", custom_message="Failed to test")
        async def failing_function():
            raise ValueError("Test error")

        with pytest.raises(ApiError) as exc_info:
            await failing_function()

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Failed to test"
        assert exc_info.value.data["operation"] == "test_operation"
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_handle_api_errors_preserves_api_error(self):
        """Test handle_api_errors passes an existing ApiError through."""
        original_error = ApiError(409, "Conflict", "conflict")

        @handle_api_errors("test_operation")
        async def failing_function():
            raise original_error

        with pytest.raises(ApiError) as exc_info:
            await failing_function()

        assert exc_info.value is original_error

    @pytest.mark.asyncio
    async def test_handle_api_errors_keeps_function_metadata(self):
        @handle_api_errors("test_operation")
        async def documented(chat_id: str) -> str:
            """Docstring."""
            return chat_id

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Docstring."
        assert await documented("abc") == "abc"


class TestContextManager:
    """Test operation context manager."""

    @pytest.mark.asyncio
    async def test_operation_context_success(self):
        """Test operation context manager with successful operation."""

        async with operation_context("test_operation", log_timing=True) as logger:
            assert logger is not None

    @pytest.mark.asyncio
    async def test_operation_context_with_error(self):
        """Test operation context manager with failing operation."""

        with pytest.raises(ValueError, match="Test error"):
            async with operation_context("test_operation", log_timing=True):
                raise ValueError("Test error")
