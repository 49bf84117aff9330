"""
HTTP surface for the chat relay.

Routes live under ``/api/chat``; everything except the public chat route
requires a bearer token. Errors are returned as ``{"error": message}``,
and request validation failures as 400 ``{"errors": [...]}``.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import aclosing, asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator

from chatrelay.auth import (
    AuthenticatedUser,
    TokenVerifier,
    optional_user,
    require_user,
)
from chatrelay.chat_service import ChatService
from chatrelay.exceptions import AuthenticationError
from chatrelay.frames import StreamFrame
from chatrelay.logging_utils import ApiError, handle_api_errors

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# --------------------------------------------------------------------------- #
# Request bodies                                                              #
# --------------------------------------------------------------------------- #


def _not_blank(value: str, what: str) -> str:
    if not value.strip():
        raise ValueError(f"{what} is required")
    return value


class MessageRequest(BaseModel):
    message: str = Field(min_length=1)

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        return _not_blank(v, "Message")


class CreateChatRequest(MessageRequest):
    model: str | None = None


class TitleRequest(BaseModel):
    title: str = Field(min_length=1)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        return _not_blank(v, "Title")


# --------------------------------------------------------------------------- #
# Dependencies                                                                #
# --------------------------------------------------------------------------- #


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def provider_failure(detail: str | None) -> JSONResponse:
    return JSONResponse(
        status_code=502,
        content={"error": "Failed to generate response", "detail": detail},
    )


async def sse_events(frames: AsyncGenerator[StreamFrame]) -> AsyncGenerator[str]:
    """Encode frames as SSE events; closing this closes the relay too."""
    async with aclosing(frames):
        async for frame in frames:
            yield frame.to_sse()


# --------------------------------------------------------------------------- #
# Routes                                                                      #
# --------------------------------------------------------------------------- #

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("/public/chat")
@handle_api_errors("public_chat", custom_message="Failed to generate response")
async def public_chat(
    body: MessageRequest,
    user: AuthenticatedUser | None = Depends(optional_user),
    service: ChatService = Depends(get_chat_service),
):
    """Single anonymous turn; nothing is stored."""
    result = await service.public_chat(body.message)
    if not result.success:
        return provider_failure(result.error)
    return {"response": result.content, "usage": result.usage}


@router.get("")
@handle_api_errors("list_chats", custom_message="Failed to fetch chats")
async def list_chats(
    user: AuthenticatedUser = Depends(require_user),
    service: ChatService = Depends(get_chat_service),
):
    chats = await service.list_chats(user.user_id)
    return {"chats": [chat.model_dump(mode="json") for chat in chats]}


@router.get("/{chat_id}")
@handle_api_errors("get_chat", custom_message="Failed to fetch chat")
async def get_chat(
    chat_id: str,
    user: AuthenticatedUser = Depends(require_user),
    service: ChatService = Depends(get_chat_service),
):
    chat = await service.get_chat(user.user_id, chat_id)
    return {"chat": chat.to_public_dict()}


@router.post("", status_code=201)
@handle_api_errors("create_chat", custom_message="Failed to create chat")
async def create_chat(
    body: CreateChatRequest,
    user: AuthenticatedUser = Depends(require_user),
    service: ChatService = Depends(get_chat_service),
):
    chat, result = await service.create_chat(user.user_id, body.message, body.model)
    return {
        "chat": chat.to_public_dict(),
        "ai_response": result.content if result.success else result.error,
        "success": result.success,
    }


@router.post("/{chat_id}/messages")
@handle_api_errors("send_message", custom_message="Failed to send message")
async def send_message(
    chat_id: str,
    body: MessageRequest,
    user: AuthenticatedUser = Depends(require_user),
    service: ChatService = Depends(get_chat_service),
):
    result = await service.send_message(user.user_id, chat_id, body.message)
    if not result.success:
        return provider_failure(result.error)
    return {"message": result.content, "usage": result.usage}


@router.post("/{chat_id}/stream")
@handle_api_errors("stream_message", custom_message="Failed to start stream")
async def stream_message(
    chat_id: str,
    body: MessageRequest,
    user: AuthenticatedUser = Depends(require_user),
    service: ChatService = Depends(get_chat_service),
):
    frames = await service.open_stream(user.user_id, chat_id, body.message)
    return StreamingResponse(
        sse_events(frames),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.put("/{chat_id}/title")
@handle_api_errors("update_title", custom_message="Failed to update title")
async def update_title(
    chat_id: str,
    body: TitleRequest,
    user: AuthenticatedUser = Depends(require_user),
    service: ChatService = Depends(get_chat_service),
):
    chat = await service.update_title(user.user_id, chat_id, body.title)
    return {"message": "Title updated successfully", "chat": chat.to_public_dict()}


@router.delete("/{chat_id}")
@handle_api_errors("delete_chat", custom_message="Failed to delete chat")
async def delete_chat(
    chat_id: str,
    user: AuthenticatedUser = Depends(require_user),
    service: ChatService = Depends(get_chat_service),
):
    await service.delete_chat(user.user_id, chat_id)
    return {"message": "Chat deleted successfully"}


# --------------------------------------------------------------------------- #
# Application                                                                 #
# --------------------------------------------------------------------------- #


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def authentication_error_handler(
    request: Request, exc: AuthenticationError
) -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": str(exc)})


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors: list[dict[str, Any]] = [
        {
            "field": ".".join(str(part) for part in err["loc"][1:]) or "body",
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"errors": errors})


def create_app(
    service: ChatService,
    verifier: TokenVerifier,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Build the FastAPI application around an already constructed service."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Chat relay API starting")
        yield
        await service.close()
        logger.info("Chat relay API stopped")

    app = FastAPI(title="Chat Relay API", lifespan=lifespan)
    app.state.chat_service = service
    app.state.token_verifier = verifier

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(AuthenticationError, authentication_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(router)

    @app.get("/api/health")
    async def health_check():
        return {"status": "ok"}

    return app
