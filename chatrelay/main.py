"""
Entry point for the chat relay server.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

import uvicorn

from chatrelay.auth import TokenVerifier
from chatrelay.chat_service import ChatService
from chatrelay.config import Configuration
from chatrelay.history.repositories.sql_repo import AsyncSqlChatRepo
from chatrelay.llm.client import GeminiClient
from chatrelay.server import create_app


def configure_logging(config: Configuration) -> None:
    level = config.get_logging_config().get("level", "INFO")
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )


def create_repository(config: Configuration) -> AsyncSqlChatRepo:
    """Create repository instance based on configuration."""
    repo_config = config.get_repository_config()
    db_path = repo_config["path"]

    logging.info(f"Using AsyncSqlChatRepo with database path: {db_path}")
    return AsyncSqlChatRepo(db_path)


def create_verifier(config: Configuration) -> TokenVerifier:
    auth_config = config.get_auth_config()
    return TokenVerifier(
        config.jwt_secret,
        algorithm=auth_config["algorithm"],
        token_ttl=timedelta(hours=auth_config.get("token_ttl_hours", 168)),
    )


async def main() -> None:
    """Main entry point - HTTP API served by uvicorn."""
    config = Configuration()
    configure_logging(config)

    llm_config = config.get_llm_config()
    http_config = config.get_http_client_config()
    server_config = config.get_server_config()
    api_key = config.llm_api_key
    if not api_key:
        logging.warning("GEMINI_API_KEY is not set; generation requests will fail")

    repo = create_repository(config)
    verifier = create_verifier(config)

    async with GeminiClient(llm_config, api_key, http_config) as llm_client:
        service = ChatService(
            ChatService.ChatServiceConfig(
                repo=repo,
                llm_client=llm_client,
                config=config.get_config_dict(),
            )
        )
        app = create_app(
            service,
            verifier,
            cors_origins=server_config.get("cors", {}).get("allow_origins", []),
        )

        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=server_config["host"],
                port=server_config["port"],
                log_level=logging.getLevelName(logging.getLogger().level).lower(),
            )
        )
        try:
            await server.serve()
        except Exception as e:
            logging.error(f"Application error: {e}")
            raise
        finally:
            await repo.close()
            logging.info("Application shutdown complete")


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
