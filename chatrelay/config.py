"""Configuration management for the chat relay server."""

import os
from typing import Any

import yaml
from dotenv import load_dotenv


class Configuration:
    """Manages configuration and environment variables for the chat server."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for API keys and the token secret
        self._config = self._load_yaml_config(config_path)

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self, config_path: str | None = None) -> dict[str, Any]:
        """Load configuration from YAML file."""
        if config_path is None:
            config_path = os.getenv(
                "CHATRELAY_CONFIG",
                os.path.join(os.path.dirname(__file__), "config.yaml"),
            )
        with open(config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    @property
    def llm_api_key(self) -> str | None:
        """Get the API key for the active LLM provider.

        Returns:
            The API key, or None when it is not set. A missing key is
            reported per request by the provider client rather than at
            startup, so the rest of the API stays usable.

        Raises:
            ValueError: If the active provider has no known key mapping.
        """
        active_provider = self._config.get("llm", {}).get("active", "gemini")

        provider_key_map = {
            "gemini": "GEMINI_API_KEY",
        }

        env_key = provider_key_map.get(active_provider)
        if not env_key:
            raise ValueError(
                f"Unknown provider '{active_provider}' - no API key mapping found"
            )

        return os.getenv(env_key) or None

    @property
    def jwt_secret(self) -> str:
        """Get the secret used to verify bearer tokens.

        Raises:
            ValueError: If JWT_SECRET is not set.
        """
        secret = os.getenv("JWT_SECRET")
        if not secret:
            raise ValueError(
                "JWT_SECRET not found in environment variables"
            )
        return secret

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary."""
        return self._config

    def get_llm_config(self) -> dict[str, Any]:
        """Get active LLM provider configuration from YAML.

        Returns:
            Active LLM provider configuration dictionary.

        Raises:
            ValueError: If the provider block or one of its generation
                parameters is missing.
        """
        llm_config = self._config.get("llm", {})
        active_provider = llm_config.get("active", "gemini")
        providers = llm_config.get("providers", {})

        if active_provider not in providers:
            raise ValueError(
                f"Active provider '{active_provider}' not found in providers config"
            )

        provider_config = providers[active_provider]
        required_keys = [
            "base_url", "model", "temperature", "max_tokens", "top_p", "top_k"
        ]
        for key in required_keys:
            if key not in provider_config:
                raise ValueError(
                    f"llm.providers.{active_provider}.{key} must be explicitly "
                    "configured in config.yaml"
                )

        return provider_config

    def get_http_client_config(self) -> dict[str, Any]:
        """Get HTTP client timeouts for the active LLM provider.

        Raises:
            ValueError: If a timeout is missing or not positive.
        """
        http_config = self.get_llm_config().get("http_client", {})

        required_keys = [
            "connect_timeout", "read_timeout", "write_timeout", "pool_timeout"
        ]
        for key in required_keys:
            if key not in http_config:
                raise ValueError(
                    f"http_client.{key} must be explicitly configured "
                    f"for provider '{self._config['llm']['active']}' in config.yaml"
                )
            if http_config[key] <= 0:
                raise ValueError(f"http_client.{key} must be positive")

        return http_config

    def get_server_config(self) -> dict[str, Any]:
        """Get HTTP server configuration from YAML.

        Raises:
            ValueError: If host or port is missing.
        """
        server_config = self._config.get("server", {})
        for key in ("host", "port"):
            if key not in server_config:
                raise ValueError(
                    f"server.{key} must be explicitly configured in config.yaml"
                )
        return server_config

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._config.get("logging", {})

    def get_chat_service_config(self) -> dict[str, Any]:
        """Get chat service configuration from YAML."""
        return self._config.get("chat", {}).get("service", {})

    def get_repository_config(self) -> dict[str, Any]:
        """Get repository configuration from YAML.

        Raises:
            ValueError: If the database path is not configured.
        """
        repo_config = {**self.get_chat_service_config().get("repository", {})}

        if "path" not in repo_config:
            raise ValueError(
                "repository.path must be explicitly configured in config.yaml "
                "under chat.service.repository"
            )

        return repo_config

    def get_auth_config(self) -> dict[str, Any]:
        """Get token verification settings.

        Raises:
            ValueError: If the signing algorithm is not configured.
        """
        auth_config = self._config.get("auth", {})
        if "algorithm" not in auth_config:
            raise ValueError(
                "auth.algorithm must be explicitly configured in config.yaml"
            )
        return auth_config
