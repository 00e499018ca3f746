"""Configuration management for the portfolio FAQ chatbot."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)


def _split_models(value: str) -> tuple[str, ...]:
    return tuple(model.strip() for model in value.split(",") if model.strip())


@dataclass(frozen=True)
class ProviderSettings:
    """Connection settings for one external provider.

    Built once at startup and handed to the provider chains, so nothing below
    the configuration layer reads credentials from the process environment.
    """

    name: str
    endpoint: str
    api_key: str = field(default="", repr=False)
    enabled: bool = True
    models: tuple[str, ...] = ()


class Config:
    """Application configuration loaded from environment variables."""

    # Provider credentials
    @classmethod
    def get_gemini_api_key(cls) -> str:
        """Get the Google Gemini API key from environment variables.

        Returns:
            Gemini API key or empty string if not set.
        """
        return os.getenv("GOOGLE_GEMINI_API_KEY", "")

    @classmethod
    def get_huggingface_api_key(cls) -> str:
        """Get the Hugging Face inference API key from environment variables.

        Returns:
            Hugging Face API key or empty string if not set.
        """
        return os.getenv("HUGGING_FACE_API_KEY", "")

    @classmethod
    def get_openrouter_api_key(cls) -> str:
        """Get the OpenRouter API key from environment variables.

        Returns:
            OpenRouter API key or empty string if not set.
        """
        return os.getenv("OPENROUTER_API_KEY", "")

    @classmethod
    def get_openai_api_key(cls) -> str:
        """Get OpenAI API key from environment variables.

        Returns:
            OpenAI API key from environment or empty string if not set.
        """
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    OPENROUTER_BASE_URL: str = os.getenv(
        "OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"
    )
    GEMINI_BASE_URL: str = os.getenv(
        "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
    )
    HF_BASE_URL: str = os.getenv(
        "HF_BASE_URL", "https://api-inference.huggingface.co"
    )

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()
    HTTPX_LOG_LEVEL: str = os.getenv("HTTPX_LOG_LEVEL", "WARNING").upper()

    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    CHATBOT_URL: str = os.getenv("CHATBOT_URL", "http://localhost:8501")
    CHATBOT_TITLE: str = os.getenv("CHATBOT_TITLE", "Portfolio Chatbot")
    PORTFOLIO_OWNER: str = os.getenv("PORTFOLIO_OWNER", "Arnob Mahmud")
    REQUEST_TIMEOUT: float = float(os.getenv("REQUEST_TIMEOUT", "30"))

    # Embedding Configuration
    GEMINI_EMBEDDING_MODEL: str = os.getenv(
        "GEMINI_EMBEDDING_MODEL", "gemini-embedding-001"
    )
    EMBEDDING_DIMENSION: int = int(os.getenv("EMBEDDING_DIMENSION", "768"))
    HF_EMBEDDING_MODEL: str = os.getenv(
        "HF_EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2"
    )
    OPENROUTER_EMBEDDING_MODEL: str = os.getenv(
        "OPENROUTER_EMBEDDING_MODEL", "openai/text-embedding-ada-002"
    )
    OPENAI_EMBEDDING_MODEL: str = os.getenv(
        "OPENAI_EMBEDDING_MODEL", "text-embedding-ada-002"
    )
    EMBEDDING_MAX_ATTEMPTS: int = int(os.getenv("EMBEDDING_MAX_ATTEMPTS", "2"))
    EMBEDDING_RETRY_BASE_DELAY: float = float(
        os.getenv("EMBEDDING_RETRY_BASE_DELAY", "2.0")
    )
    EMBEDDING_BATCH_SIZE: int = int(os.getenv("EMBEDDING_BATCH_SIZE", "5"))
    EMBEDDING_STAGGER_SECONDS: float = float(
        os.getenv("EMBEDDING_STAGGER_SECONDS", "0.2")
    )
    EMBEDDING_BATCH_PAUSE_SECONDS: float = float(
        os.getenv("EMBEDDING_BATCH_PAUSE_SECONDS", "1.0")
    )

    # Chat Model Configuration
    GEMINI_CHAT_MODELS: tuple[str, ...] = _split_models(
        os.getenv("GEMINI_CHAT_MODELS", "gemini-2.0-flash-lite,gemini-2.0-flash")
    )
    OPENROUTER_CHAT_MODELS: tuple[str, ...] = _split_models(
        os.getenv("OPENROUTER_CHAT_MODELS", "openai/gpt-4o-mini")
    )
    OPENAI_CHAT_MODEL: str = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini")
    HF_CHAT_MODEL: str = os.getenv(
        "HF_CHAT_MODEL", "mistralai/Mistral-7B-Instruct-v0.3"
    )
    CHAT_MAX_TOKENS: int = int(os.getenv("CHAT_MAX_TOKENS", "500"))
    CHAT_TEMPERATURE: float = float(os.getenv("CHAT_TEMPERATURE", "0.7"))

    # Retrieval Configuration
    HISTORY_WINDOW: int = int(os.getenv("HISTORY_WINDOW", "6"))
    RAG_TOP_K: int = int(os.getenv("RAG_TOP_K", "3"))

    # Vector Store Configuration
    VECTOR_STORE_DB_PATH: Path = Path(
        os.getenv("VECTOR_STORE_DB_PATH", "data/vector_store.db")
    )
    FAQ_DATA_PATH: Path = Path(os.getenv("FAQ_DATA_PATH", "data/faqs.json"))

    # API Header Configuration
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "FAQBot/1.0")

    @classmethod
    def embedding_provider_settings(cls) -> list[ProviderSettings]:
        """Build the embedding providers in fallback priority order.

        Returns:
            Provider settings for Gemini, Hugging Face, OpenRouter and OpenAI.
        """
        gemini_key = cls.get_gemini_api_key()
        hf_key = cls.get_huggingface_api_key()
        openrouter_key = cls.get_openrouter_api_key()
        openai_key = cls.get_openai_api_key()
        return [
            ProviderSettings(
                name="gemini",
                endpoint=cls.GEMINI_BASE_URL,
                api_key=gemini_key,
                enabled=bool(gemini_key),
                models=(cls.GEMINI_EMBEDDING_MODEL,),
            ),
            ProviderSettings(
                name="huggingface",
                endpoint=cls.HF_BASE_URL,
                api_key=hf_key,
                enabled=bool(hf_key),
                models=(cls.HF_EMBEDDING_MODEL,),
            ),
            ProviderSettings(
                name="openrouter",
                endpoint=cls.OPENROUTER_BASE_URL,
                api_key=openrouter_key,
                enabled=bool(openrouter_key),
                models=(cls.OPENROUTER_EMBEDDING_MODEL,),
            ),
            ProviderSettings(
                name="openai",
                endpoint=cls.OPENAI_BASE_URL,
                api_key=openai_key,
                enabled=bool(openai_key),
                models=(cls.OPENAI_EMBEDDING_MODEL,),
            ),
        ]

    @classmethod
    def chat_provider_settings(cls) -> list[ProviderSettings]:
        """Build the chat providers in fallback priority order.

        Returns:
            Provider settings for Gemini, OpenRouter, OpenAI and Hugging Face.
        """
        gemini_key = cls.get_gemini_api_key()
        openrouter_key = cls.get_openrouter_api_key()
        openai_key = cls.get_openai_api_key()
        hf_key = cls.get_huggingface_api_key()
        return [
            ProviderSettings(
                name="gemini",
                endpoint=cls.GEMINI_BASE_URL,
                api_key=gemini_key,
                enabled=bool(gemini_key),
                models=cls.GEMINI_CHAT_MODELS,
            ),
            ProviderSettings(
                name="openrouter",
                endpoint=cls.OPENROUTER_BASE_URL,
                api_key=openrouter_key,
                enabled=bool(openrouter_key),
                models=cls.OPENROUTER_CHAT_MODELS,
            ),
            ProviderSettings(
                name="openai",
                endpoint=cls.OPENAI_BASE_URL,
                api_key=openai_key,
                enabled=bool(openai_key),
                models=(cls.OPENAI_CHAT_MODEL,),
            ),
            ProviderSettings(
                name="huggingface",
                endpoint=cls.HF_BASE_URL,
                api_key=hf_key,
                enabled=bool(hf_key),
                models=(cls.HF_CHAT_MODEL,),
            ),
        ]

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration values.

        Raises:
            ValueError: If no chat provider has a credential configured.
        """
        if not any(settings.enabled for settings in cls.chat_provider_settings()):
            msg = (
                "At least one of GOOGLE_GEMINI_API_KEY, OPENROUTER_API_KEY, "
                "OPENAI_API_KEY or HUGGING_FACE_API_KEY is required. "
                "Please set it in .env file or environment."
            )
            raise ValueError(msg)

    @classmethod
    def is_development(cls) -> bool:
        """Check if running in development environment.

        Returns:
            True if environment is development.
        """
        return cls.ENVIRONMENT.lower() == "development"

    @classmethod
    def is_production(cls) -> bool:
        """Check if running in production environment.

        Returns:
            True if environment is production.
        """
        return cls.ENVIRONMENT.lower() == "production"

    @classmethod
    def setup_logging(cls) -> None:
        """Setup basic logging configuration.

        Configure logging once at application startup with:
        - Console output for all levels
        - Simple, readable format
        - Configurable level via environment variable
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        # Configure third-party library log levels via environment variables
        logging.getLogger("openai").setLevel(
            getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        )
        logging.getLogger("httpx").setLevel(
            getattr(logging, cls.HTTPX_LOG_LEVEL, logging.WARNING)
        )

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger with the specified name.

        Args:
            name: Logger name (typically __name__)

        Returns:
            Logger instance
        """
        return logging.getLogger(name)

    @classmethod
    def get_api_headers(cls) -> dict[str, str]:
        """Build default headers for outbound API calls.

        Returns:
            Mapping of header names to values used on outbound HTTP requests.
        """
        headers: dict[str, str] = {}

        if cls.API_USER_AGENT:
            headers["User-Agent"] = cls.API_USER_AGENT

        return headers

    @classmethod
    def get_openrouter_headers(cls) -> dict[str, str]:
        """Build the attribution headers OpenRouter expects on every call.

        Returns:
            Default API headers plus ``HTTP-Referer`` and ``X-Title``.
        """
        headers = cls.get_api_headers()
        headers["HTTP-Referer"] = cls.CHATBOT_URL
        headers["X-Title"] = cls.CHATBOT_TITLE
        return headers


config = Config()
