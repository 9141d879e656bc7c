# config/settings.py
import os
import sys
from dotenv import load_dotenv
from pydantic import ValidationError, Field
from pydantic_settings import BaseSettings
from util.enums import Environment, OracleKind
import logging


if os.getenv("APP_ENV", Environment.DEV) == Environment.DEV:
    load_dotenv()

_log = logging.getLogger("config.settings")

_PROMPTS_DIR = os.path.join(os.path.dirname(__file__), "prompts")


class Settings(BaseSettings):
    # App
    APP_ENV: str = Field(default=Environment.DEV.value, validation_alias="APP_ENV")
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0", validation_alias="REDIS_URL"
    )

    # Oracle transport
    ORACLE: OracleKind = Field(default=OracleKind.OLLAMA, validation_alias="ORACLE")
    OLLAMA_HOST: str = Field(
        default="http://localhost:11434", validation_alias="OLLAMA_HOST"
    )
    OPENAI_BASE_URL: str = Field(
        default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL"
    )
    OPENAI_API_KEY: str = Field(default="", validation_alias="OPENAI_API_KEY")
    ANTHROPIC_API_URL: str = Field(
        default="https://api.anthropic.com/v1/messages",
        validation_alias="ANTHROPIC_API_URL",
    )
    ANTHROPIC_API_KEY: str = Field(default="", validation_alias="ANTHROPIC_API_KEY")
    ANTHROPIC_VERSION: str = Field(
        default="2023-06-01", validation_alias="ANTHROPIC_VERSION"
    )
    ORACLE_TIMEOUT_SECONDS: float = Field(
        default=180.0, validation_alias="ORACLE_TIMEOUT_SECONDS"
    )

    # Models
    CHAPTER_MODEL: str = Field(default="qwen3:8b", validation_alias="CHAPTER_MODEL")
    CHAPTER_SECONDARY_MODEL: str = Field(
        default="qwen3:14b", validation_alias="CHAPTER_SECONDARY_MODEL"
    )
    CHAPTER_MODEL_SIMPLE: str = Field(
        default="qwen3:8b", validation_alias="CHAPTER_MODEL_SIMPLE"
    )
    CHAPTER_MODEL_COMPLEX: str = Field(
        default="qwen3:14b", validation_alias="CHAPTER_MODEL_COMPLEX"
    )

    # Sampling knobs
    CHAPTER_TEMP: float = Field(default=0.15, validation_alias="CHAPTER_TEMP")
    CHAPTER_TOP_P: float = Field(default=0.75, validation_alias="CHAPTER_TOP_P")
    CHAPTER_VERBOSE_RETRY_TEMP: float = Field(
        default=0.2, validation_alias="CHAPTER_VERBOSE_RETRY_TEMP"
    )
    CHAPTER_TOKEN_BUDGET: int = Field(
        default=900, validation_alias="CHAPTER_TOKEN_BUDGET"
    )

    # Prompt template (carries PROMPT_VERSION= / SCHEMA_VERSION= header lines)
    CHAPTER_PROMPT: str = Field(
        default=os.path.join(_PROMPTS_DIR, "chapter_explainer_prompt.txt"),
        validation_alias="CHAPTER_PROMPT",
    )

    # Logging knobs
    LOGGER_NAME: str = "chapter-explainer"
    LOG_LEVEL: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    LOG_TO_FILE: bool = Field(default=False, validation_alias="LOG_TO_FILE")
    LOG_DIR: str = Field(default="logs", validation_alias="LOG_DIR")
    LOG_FILE_NAME: str = Field(
        default="chapter-explainer.log", validation_alias="LOG_FILE_NAME"
    )
    LOG_MAX_BYTES: int = Field(
        default=50 * 1024 * 1024, validation_alias="LOG_MAX_BYTES"
    )
    LOG_BACKUP_COUNT: int = Field(default=5, validation_alias="LOG_BACKUP_COUNT")

    # Prompts
    SYSTEM_PROMPT: str = (
        "You are a biblical chapter explainer. "
        "Base the explanation ONLY on the verses included in the user message. "
        "Do NOT introduce events or claims not explicitly supported by those verses. "
        "If the chapter is list-heavy (genealogies/descendants, borders/cities/inheritance), "
        "summarize the repeated listing and explain what is being listed. "
        "Do NOT mention payload, JSON, schema, arrays, objects, fields, keys, input/output, "
        "or how the input is organized. "
        "If uncertain, prefer describing explicitly listed details over guessing. "
        "Output valid JSON only."
    )


try:
    settings = Settings()
except ValidationError as e:
    print("❌ Missing/invalid environment variables:", file=sys.stderr)
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", []))
        msg = err.get("msg", "")
        print(f" - {loc}: {msg}", file=sys.stderr)
    sys.exit(1)
except Exception as e:
    print(f"❌ Settings initialization failed: {e}", file=sys.stderr)
    sys.exit(1)
