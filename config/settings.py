from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Global configuration for the Worldsmith generation pipeline."""

    ANTHROPIC_API_KEY: str = ""
    GEMINI_API_KEY: str = ""
    MODEL_NAME: str = "claude-sonnet-4-20250514"

    # Stage-based model overrides
    MODEL_METADATA: str = "claude-haiku-4-5-20251001"   # Structured metadata
    MODEL_ATTRIBUTES: str = "claude-haiku-4-5-20251001" # Attribute assignment
    MODEL_CONTEXT: str = "claude-haiku-4-5-20251001"    # Context narrative
    MODEL_PLANNER: str = "claude-sonnet-4-20250514"     # World planning
    MODEL_IMAGE: str = "gemini-2.5-flash-image"         # Image rendering

    DEFAULT_ART_STYLE: str = "historical illustration"
    DEFAULT_HISTORICAL_PERIOD: str = "Medieval Europe"
    DEFAULT_GENRE: str = "historical role-playing game"

    MAX_CONCURRENT_SYNTHESES: int = 4
    REQUEST_TIMEOUT: float = 90.0
    SYNTHESIS_TIMEOUT: float = 0.0  # 0 disables the per-entity timeout
    IMAGE_SAFETY_RETRIES: int = 1

    LOG_PATH: str = "data/worldsmith.log"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }
