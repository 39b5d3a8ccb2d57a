from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Hosted evaluator (Ollama native API)
    llm_base_url: str = "http://localhost:11434"
    llm_model_name: str = "llama3.2:1b"
    llm_temperature: float = 0.1
    llm_top_p: float = 0.9
    llm_max_tokens: int = 2048
    llm_timeout: float = 60.0  # probe, pull and generate share one bound
    llm_check_on_startup: bool = True

    # Rule catalog: None uses the embedded TCPA rule set
    rules_file: Path | None = None

    # Sessions
    session_lock_timeout: float = 10.0
    # Sessions never ended are dropped after this long without use; None keeps them
    session_idle_timeout: float | None = 3600.0

    # Alert store (":memory:" for an ephemeral database)
    database_path: str = "callwatch.db"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]


settings = Settings()
