from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Branding
    app_name: str = "EvoFit Health Protocol"

    # LLM Configuration
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    openai_api_key: str = "dummy"
    generation_timeout_s: float = 45.0
    generation_temperature: float = 0.4
    generation_max_tokens: int = 2000

    # Database
    database_url: str = "sqlite:///./evofit.db"
    database_echo: bool = False

    # Wizard drafts
    # If not provided, drafts are kept in-process
    redis_url: Optional[str] = None
    draft_ttl_s: int = 3600 * 6
    draft_key_prefix: str = "evofit:wizard"

    # Roles allowed to open the protocol wizard (JSON array in env)
    wizard_roles: List[str] = ["trainer", "admin"]

    class Config:
        env_file = ".env"


settings = Settings()
