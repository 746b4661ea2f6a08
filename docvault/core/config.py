from typing import Dict, List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./docvault.db"
    database_echo: bool = False

    # Where compiled content lives: a chunk table in the same database
    # or plain files under blob_root
    blob_backend: Literal["database", "filesystem"] = "database"
    blob_root: str = "./blobs"
    blob_chunk_size: int = 255 * 1024

    # Compiled output above this size spills from memory to a temp file
    spool_max_size: int = 8 * 1024 * 1024

    supported_languages: List[str] = ["latex", "markdown", "typst", "plaintext"]
    # language -> URL of an external compiler service
    compiler_endpoints: Dict[str, str] = {}
    compiler_timeout: float = 60.0

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_prefix="DOCVAULT_", extra="ignore")


settings = Settings()
