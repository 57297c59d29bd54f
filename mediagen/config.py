"""Configuration loaded from environment (.env) and defaults."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Locate the project root .env file regardless of CWD
_THIS_DIR = Path(__file__).resolve().parent          # mediagen/
_PROJECT_ROOT = _THIS_DIR.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE) if _ENV_FILE.exists() else ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Data directory: uploads/ and jobs/ live underneath
    mediagen_data_dir: str = "./data"

    # Public base URL the uploads directory is served from. Providers fetch
    # input images from here, so it must be reachable from the provider side.
    mediagen_asset_base_url: str = "http://localhost:8000/uploads"

    # Generation provider gateway
    provider_base_url: str = "https://api.bltcy.ai"
    request_timeout_seconds: float = 30.0

    # Polling
    poll_interval_seconds: float = 5.0
    max_consecutive_poll_failures: int = 2
    job_timeout_seconds: float | None = None
    max_concurrent_polls: int | None = None

    # Requests
    max_input_assets: int = 4
    max_upload_bytes: int = 10 * 1024 * 1024
    # Reject tier-gated parameters instead of dropping them
    strict_parameters: bool = False

    # Job records go to Postgres when set, JSON files otherwise
    mediagen_database_url: str | None = None

    # CORS origins (comma-separated). Defaults to localhost dev.
    cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173"
    cors_origin_regex: str | None = None

    # Server port (hosting platforms inject PORT)
    port: int = 8000

    @property
    def data_dir(self) -> Path:
        """Data directory as an absolute Path.

        Relative paths are resolved against the project root (not CWD).
        """
        p = Path(self.mediagen_data_dir)
        if not p.is_absolute():
            return (_PROJECT_ROOT / p).resolve()
        return p.resolve()

    @property
    def uploads_dir(self) -> Path:
        """Root of the asset store (images/ and videos/ below it)."""
        return self.data_dir / "uploads"

    @property
    def jobs_dir(self) -> Path:
        return self.data_dir / "jobs"

    @property
    def asset_base_url(self) -> str:
        return self.mediagen_asset_base_url.rstrip("/")

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def ensure_dirs(self) -> None:
        """Ensure all data directories exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        self.jobs_dir.mkdir(parents=True, exist_ok=True)


def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_dirs()
    return settings
