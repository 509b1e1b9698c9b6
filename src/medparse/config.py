"""Configuration management for the health document parser."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MEDPARSE_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Deployment ("local" enables the self-hosted backends)
    deployment_env: str = "local"

    # Document / OCR backend (Docling)
    document_backend_url: str = "http://localhost:5001"
    document_timeout_seconds: float = 20.0
    document_health_timeout_seconds: float = 2.0
    default_ocr_languages: list[str] = ["eng", "pol", "deu", "fra", "spa", "ita", "rus"]

    # Vision backend
    vision_backend_url: str = "http://localhost:11434"
    vision_timeout_seconds: float = 300.0
    default_vision_provider: str = "Ollama"
    default_vision_model: str = "qwen3:8b"
    openai_api_key: str = ""
    openai_base_url: str = ""

    # Rendering
    render_dpi: int = 200
    render_timeout_seconds: float = 120.0
    render_cache_size: int = 32

    # Concurrency limits per stage
    text_extraction_concurrency: int = 2
    image_encoding_concurrency: int = 4
    vision_concurrency: int = 4
    warmup_parse_concurrency: int = 3

    # Storage
    upload_dir: str = "./public/uploads"
    public_url: str = "http://localhost:3000"

    # Logging
    log_level: str = "INFO"

    @property
    def is_local(self) -> bool:
        """Whether self-hosted backends are expected to be reachable."""
        return self.deployment_env == "local"


settings = Settings()
