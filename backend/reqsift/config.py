from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "reqsift API"
    app_env: str = "development"
    cors_origins: str = "http://localhost:3000"
    cors_allow_credentials: bool = True
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"
    # Authentication happens upstream; the gateway forwards the caller id in this header.
    user_id_header: str = "X-User-ID"

    aws_region: str = "us-east-1"
    bedrock_model_id: str = "amazon.nova-pro-v1:0"
    generation_temperature: float = 0.2
    generation_max_tokens: int = 4096
    storage_backend: str = "local"  # local|s3
    storage_root: str = "data/uploads"

    # Segmentation tiers: (upper bound exclusive, chunk size, overlap, max chunks).
    single_pass_max_chars: int = 5000
    tier_small_max_chars: int = 10_000
    tier_medium_max_chars: int = 30_000
    tier_large_max_chars: int = 100_000

    dedupe_title_threshold: float = 0.7
    dedupe_description_threshold: float = 0.5

    perspective_pause_seconds: float = 1.0
    job_retention_seconds: float = 3600.0

    nli_endpoint_url: str = ""
    nli_api_key: str = ""
    nli_timeout_seconds: float = 30.0
    contradiction_similarity_threshold: float = 0.6
    contradiction_nli_threshold: float = 0.55
    contradiction_max_requirements: int = 100

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
