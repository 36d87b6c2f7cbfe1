from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    environment: str = "development"
    debug: bool = True
    allowed_origins: str = "http://localhost:3000,http://localhost:19006"
    log_level: str = "INFO"

    # Redis (durable wizard key-value store)
    redis_url: str = "redis://localhost:6379/0"

    # Onboarding wizard
    wizard_key_prefix: str = "wizard"
    wizard_cache_ttl_seconds: int = 7 * 24 * 3600  # 0 = keys never expire
    max_branch_count: int = 100
    default_branch_name: str = "Branch {number}"
    max_live_sessions: int = 1000
    session_idle_timeout_seconds: int = 3600  # live sessions rebuild from the store after this

    # Tenant management API (status check + plan assignment)
    tenant_api_base_url: str = "http://localhost:8001/api"
    tenant_api_timeout_seconds: float = 10.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
