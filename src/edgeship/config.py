"""Application configuration contract."""

import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")

    cloudflare_api_base_url: str = Field(
        alias="CLOUDFLARE_API_BASE_URL", default="https://api.cloudflare.com/client/v4"
    )
    cloudflare_account_id: str = Field(alias="CLOUDFLARE_ACCOUNT_ID", default="")
    cloudflare_zone_id: str = Field(alias="CLOUDFLARE_ZONE_ID", default="")
    cloudflare_api_token: str = Field(alias="CLOUDFLARE_API_TOKEN", default="")
    cloudflare_api_key: str = Field(alias="CLOUDFLARE_API_KEY", default="")
    cloudflare_email: str = Field(alias="CLOUDFLARE_EMAIL", default="")
    cloudflare_workers_subdomain: str = Field(alias="CLOUDFLARE_WORKERS_SUBDOMAIN", default="")
    cloudflare_r2_bucket: str = Field(alias="CLOUDFLARE_R2_BUCKET", default="edgeship-apps")
    cloudflare_r2_public_url: str = Field(alias="CLOUDFLARE_R2_PUBLIC_URL", default="")
    cloudflare_http_timeout_seconds: float = Field(
        alias="CLOUDFLARE_HTTP_TIMEOUT_SECONDS", default=30.0
    )
    app_base_domain: str = Field(alias="APP_BASE_DOMAIN", default="edgeship.app")

    supabase_url: str = Field(alias="SUPABASE_URL", default="")
    supabase_anon_key: str = Field(alias="SUPABASE_ANON_KEY", default="")
    supabase_service_key: str = Field(alias="SUPABASE_SERVICE_KEY", default="")

    worker_compatibility_date: str = Field(alias="WORKER_COMPATIBILITY_DATE", default="2024-01-01")
    worker_script_max_bytes: int = Field(alias="WORKER_SCRIPT_MAX_BYTES", default=10_485_760)

    build_max_attempts: int = Field(alias="BUILD_MAX_ATTEMPTS", default=2)
    build_timeout_seconds: int = Field(alias="BUILD_TIMEOUT_SECONDS", default=600)
    build_install_command: str = Field(
        alias="BUILD_INSTALL_COMMAND", default="npm install --no-audit --no-fund"
    )
    build_command: str = Field(alias="BUILD_COMMAND", default="npm run build")
    build_output_dir: str = Field(alias="BUILD_OUTPUT_DIR", default="dist")
    build_mode: str = Field(alias="BUILD_MODE", default="production")
    build_env_allowlist: str = Field(
        alias="BUILD_ENV_ALLOWLIST",
        default="PATH,HOME,LANG,LC_ALL,TZ,NODE_OPTIONS,npm_config_cache",
    )
    build_output_tail_bytes: int = Field(alias="BUILD_OUTPUT_TAIL_BYTES", default=32_768)
    enable_ai_build_fixes: int = Field(alias="ENABLE_AI_BUILD_FIXES", default=0)

    offload_size_threshold_bytes: int = Field(
        alias="OFFLOAD_SIZE_THRESHOLD_BYTES", default=50_000
    )
    deploy_record_dir: str = Field(alias="DEPLOY_RECORD_DIR", default="/tmp/edgeship/deployments")
    ship_max_concurrent: int = Field(alias="SHIP_MAX_CONCURRENT", default=4)

    @property
    def asset_base_url(self) -> str:
        if self.cloudflare_r2_public_url.strip():
            return self.cloudflare_r2_public_url.strip().rstrip("/")
        return f"https://cdn.{self.app_base_domain}"


def missing_deploy_credentials(settings: Settings) -> list[str]:
    """Every credential/config item a deployment needs that is not set."""
    missing: list[str] = []
    if not settings.cloudflare_account_id.strip():
        missing.append("CLOUDFLARE_ACCOUNT_ID")
    if not settings.cloudflare_zone_id.strip():
        missing.append("CLOUDFLARE_ZONE_ID")
    has_token = bool(settings.cloudflare_api_token.strip())
    has_key = bool(settings.cloudflare_api_key.strip())
    if not has_token and not has_key:
        missing.append("CLOUDFLARE_API_TOKEN or CLOUDFLARE_API_KEY")
    elif not has_token and not settings.cloudflare_email.strip():
        missing.append("CLOUDFLARE_EMAIL")
    if not settings.cloudflare_r2_bucket.strip():
        missing.append("CLOUDFLARE_R2_BUCKET")
    if not settings.supabase_url.strip():
        missing.append("SUPABASE_URL")
    if not settings.supabase_service_key.strip():
        missing.append("SUPABASE_SERVICE_KEY")
    return missing


def validate_settings_for_env(settings: Settings) -> None:
    missing = missing_deploy_credentials(settings)
    if int(settings.build_max_attempts) < 1:
        missing.append("BUILD_MAX_ATTEMPTS(must be >= 1)")
    if int(settings.build_timeout_seconds) < 1:
        missing.append("BUILD_TIMEOUT_SECONDS(must be >= 1)")

    if settings.app_env != "prod":
        if missing:
            logger.warning("Configuration incomplete for deployments: %s", ", ".join(missing))
        return

    if not settings.supabase_anon_key.strip():
        missing.append("SUPABASE_ANON_KEY")
    if missing:
        keys = ", ".join(sorted(set(missing)))
        raise ValueError(f"invalid production configuration: {keys}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
