"""Runtime settings."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MODGATE_", extra="ignore", populate_by_name=True)

    app_name: str = "ModGate"
    env: str = "dev"
    log_level: str = "info"
    # DEBUG 下是否打印完整请求正文；False 时只打 method/path/body_size
    log_full_request_body: bool = False
    # 为空时只输出到 stderr
    log_file: str = "logs/modgate.log"
    log_max_bytes: int = 10 * 1024 * 1024
    log_backup_count: int = 10
    host: str = "127.0.0.1"
    port: int = 18090
    enable_cors: bool = True

    # 为空表示不校验 Authorization
    auth_key: str = Field(default="", validation_alias=AliasChoices("MODGATE_AUTH_KEY", "AUTH_KEY"))

    first_provider_url: str = Field(
        default="https://moderation.example.com",
        validation_alias=AliasChoices("MODGATE_FIRST_PROVIDER_URL", "FIRST_PROVIDER_URL"),
    )
    first_provider_key: str = Field(
        default="",
        validation_alias=AliasChoices("MODGATE_FIRST_PROVIDER_KEY", "FIRST_PROVIDER_KEY"),
    )
    first_provider_model: str = Field(
        default="gpt-4o-mini",
        validation_alias=AliasChoices("MODGATE_FIRST_PROVIDER_MODEL", "FIRST_PROVIDER_MODEL"),
    )
    second_provider_url: str = Field(
        default="https://relay.example.com",
        validation_alias=AliasChoices("MODGATE_SECOND_PROVIDER_URL", "SECOND_PROVIDER_URL"),
    )
    second_provider_key: str = Field(
        default="",
        validation_alias=AliasChoices("MODGATE_SECOND_PROVIDER_KEY", "SECOND_PROVIDER_KEY"),
    )

    # 审核调用快速失败，转发调用允许更长的生成时间
    moderation_timeout_seconds: float = Field(default=45.0, gt=0)
    relay_timeout_seconds: float = Field(default=60.0, gt=0)
    moderation_max_tokens: int = 100
    relay_default_max_tokens: int = 2000
    # 空串表示使用内置审核策略
    moderation_policy_path: str = ""

    upstream_max_connections: int = 100
    upstream_max_keepalive_connections: int = 20


settings = Settings()
