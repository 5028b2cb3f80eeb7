from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


# ---------- APP ----------
class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")
    env: str = Field("dev", alias="ENV")
    url: str = Field("http://localhost", alias="PUBLIC_ORIGIN")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @property
    def debug(self) -> bool:
        return self.env == "dev"


# ---------- DB ----------
class DBSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")
    dsn: str | None = Field(None, alias="DB_URL")
    user: str = Field("felis", alias="POSTGRES_USER")
    password: str = Field("felis", alias="POSTGRES_PASSWORD")
    name: str = Field("felis", alias="POSTGRES_DB")
    host: str = Field("db", alias="POSTGRES_HOST")
    port: int = Field(5432, alias="POSTGRES_PORT")
    generate_schemas: bool = Field(False, alias="DB_GENERATE_SCHEMAS")
    op_timeout: float = Field(10.0, alias="DB_OP_TIMEOUT")
    ping_timeout: float = Field(2.0, alias="DB_PING_TIMEOUT")

    @property
    def url(self) -> str:
        if self.dsn:
            return self.dsn
        return f"asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


# ---------- REDIS ----------
class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")
    url: str | None = Field(None, alias="REDIS_URL")
    feed_channel: str = Field("felis:sessions", alias="REDIS_FEED_CHANNEL")
    publish_timeout: float = Field(1.0, alias="REDIS_PUBLISH_TIMEOUT")

    @property
    def enabled(self) -> bool:
        return bool(self.url)


class Settings:
    app = AppSettings()
    db = DBSettings()
    redis = RedisSettings()


settings = Settings()
