"""Configuration system using pydantic-settings with environment variable loading."""

from typing import Annotated

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _split_csv(value: object) -> object:
    """Accept comma-separated strings from the environment for list fields."""
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class MqttSettings(BaseSettings):
    """MQTT broker connection settings."""

    model_config = SettingsConfigDict(env_prefix="MQTT_")

    host: str = "localhost"
    port: int = 8883
    use_tls: bool = True  # 8883 is the TLS port
    username: str = ""
    password: SecretStr = SecretStr("")
    client_id: str = "ledbridge"
    keepalive: int = 60
    connect_timeout: float = 30.0  # seconds for the initial handshake
    reconnect_delay: float = 5.0  # fixed delay between reconnect attempts
    close_timeout: float = 10.0
    publish_timeout: float = 10.0
    subscribe_topics: Annotated[list[str], NoDecode] = []

    @field_validator("subscribe_topics", mode="before")
    @classmethod
    def _parse_topics(cls, value: object) -> object:
        return _split_csv(value)


class TopicSettings(BaseSettings):
    """Topic names published to the display device."""

    model_config = SettingsConfigDict(env_prefix="TOPIC_")

    weather_raw: str = "home/weather/raw"
    weather_led: str = "home/weather/led"
    exchange_raw: str = "home/exchange/raw"
    exchange_led: str = "home/exchange/led"
    custom_message: str = "home/custom/message"
    led_settings: str = "home/led/settings"


class ApiSettings(BaseSettings):
    """Upstream REST endpoints for weather and exchange rates."""

    model_config = SettingsConfigDict(env_prefix="API_")

    weather_url: str = "https://api.open-meteo.com/v1/forecast"
    exchange_url: str = "https://api.exchangerate-api.com/v4/latest/USD"
    # Used instead of exchange_url when an API key is configured
    exchange_keyed_url: str = "https://v6.exchangerate-api.com/v6/{api_key}/latest/{base}"
    exchange_api_key: SecretStr = SecretStr("")
    exchange_base: str = "USD"
    request_timeout: float = 15.0

    @property
    def has_exchange_api_key(self) -> bool:
        return bool(self.exchange_api_key.get_secret_value())


class DatabaseSettings(BaseSettings):
    """SQLite storage location."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    path: str = "data/ledbridge.db"


class SchedulerSettings(BaseSettings):
    """Ingestion cycle timing, tracked currencies and the default location.

    All fields configurable via SCHEDULER_ environment variable prefix.
    SCHEDULER_WATCH_LIST accepts a comma-separated list (e.g. "VND,EUR,GBP").
    """

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    weather_interval: float = 300.0  # seconds between weather cycles
    exchange_interval: float = 600.0  # seconds between exchange cycles
    watch_list: Annotated[list[str], NoDecode] = ["VND", "EUR", "GBP", "JPY", "CNY", "AUD"]
    default_latitude: float = 10.762622
    default_longitude: float = 106.660172
    timezone: str = "Asia/Ho_Chi_Minh"

    @field_validator("watch_list", mode="before")
    @classmethod
    def _parse_watch_list(cls, value: object) -> object:
        parsed = _split_csv(value)
        if isinstance(parsed, list):
            return [str(code).upper() for code in parsed]
        return parsed


class ServerSettings(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = "0.0.0.0"
    port: int = 3000
    enabled: bool = True
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_origins(cls, value: object) -> object:
        return _split_csv(value)


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: str = "console"  # "json" or "console"
    mqtt: MqttSettings = MqttSettings()
    topics: TopicSettings = TopicSettings()
    api: ApiSettings = ApiSettings()
    database: DatabaseSettings = DatabaseSettings()
    scheduler: SchedulerSettings = SchedulerSettings()
    server: ServerSettings = ServerSettings()
