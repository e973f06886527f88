from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    metro_api_base: str = ""
    metro_api_key: str = ""
    metro_ca_file: str = ""
    metro_tls_insecure: bool = False
    metro_mock_file: str = ""
    fetch_timeout_seconds: float = 3.0

    poll_interval_ms: int = 2000
    poll_floor_ms: int = 200
    poll_jitter_ms: int = 100
    dwell_seconds: int = 25
    backoff_base_ms: int = 4000
    backoff_throttled_ms: int = 6000
    backoff_max_ms: int = 30000
    segment_state_max_age_seconds: int = 120
    state_sweep_interval_seconds: int = 60

    redis_url: str = ""
    redis_ttl_seconds: int = 15
    redis_channel: str = "metro:events"
    redis_snapshot_key: str = "metro:snapshot"
    redis_station_eta_key: str = "metro:station-etas"
    redis_relay_retry_seconds: float = 1.0

    service_timezone: str = "Europe/Lisbon"
    service_open_minute: int = 6 * 60 + 30
    service_close_minute: int = 59

    ingestor_enabled: bool = True
    cors_origin: str = "*"
    stream_heartbeat_seconds: float = 20.0

    model_config = {"env_prefix": "", "case_sensitive": False}


settings = Settings()
