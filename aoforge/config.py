"""Global configuration: loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class ForgeSettings(BaseSettings):
    aos_binary: str = "aos"
    state_path: Path = Path.home() / ".ao-forge" / "processes.json"
    config_file_name: str = "ao.config.yml"
    log_level: str = "INFO"
    check_timeout_seconds: float = 10.0
    # Longer output lines from a piped process are truncated
    max_line_bytes: int = 1024 * 1024

    # Scheduler defaults for `ao-forge process schedule`
    schedule_interval_ms: int = 1000
    schedule_max_retries: int = 3

    model_config = {"env_prefix": "AO_FORGE_"}


settings = ForgeSettings()
