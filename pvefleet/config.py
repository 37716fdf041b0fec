"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is driven by environment variables."""

    # Local state
    data_dir: str = Field(default="/data/pvefleet")
    inventory_path: str = Field(default="/data/pvefleet/inventory.json")
    settings_store_path: str = Field(default="/data/pvefleet/settings.json")
    ssh_key_dir: str = Field(default="/data/pvefleet/ssh-keys")

    # SSH
    ssh_connect_timeout_seconds: int = 10
    ssh_max_workers: int = 8

    # LXC config cache
    config_cache_ttl_seconds: int = 300
    lxc_config_dir: str = "/etc/pve/lxc"

    # Operation tracker
    operation_log_max_lines: int = 2000

    # Script catalog (GitHub)
    repo_url: str = "https://github.com/community-scripts/ProxmoxVE"
    repo_branch: str = "main"
    json_folder: str = "frontend/public/json"
    github_token: str = ""
    scripts_dir: str = Field(default="/data/pvefleet/scripts")
    github_timeout_seconds: float = 30.0

    # Notifications
    apprise_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton – import this from anywhere
settings = Settings()
