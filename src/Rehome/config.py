"""Settings loader for Rehome."""

from pathlib import Path
from typing import Any

import tomllib
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# [import] key -> Settings field
_IMPORT_KEYS = {
    "owner_sentinel_id": "import_owner_sentinel_id",
    "external_user_id": "import_external_user_id",
    "credential_length": "import_credential_length",
    "rollback_on_failure": "import_rollback_on_failure",
    "affected_tables": "import_affected_tables",
}

_LOGGING_KEYS = {
    "level": "logging_level",
    "file_path": "logging_file_path",
    "max_bytes": "logging_max_bytes",
    "backup_count": "logging_backup_count",
}


def _handler_level(value: Any, overall: str) -> str:
    # `console = true` follows [logging] level; `false` switches the handler off
    if isinstance(value, bool):
        return overall if value else "NONE"
    return str(value).upper()


def _toml_settings_source() -> dict[str, Any]:
    """Map config.toml onto Settings fields; only keys present are returned.

    Ranks below .env and the environment, so either can override a value.
    """
    cfg_path = Path("config.toml")
    if not cfg_path.exists():
        return {}
    with cfg_path.open("rb") as f:
        t = tomllib.load(f)

    out: dict[str, Any] = {}
    if "env" in t.get("app", {}):
        out["env"] = t["app"]["env"]
    if t.get("database", {}).get("url"):
        out["database_url"] = t["database"]["url"]

    import_cfg = t.get("import", {})
    out.update({field: import_cfg[key] for key, field in _IMPORT_KEYS.items() if key in import_cfg})
    # Exports use numeric ids; the settings compare string forms
    for field in ("import_owner_sentinel_id", "import_external_user_id"):
        if field in out:
            out[field] = str(out[field])

    log_cfg = t.get("logging", {})
    out.update({field: log_cfg[key] for key, field in _LOGGING_KEYS.items() if key in log_cfg})
    overall = str(log_cfg.get("level", "INFO")).upper()
    if "console" in log_cfg:
        out["logging_console"] = _handler_level(log_cfg["console"], overall)
    if "to_file" in log_cfg:
        out["logging_file"] = _handler_level(log_cfg["to_file"], overall)
    return out


class Settings(BaseSettings):
    env: str = Field(default="dev")
    database_url: str = Field(default="sqlite+aiosqlite:///./rehome.sqlite3")

    # Source-side id the exporting instance used for its owner account
    import_owner_sentinel_id: str = "1"
    # Reserved id for references to an external/anonymous author; never a stored user
    import_external_user_id: str = "5951f5fca366002ebd5dbef7"
    import_credential_length: int = Field(default=50, ge=16)
    import_rollback_on_failure: bool = True
    import_affected_tables: list[str] = Field(default_factory=lambda: ["posts", "tags"])


    logging_level: str = "INFO"
    logging_console: str = "INFO"
    logging_file: str = "NONE"
    logging_file_path: str = "logs/rehome.jsonl"
    logging_max_bytes: int = 5_000_000
    logging_backup_count: int = 5

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Highest first: explicit kwargs, .env, environment, config.toml, secrets
        return (
            init_settings,
            dotenv_settings,
            env_settings,
            _toml_settings_source,
            file_secret_settings,
        )


def load_settings() -> Settings:
    return Settings()
