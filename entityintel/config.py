"""
Configuration management for entityintel.

Loads configuration from config.yaml, .env file, and environment variables.
Priority: Environment variables > .env file > config.yaml
"""

import os
from pathlib import Path
from typing import Any

import yaml

# Load .env file if it exists (before reading os.environ)
def _load_dotenv():
    """Load .env file from project root."""
    current = Path.cwd()
    for path in [current] + list(current.parents):
        env_path = path / ".env"
        if env_path.exists():
            with open(env_path) as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#") and "=" in line:
                        key, _, value = line.partition("=")
                        key = key.strip()
                        value = value.strip().strip('"').strip("'")
                        # Only set if not already in environment
                        if key not in os.environ:
                            os.environ[key] = value
            break

_load_dotenv()


# Keys whose environment overrides must be converted to int
_INT_KEYS = {"port", "interval_minutes", "interval_hours", "stale_days"}


class Config:
    """Application configuration singleton."""

    _instance = None
    _config: dict = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_config()
        return cls._instance

    def _find_config_file(self) -> Path | None:
        """Find config.yaml in current directory or parent directories."""
        explicit = os.environ.get("ENTITYINTEL_CONFIG")
        if explicit:
            path = Path(explicit)
            return path if path.exists() else None

        current = Path.cwd()
        for path in [current] + list(current.parents):
            config_path = path / "config.yaml"
            if config_path.exists():
                return config_path
        return None

    def _load_config(self) -> None:
        """Load configuration from file and environment."""
        config_path = self._find_config_file()

        if config_path:
            with open(config_path) as f:
                self._config = yaml.safe_load(f) or {}
        else:
            self._config = {}

        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        """Override config values with environment variables."""
        env_mappings = {
            "ENTITYINTEL_DB_URL": ("database", "url"),
            "ENTITYINTEL_DB_HOST": ("database", "host"),
            "ENTITYINTEL_DB_PORT": ("database", "port"),
            "ENTITYINTEL_DB_NAME": ("database", "name"),
            "ENTITYINTEL_DB_USER": ("database", "user"),
            "ENTITYINTEL_DB_PASSWORD": ("database", "password"),
            "ENTITYINTEL_OPENCORPORATES_TOKEN": ("api_keys", "opencorporates"),
            "ENTITYINTEL_FLYWHEEL_INTERVAL_MINUTES": ("flywheel", "interval_minutes"),
            "ENTITYINTEL_STALE_DAYS": ("flywheel", "stale_days"),
            "ENTITYINTEL_AUDIT_INTERVAL_HOURS": ("audit", "interval_hours"),
        }

        for env_var, path in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                self._set_nested(path, value)

    def _set_nested(self, path: tuple, value: Any) -> None:
        """Set a nested config value."""
        current = self._config
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        if path[-1] in _INT_KEYS:
            value = int(value)

        current[path[-1]] = value

    def _get_nested(self, path: tuple, default: Any = None) -> Any:
        """Get a nested config value."""
        current = self._config
        for key in path:
            if not isinstance(current, dict) or key not in current:
                return default
            current = current[key]
        return current

    @property
    def database_url(self) -> str:
        """Get SQLAlchemy database URL."""
        db = self._config.get("database", {})
        if db.get("url"):
            return db["url"]

        host = db.get("host", "localhost")
        port = db.get("port", 5432)
        name = db.get("name", "entityintel")
        user = db.get("user", "postgres")
        password = db.get("password", "")

        # Handle Unix socket paths (start with /)
        if host.startswith("/"):
            if password:
                return f"postgresql://{user}:{password}@/{name}?host={host}"
            return f"postgresql://{user}@/{name}?host={host}"

        if password:
            return f"postgresql://{user}:{password}@{host}:{port}/{name}"
        return f"postgresql://{user}@{host}:{port}/{name}"

    @property
    def opencorporates_token(self) -> str | None:
        """Get OpenCorporates API token."""
        return self._get_nested(("api_keys", "opencorporates"))

    @property
    def opencorporates_url(self) -> str:
        return self._get_nested(
            ("api", "opencorporates_url"), "https://api.opencorporates.com/v0.4"
        )

    @property
    def usaspending_url(self) -> str:
        return self._get_nested(
            ("api", "usaspending_url"), "https://api.usaspending.gov/api/v2"
        )

    @property
    def api_timeout(self) -> float:
        """Per-request timeout in seconds for enrichment APIs."""
        return float(self._get_nested(("api", "timeout_seconds"), 30))

    @property
    def flywheel_interval_minutes(self) -> int:
        """Get enrichment cycle interval in minutes."""
        return self._get_nested(("flywheel", "interval_minutes"), 5)

    @property
    def stale_days(self) -> int:
        """Days after which an entity is considered stale."""
        return self._get_nested(("flywheel", "stale_days"), 7)

    @property
    def flywheel_batch_sizes(self) -> dict:
        """Bounded batch sizes used by one enrichment cycle."""
        defaults = {
            "stale_entities": 5,
            "contracts_per_entity": 10,
            "grants_per_entity": 5,
            "unscored_entities": 10,
        }
        defaults.update(self._get_nested(("flywheel", "batch_sizes"), {}) or {})
        return defaults

    @property
    def flywheel_max_workers(self) -> int:
        return self._get_nested(("flywheel", "max_workers"), 3)

    @property
    def audit_interval_hours(self) -> int:
        """Interval between data quality audits."""
        return self._get_nested(("audit", "interval_hours"), 24)

    @property
    def audit_batch_sizes(self) -> dict:
        """Bounded batch sizes used by the audit passes."""
        defaults = {
            "orphans": 100,
            "stale_sample": 50,
            "classification": 50,
            "scoring": 25,
        }
        defaults.update(self._get_nested(("audit", "batch_sizes"), {}) or {})
        return defaults

    @property
    def orphan_match_threshold(self) -> int:
        """Minimum rapidfuzz score used to disambiguate orphan candidates."""
        return self._get_nested(("audit", "orphan_match_threshold"), 90)

    @property
    def quality_normalization(self) -> str:
        """Quality score denominators: 'ratio' (true ratios) or 'fixed'."""
        return self._get_nested(("quality", "normalization"), "ratio")

    @property
    def insight_dedupe(self) -> bool:
        """Skip insights whose content key was already written."""
        return self._get_nested(("insights", "dedupe"), True)

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    def get(self, *path: str, default: Any = None) -> Any:
        """Get a config value by path."""
        return self._get_nested(path, default)

    def set(self, *path: str, value: Any) -> None:
        """Set a config value by path (runtime override)."""
        self._set_nested(tuple(path), value)


# Global config instance
config = Config()
