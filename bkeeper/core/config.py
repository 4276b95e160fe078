"""User configuration stored in config.yaml."""

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml

from bkeeper.core.analysis import DEFAULT_MODEL
from bkeeper.core.errors import RecordValidationError, StorageFailure
from bkeeper.utils.config import Config

logger = logging.getLogger(__name__)

DEFAULTS = {
    "supabase_url": None,
    "supabase_key": None,
    "supabase_access_token": None,
    "supabase_refresh_token": None,
    "analysis_model": DEFAULT_MODEL,
    "use_ai_analysis": False,
    "selected_apiary": None,
}

ENV_OVERRIDES = {
    "supabase_url": "BKEEPER_SUPABASE_URL",
    "supabase_key": "BKEEPER_SUPABASE_KEY",
}

SECRET_KEYS = ("supabase_key", "supabase_access_token", "supabase_refresh_token")


class BKeeperConfig:
    """Manages B.Keeper settings in ``<data_dir>/config.yaml``."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.config_file = self.data_dir / Config.CONFIG_FILE_NAME

    def _read(self) -> dict:
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise StorageFailure(f"Kunde inte läsa {self.config_file}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise StorageFailure(f"{self.config_file} måste innehålla nyckel/värde-par")
        return data

    def get(self, key: str, default: Any = None) -> Any:
        env_var = ENV_OVERRIDES.get(key)
        if env_var and os.environ.get(env_var):
            return os.environ[env_var]
        value = self._read().get(key)
        if value is None:
            return DEFAULTS.get(key, default) if default is None else default
        return value

    def set(self, key: str, value: Any) -> None:
        """Persist one setting; ``None`` removes it."""
        if key not in DEFAULTS:
            raise RecordValidationError(f"Okänd inställning: {key}")
        if key == "use_ai_analysis" and isinstance(value, str):
            value = value.strip().lower() in ("1", "true", "yes", "ja", "on")
        data = self._read()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        self.data_dir.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.config_file, "w") as f:
                yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True)
        except OSError as e:
            raise StorageFailure(f"Kunde inte skriva {self.config_file}: {e}") from e
        logger.debug("Config %s updated", key)

    def show(self) -> dict:
        """Effective settings with secrets masked."""
        shown = {}
        for key in DEFAULTS:
            value = self.get(key)
            if key in SECRET_KEYS and value:
                value = "****" + str(value)[-4:]
            shown[key] = value
        return shown

    @property
    def supabase_url(self) -> Optional[str]:
        return self.get("supabase_url")

    @property
    def supabase_key(self) -> Optional[str]:
        return self.get("supabase_key")

    @property
    def analysis_model(self) -> str:
        return self.get("analysis_model")

    @property
    def use_ai_analysis(self) -> bool:
        return bool(self.get("use_ai_analysis"))

    def has_remote(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)
