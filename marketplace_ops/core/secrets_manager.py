import os
from pathlib import Path
from typing import Any, Dict

import yaml
from cryptography.fernet import Fernet, InvalidToken
from dotenv import load_dotenv

from marketplace_ops.core.logging import logger

load_dotenv(".env")


class SecretManager:
    """
    Per-environment YAML config with Fernet-encrypted secrets.

    ``{ENVIRONMENT}-config.yml`` holds plain keys at the top level and
    encrypted values under ``secrets``. ``MASTER_KEY`` decrypts them.
    """

    _instance = None
    _config: Dict[str, Any] = {}
    _secrets: Dict[str, Any] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(SecretManager, cls).__new__(cls)
            cls._instance._config = {}
            cls._instance._secrets = {}
            cls._instance._load_config()
        return cls._instance

    def _config_path(self) -> Path | None:
        env = os.getenv("ENVIRONMENT", "local")
        config_file = os.getenv("CONFIG_FILE", f"{env}-config.yml")

        for candidate in (Path(config_file), Path("..") / config_file):
            if candidate.exists():
                return candidate
        return None

    def _load_config(self):
        path = self._config_path()
        if path is None:
            logger.info({"event_type": "config", "event_name": "config_file_missing"})
            return

        with open(path, "r") as f:
            self._config = yaml.safe_load(f) or {}

        encrypted = self._config.pop("secrets", None) or {}
        if not encrypted:
            return

        key = os.getenv("MASTER_KEY")
        if not key:
            logger.warning(
                {
                    "event_type": "config",
                    "event_name": "master_key_missing",
                    "secret_count": len(encrypted),
                }
            )
            return

        cipher = Fernet(key.encode())
        for name, value in encrypted.items():
            try:
                self._secrets[name] = cipher.decrypt(str(value).encode()).decode()
            except InvalidToken:
                logger.error(
                    {
                        "event_type": "config",
                        "event_name": "secret_decrypt_failed",
                        "secret": name,
                    }
                )

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._secrets:
            return self._secrets[key]
        if key in self._config:
            return self._config[key]
        return os.getenv(key, default)

    @property
    def all_values(self) -> Dict[str, Any]:
        """Plain config keys overlaid with decrypted secrets."""
        return {**self._config, **self._secrets}


secrets = SecretManager()
