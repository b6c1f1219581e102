"""Encrypted key-value store for Yappy configuration and session state."""

import os
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import delete, select

from yappypay.common.config import settings
from yappypay.common.errors import ConfigurationError
from yappypay.common.logging import logger
from yappypay.services.storage.models import ConfigEntry
from yappypay.services.yappy.schemas import Credentials

KEY_ENDPOINT = "yappy_endpoint"
KEY_API_KEY = "yappy_api_key"
KEY_SECRET_KEY = "yappy_secret_key"
KEY_DEVICE_ID = "yappy_device_id"
KEY_DEVICE_NAME = "yappy_device_name"
KEY_DEVICE_USER = "yappy_device_user"
KEY_GROUP_ID = "yappy_group_id"
KEY_SESSION_TOKEN = "yappy_session_token"
KEY_CURRENT_USERNAME = "yappy_current_username"

CONFIG_KEYS = (
    KEY_ENDPOINT,
    KEY_API_KEY,
    KEY_SECRET_KEY,
    KEY_DEVICE_ID,
    KEY_DEVICE_NAME,
    KEY_DEVICE_USER,
    KEY_GROUP_ID,
    KEY_SESSION_TOKEN,
)


def load_or_create_key(path: str | Path) -> bytes:
    """Read the Fernet key file, creating it (mode 0600) on first use."""

    key_path = Path(path)
    if key_path.exists():
        return key_path.read_bytes().strip()
    key = Fernet.generate_key()
    key_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(key)
    logger.info("storage_key_created path=%s", key_path)
    return key


class LocalStorage:
    """Config, current username and session token, encrypted per value."""

    def __init__(self, session_factory, fernet: Fernet) -> None:
        self.session_factory = session_factory
        self.fernet = fernet

    @classmethod
    def from_settings(cls, session_factory) -> "LocalStorage":
        return cls(session_factory, Fernet(load_or_create_key(settings.storage_key_file)))

    def _put(self, db, key: str, value: str) -> None:
        encrypted = self.fernet.encrypt(value.encode("utf-8")).decode("ascii")
        entry = db.get(ConfigEntry, key)
        if entry is None:
            db.add(ConfigEntry(key=key, value_encrypted=encrypted))
        else:
            entry.value_encrypted = encrypted

    def _decrypt(self, entry: ConfigEntry) -> str:
        try:
            return self.fernet.decrypt(entry.value_encrypted.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ConfigurationError(f"stored value for {entry.key} cannot be decrypted with this key") from exc

    def _get(self, key: str) -> str:
        with self.session_factory() as db:
            entry = db.get(ConfigEntry, key)
            return self._decrypt(entry) if entry is not None else ""

    def save_config(
        self,
        endpoint: str,
        api_key: str,
        secret_key: str,
        device_id: str,
        device_name: str,
        device_user: str,
        group_id: str,
    ) -> None:
        values = {
            KEY_ENDPOINT: endpoint,
            KEY_API_KEY: api_key,
            KEY_SECRET_KEY: secret_key,
            KEY_DEVICE_ID: device_id,
            KEY_DEVICE_NAME: device_name,
            KEY_DEVICE_USER: device_user,
            KEY_GROUP_ID: group_id,
        }
        with self.session_factory() as db:
            for key, value in values.items():
                self._put(db, key, value)
            db.commit()
        logger.info("storage_config_saved device_id=%s group_id=%s", device_id, group_id)

    def get_config(self) -> dict[str, str]:
        """Every config key mapped to its value, "" when unset."""

        with self.session_factory() as db:
            rows = db.execute(select(ConfigEntry).where(ConfigEntry.key.in_(CONFIG_KEYS))).scalars().all()
            stored = {row.key: self._decrypt(row) for row in rows}
        return {key: stored.get(key, "") for key in CONFIG_KEYS}

    def is_configured(self) -> bool:
        config = self.get_config()
        return all(config[key].strip() for key in (KEY_ENDPOINT, KEY_API_KEY, KEY_SECRET_KEY, KEY_DEVICE_ID))

    def credentials(self) -> Credentials:
        """Stored config as `Credentials`; raises `ConfigurationError` when incomplete."""

        config = self.get_config()
        try:
            return Credentials(
                api_key=config[KEY_API_KEY],
                secret_key=config[KEY_SECRET_KEY],
                device_id=config[KEY_DEVICE_ID],
                group_id=config[KEY_GROUP_ID],
                device_name=config[KEY_DEVICE_NAME] or "DefaultDevice",
                device_user=config[KEY_DEVICE_USER] or "DefaultUser",
                base_url=config[KEY_ENDPOINT] or settings.yappy_base_url,
            )
        except ValueError as exc:
            raise ConfigurationError(f"stored Yappy configuration is incomplete: {exc}") from exc

    def save_session_token(self, token: str) -> None:
        with self.session_factory() as db:
            self._put(db, KEY_SESSION_TOKEN, token)
            db.commit()

    def get_session_token(self) -> str | None:
        return self._get(KEY_SESSION_TOKEN) or None

    def save_current_username(self, username: str) -> None:
        with self.session_factory() as db:
            self._put(db, KEY_CURRENT_USERNAME, username)
            db.commit()

    def get_current_username(self) -> str | None:
        username = self._get(KEY_CURRENT_USERNAME)
        return username if username.strip() else None

    def clear(self) -> None:
        with self.session_factory() as db:
            db.execute(delete(ConfigEntry))
            db.commit()
        logger.info("storage_cleared")
