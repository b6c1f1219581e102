"""Encrypted local store."""

import stat

import pytest
from cryptography.fernet import Fernet

from yappypay.common.errors import ConfigurationError
from yappypay.services.storage.models import ConfigEntry
from yappypay.services.storage.service import KEY_API_KEY, LocalStorage, load_or_create_key

CONFIG = {
    "endpoint": "https://api.yappy.test/v1",
    "api_key": "api-key-0123456789",
    "secret_key": "secret-key-0123456789",
    "device_id": "CAJA-02",
    "device_name": "Caja",
    "device_user": "cajero",
    "group_id": "ID-TESTING",
}


def test_config_round_trip_and_credentials(storage):
    assert not storage.is_configured()

    storage.save_config(**CONFIG)

    assert storage.is_configured()
    assert storage.get_config()[KEY_API_KEY] == CONFIG["api_key"]
    creds = storage.credentials()
    assert creds.device_id == "CAJA-02"
    assert creds.base_url == "https://api.yappy.test/v1"


def test_values_are_encrypted_at_rest(storage):
    storage.save_config(**CONFIG)

    with storage.session_factory() as db:
        raw = db.get(ConfigEntry, KEY_API_KEY).value_encrypted

    assert CONFIG["api_key"] not in raw


def test_save_config_overwrites(storage):
    storage.save_config(**CONFIG)
    storage.save_config(**{**CONFIG, "device_id": "CAJA-03"})

    assert storage.credentials().device_id == "CAJA-03"


def test_incomplete_config_is_a_configuration_error(storage):
    storage.save_config(**{**CONFIG, "secret_key": ""})

    assert not storage.is_configured()
    with pytest.raises(ConfigurationError):
        storage.credentials()


def test_session_token_and_username(storage):
    assert storage.get_session_token() is None

    storage.save_session_token("TOKEN-1")
    storage.save_current_username("cajero1")
    assert storage.get_session_token() == "TOKEN-1"
    assert storage.get_current_username() == "cajero1"

    storage.save_session_token("")
    assert storage.get_session_token() is None


def test_clear_removes_everything(storage):
    storage.save_config(**CONFIG)
    storage.save_current_username("cajero1")

    storage.clear()

    assert not storage.is_configured()
    assert storage.get_current_username() is None


def test_wrong_key_is_reported(storage):
    storage.save_config(**CONFIG)
    other = LocalStorage(storage.session_factory, Fernet(Fernet.generate_key()))

    with pytest.raises(ConfigurationError):
        other.get_config()


def test_key_file_is_created_once_with_owner_only_mode(tmp_path):
    path = tmp_path / "keys" / "storage.key"

    first = load_or_create_key(path)
    second = load_or_create_key(path)

    assert first == second
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    Fernet(first)
