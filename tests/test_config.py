import json
import uuid

import pytest

from geofencing.config import BASE_KEYS, SystemConfiguration
from geofencing.exceptions import ConfigError, ConfigurationError, UnauthorizedError


def test_missing_file_generates_template(tmp_path):
    config = SystemConfiguration(str(tmp_path / "conf" / "configuration.json"), environ={})
    with pytest.raises(ConfigurationError) as exc:
        config.get_value("admin_password")
    assert exc.value.error == ConfigError.FILE_NOT_EXISTING
    assert exc.value.needs_template
    assert set(json.loads((tmp_path / "conf" / "configuration.json").read_text())) == set(BASE_KEYS)

    with pytest.raises(ConfigurationError) as exc:
        config.get_value("admin_password")
    assert exc.value.error == ConfigError.VALUE_NOT_SET
    assert not exc.value.needs_template


def test_missing_and_empty_values(config):
    with pytest.raises(ConfigurationError) as exc:
        config.get_value("no_such_key")
    assert exc.value.error == ConfigError.VALUE_NOT_FOUND
    assert exc.value.key == "no_such_key"

    config.set_value("mail_host", "")
    with pytest.raises(ConfigurationError) as exc:
        config.get_value("mail_host")
    assert exc.value.error == ConfigError.VALUE_NOT_SET


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "configuration.json"
    path.write_text(json.dumps({"admin_password": "from-file", "mail_port": "25"}))
    config = SystemConfiguration(str(path), environ={"GEOFENCING_ADMIN_PASSWORD": "from-env"})
    assert config.get_value("admin_password") == "from-env"
    assert config.get_int("mail_port") == 25


def test_get_int_rejects_text(config):
    config.set_value("mail_port", "smtp")
    with pytest.raises(ConfigurationError) as exc:
        config.get_int("mail_port")
    assert exc.value.error == ConfigError.OTHER


def test_broken_file(tmp_path):
    path = tmp_path / "configuration.json"
    path.write_text("{not json")
    with pytest.raises(ConfigurationError) as exc:
        SystemConfiguration(str(path), environ={}).load()
    assert exc.value.error == ConfigError.OTHER


def test_check_password(config):
    assert config.check_password("secret")
    with pytest.raises(UnauthorizedError):
        config.check_password("wrong")
    with pytest.raises(UnauthorizedError):
        config.check_password(None)


def test_check_password_when_unset(config):
    config.set_value("admin_password", "")
    with pytest.raises(ConfigurationError):
        config.check_password("secret")


def test_uuid_is_generated_once(config):
    config.set_value("uuid", "")
    generated = config.get_uuid()
    assert isinstance(generated, uuid.UUID)
    assert config.get_uuid() == generated
    assert config.load()["uuid"] == str(generated)


def test_ensure_keys_keeps_existing_values(config):
    config.ensure_keys(["admin_password", "new_key"], {"new_key": "default"})
    values = config.load()
    assert values["admin_password"] == "secret"
    assert values["new_key"] == "default"


def test_default_database_url(tmp_path):
    path = tmp_path / "configuration.json"
    path.write_text(json.dumps({"admin_password": "x"}))
    assert SystemConfiguration(str(path), environ={}).get_database_url() == "sqlite:///geofencing.db"
