import json

import pytest

from config_validation import validate_settings
from exceptions import ConfigError
from main import load_settings


def test_missing_settings_file_creates_defaults(tmp_path):
    path = tmp_path / 'settings.json'
    settings = load_settings(str(path))

    assert path.exists()
    assert settings['folderId'] == ''
    assert settings['updateInterval'] == 30000
    assert 'logFile' not in settings


def test_default_settings_need_a_folder_id(tmp_path):
    settings = load_settings(str(tmp_path / 'settings.json'))
    with pytest.raises(ConfigError):
        validate_settings(settings)


def test_invalid_json_is_a_config_error(tmp_path):
    path = tmp_path / 'settings.json'
    path.write_text('{"folderId": ')
    with pytest.raises(ConfigError):
        load_settings(str(path))


def test_existing_settings_are_loaded(tmp_path):
    path = tmp_path / 'settings.json'
    path.write_text(json.dumps({'folderId': 'abc', 'shuffle': False}))
    config = validate_settings(load_settings(str(path)))
    assert config.folder_id == 'abc'
    assert config.shuffle is False
