import logging
import os

import pytest

from ue_remote import config as config_module
from ue_remote.config import DEFAULT_CONFIG, ConfigError, RemoteExecutionConfig, load_config


@pytest.fixture
def clean_env(monkeypatch):
    environ = {k: v for k, v in os.environ.items() if not k.startswith("UE_REMOTE_")}
    monkeypatch.setattr(os, "environ", environ)
    monkeypatch.setattr(config_module, "CLIENT_CONFIG", DEFAULT_CONFIG.copy())
    root = logging.getLogger()
    level = root.level
    yield environ
    root.setLevel(level)


def test_defaults():
    config = RemoteExecutionConfig()
    assert config.multicast_group_endpoint == ("239.0.0.1", 6766)
    assert config.command_endpoint == ("127.0.0.1", 6776)
    assert config.multicast_ttl == 0
    assert config.ping_interval == 1.0
    assert config.node_timeout == 5.0
    assert config.accept_retry_count == 6
    assert config.accept_retry_interval == 5.0
    assert config.command_timeout == 60.0


def test_load_config_from_environment(clean_env, tmp_path):
    clean_env["UE_REMOTE_COMMAND_PORT"] = "7100"
    clean_env["UE_REMOTE_NODE_TIMEOUT"] = "2.5"
    clean_env["UE_REMOTE_LOG_LEVEL"] = "debug"
    config = load_config(str(tmp_path / "missing.env"))
    assert config.command_port == 7100
    assert config.node_timeout == 2.5
    assert config.multicast_group_host == "239.0.0.1"
    assert logging.getLogger().level == logging.DEBUG


def test_load_config_from_dotenv(clean_env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("UE_REMOTE_MULTICAST_TTL=1\nUE_REMOTE_COMMAND_HOST=10.0.0.5\n", encoding="utf-8")
    clean_env["UE_REMOTE_MULTICAST_TTL"] = "4"
    config = load_config(str(env_file))
    # the real environment wins over the file
    assert config.multicast_ttl == 4
    assert config.command_host == "10.0.0.5"


def test_load_config_rejects_bad_values(clean_env, tmp_path):
    clean_env["UE_REMOTE_COMMAND_PORT"] = "not-a-port"
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "missing.env"))


def test_from_dict_coerces_and_ignores_unknown_keys():
    config = RemoteExecutionConfig.from_dict({"command_port": "0", "ping_interval": 2, "node_timeout": "4", "unknown": 1})
    assert config.command_port == 0
    assert config.ping_interval == 2.0
    assert isinstance(config.ping_interval, float)
    assert config.node_timeout == 4.0
    assert RemoteExecutionConfig.from_dict(config.to_dict()) == config


@pytest.mark.parametrize(
    "overrides",
    [
        {"multicast_group_port": 0},
        {"command_port": 70000},
        {"multicast_ttl": 256},
        {"multicast_group_host": "10.0.0.1"},
        {"multicast_group_host": "not-an-ip"},
        {"multicast_bind_address": "nowhere"},
        {"command_host": ""},
        {"ping_interval": 0},
        {"command_timeout": -1.0},
        {"ping_interval": 10.0, "node_timeout": 5.0},
        {"accept_retry_count": 0},
        {"log_level": "chatty"},
    ],
)
def test_invalid_config(overrides):
    with pytest.raises(ConfigError):
        RemoteExecutionConfig(**overrides)


def test_config_is_frozen():
    config = RemoteExecutionConfig()
    with pytest.raises(AttributeError):
        config.command_port = 1
