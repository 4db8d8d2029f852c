from pathlib import Path

import pytest

from capc.config import (
    ControllerConfig,
    ManagerConfig,
    StoreConfig,
    _deep_merge,
    apply_env,
    build_config,
    load_config,
)
from capc.core.exceptions import ConfigurationError
from capc.providers.contabo.config import CONTABO_API_BASE, Contabo

pytestmark = [pytest.mark.unit]


class TestDeepMerge:
    def test_shallow_override(self):
        assert _deep_merge({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}

    def test_nested_merge(self):
        base = {"contabo": {"client_id": "a", "api_user": "u"}}
        override = {"contabo": {"client_id": "b"}}
        assert _deep_merge(base, override) == {"contabo": {"client_id": "b", "api_user": "u"}}

    def test_does_not_mutate_inputs(self):
        base = {"controller": {"workers": 1}}
        _deep_merge(base, {"controller": {"workers": 2}})
        assert base == {"controller": {"workers": 1}}

    def test_empty_sides(self):
        assert _deep_merge({}, {"a": 1}) == {"a": 1}
        assert _deep_merge({"a": 1}, {}) == {"a": 1}


class TestLoadConfig:
    def test_project_only(self, tmp_path: Path):
        (tmp_path / "capc.toml").write_text("[controller]\nworkers = 8\n")
        result = load_config(project_dir=tmp_path, global_path=tmp_path / "nonexistent.toml")
        assert result == {"controller": {"workers": 8}}

    def test_project_overrides_global(self, tmp_path: Path):
        global_toml = tmp_path / "global.toml"
        global_toml.write_text('[contabo]\nclient_id = "global"\napi_user = "me"\n')
        project = tmp_path / "project"
        project.mkdir()
        (project / "capc.toml").write_text('[contabo]\nclient_id = "project"\n')

        result = load_config(project_dir=project, global_path=global_toml)

        assert result["contabo"] == {"client_id": "project", "api_user": "me"}

    def test_explicit_path_replaces_project_file(self, tmp_path: Path):
        (tmp_path / "capc.toml").write_text("[controller]\nworkers = 8\n")
        explicit = tmp_path / "other.toml"
        explicit.write_text("[controller]\nworkers = 2\n")

        result = load_config(path=explicit, project_dir=tmp_path, global_path=tmp_path / "none.toml")

        assert result["controller"]["workers"] == 2

    def test_missing_explicit_path_raises(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(path=tmp_path / "missing.toml", global_path=tmp_path / "none.toml")

    def test_invalid_toml_raises(self, tmp_path: Path):
        (tmp_path / "capc.toml").write_text("[controller\nworkers = \n")
        with pytest.raises(ConfigurationError, match="Invalid TOML"):
            load_config(project_dir=tmp_path, global_path=tmp_path / "none.toml")

    def test_no_files(self, tmp_path: Path):
        assert load_config(project_dir=tmp_path, global_path=tmp_path / "none.toml") == {}


class TestBuildConfig:
    def test_defaults(self):
        config = build_config({}, env={})

        assert config == ManagerConfig()
        assert config.contabo.api_url == CONTABO_API_BASE
        assert config.store.backend == "kubernetes"
        assert config.controller.workers == 4

    def test_sections(self):
        raw = {
            "contabo": {"client_id": "id", "request_timeout": 10},
            "controller": {"workers": 2, "requeue_interval": 5.0},
            "store": {"backend": "memory", "namespace": "capc-system"},
            "logging": {"level": "DEBUG", "console": False},
        }

        config = build_config(raw, env={})

        assert config.contabo == Contabo(client_id="id", request_timeout=10)
        assert config.controller == ControllerConfig(workers=2, requeue_interval=5.0)
        assert config.store == StoreConfig(backend="memory", namespace="capc-system")
        assert config.logging.level == "DEBUG"
        assert not config.logging.console

    def test_environment_overrides_file(self):
        raw = {"contabo": {"client_id": "from-file"}}
        env = {
            "CONTABO_CLIENT_ID": "from-env",
            "CONTABO_API_PASSWORD": "secret",
            "CAPC_NAMESPACE": "ns",
            "UNRELATED": "x",
        }

        config = build_config(raw, env=env)

        assert config.contabo.client_id == "from-env"
        assert config.contabo.api_password == "secret"
        assert config.store.namespace == "ns"

    def test_empty_env_values_are_ignored(self):
        assert apply_env({"contabo": {"client_id": "a"}}, {"CONTABO_CLIENT_ID": ""}) == {
            "contabo": {"client_id": "a"},
        }

    def test_unknown_key_raises(self):
        with pytest.raises(ConfigurationError, match=r"Unknown keys in \[controller\]: threads"):
            build_config({"controller": {"threads": 3}}, env={})

    def test_unknown_section_raises(self):
        with pytest.raises(ConfigurationError, match="Unknown config sections: pools"):
            build_config({"pools": {}}, env={})

    def test_section_must_be_table(self):
        with pytest.raises(ConfigurationError, match="must be a table"):
            build_config({"store": "memory"}, env={})

    def test_unknown_backend_raises(self):
        with pytest.raises(ConfigurationError, match="Unknown store backend"):
            build_config({"store": {"backend": "etcd"}}, env={})

    def test_invalid_controller_values(self):
        with pytest.raises(ConfigurationError, match="workers"):
            build_config({"controller": {"workers": 0}}, env={})


class TestControllerConfig:
    def test_backoff_bounds(self):
        with pytest.raises(ConfigurationError):
            ControllerConfig(backoff_base=10.0, backoff_max=5.0)

    def test_defaults(self):
        config = ControllerConfig()
        assert config.long_requeue_interval > config.requeue_interval
        assert config.resync_period >= config.requeue_interval


class TestContaboConfig:
    def test_validate_lists_missing_credentials(self):
        with pytest.raises(ConfigurationError, match="client_secret, api_password"):
            Contabo(client_id="id", api_user="me").validate()

    def test_validate_complete(self):
        Contabo(client_id="id", client_secret="s", api_user="me", api_password="pw").validate()

    async def test_create_provider_requires_credentials(self):
        with pytest.raises(ConfigurationError):
            await Contabo().create_provider()
