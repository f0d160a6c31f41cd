"""Tests for controller configuration loading."""

from __future__ import annotations

import pytest
import yaml

from myresource_controller.config import ControllerConfig, load_config
from myresource_controller.models import ProviderKind


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_without_file(self, tmp_home):
        cfg = load_config(tmp_home)
        assert cfg.home == tmp_home
        assert cfg.store == "kubernetes"
        assert cfg.namespace is None
        assert cfg.workers == 2
        assert cfg.resync_interval == 300
        assert cfg.operation_timeout == 600
        assert cfg.effective_log_file == tmp_home / "logs" / "controller.log"

    def test_reads_yaml(self, tmp_home):
        (tmp_home / "config.yaml").write_text(
            yaml.safe_dump({"store": "file", "namespace": "prod", "workers": 4, "log_level": "debug"})
        )
        cfg = load_config(tmp_home)
        assert cfg.store == "file"
        assert cfg.namespace == "prod"
        assert cfg.workers == 4
        assert cfg.log_level == "DEBUG"

    def test_overrides_win(self, tmp_home):
        (tmp_home / "config.yaml").write_text(yaml.safe_dump({"store": "file", "workers": 4}))
        cfg = load_config(tmp_home, workers=8, namespace=None)
        assert cfg.workers == 8
        assert cfg.store == "file"

    def test_malformed_yaml_falls_back(self, tmp_home):
        (tmp_home / "config.yaml").write_text("store: [oops")
        assert load_config(tmp_home).store == "kubernetes"

    def test_non_mapping_falls_back(self, tmp_home):
        (tmp_home / "config.yaml").write_text("- just\n- a list\n")
        assert load_config(tmp_home).workers == 2

    def test_invalid_file_values_fall_back(self, tmp_home):
        (tmp_home / "config.yaml").write_text(yaml.safe_dump({"store": "etcd"}))
        cfg = load_config(tmp_home, store="memory")
        assert cfg.store == "memory"

    def test_invalid_override_raises(self, tmp_home):
        with pytest.raises(ValueError):
            load_config(tmp_home, workers=0)


class TestControllerConfig:
    def test_unknown_log_level(self, tmp_home):
        with pytest.raises(ValueError):
            ControllerConfig(home=tmp_home, log_level="chatty")

    def test_zero_timeout_disables_deadline(self, tmp_home):
        assert ControllerConfig(home=tmp_home, operation_timeout=0).operation_deadline is None

    def test_backend_options(self, tmp_home):
        opts = ControllerConfig(home=tmp_home, gcp_poll_interval=1, operation_timeout=90).backend_options()
        assert opts[ProviderKind.GCP] == {"poll_interval": 1, "operation_timeout": 90}
        assert opts[ProviderKind.AZURE]["operation_timeout"] == 90
