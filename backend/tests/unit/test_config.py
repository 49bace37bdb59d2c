# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for YAML configuration loading
"""

from pathlib import Path

import yaml

from crm_workflows.core import config as config_module
from crm_workflows.core.config import Config, load_config, reload_config


def write_yaml(tmp_dir, data):
    path = Path(tmp_dir) / "workflows.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


def test_missing_file_gives_defaults(tmp_dir):
    assert load_config(str(Path(tmp_dir) / "absent.yaml")) == Config()


def test_yaml_values_are_loaded(tmp_dir, monkeypatch):
    monkeypatch.delenv("MAILGUN_DOMAIN", raising=False)
    path = write_yaml(tmp_dir, {
        "storage": {"workflows": "/data/wf", "enrollments": "/data/enr"},
        "retry": {"max_attempts": 5, "base_delay": 0.5},
        "scheduler": {"batch_size": 4, "poll_interval": 0},
        "mailgun": {"domain": "mg.example.com"},
    })

    cfg = load_config(str(path))

    assert cfg.workflows_dir == Path("/data/wf")
    assert cfg.enrollments_dir == Path("/data/enr")
    assert cfg.retry_max_attempts == 5
    assert cfg.retry_base_delay == 0.5
    assert cfg.retry_max_delay == 30.0
    assert cfg.wakeup_batch_size == 4
    assert cfg.scheduler_poll_interval == 0
    assert cfg.mailgun_domain == "mg.example.com"


def test_environment_overrides_mailgun(tmp_dir, monkeypatch):
    monkeypatch.setenv("MAILGUN_DOMAIN", "mg.env.com")
    monkeypatch.setenv("MAILGUN_API_KEY", "key-env")
    path = write_yaml(tmp_dir, {"mailgun": {"domain": "mg.example.com"}})

    cfg = load_config(str(path))

    assert cfg.mailgun_domain == "mg.env.com"
    assert cfg.get_mailgun_api_key() == "key-env"


def test_reload_config_reads_path_from_env(tmp_dir, monkeypatch):
    path = write_yaml(tmp_dir, {"actions": {"recurring_max_times": 7}})
    monkeypatch.setenv("CRM_WORKFLOWS_CONFIG_PATH", str(path))
    monkeypatch.setattr(config_module, "_config", None)

    assert reload_config().recurring_max_times == 7
    assert config_module.get_config() is config_module.get_config()
