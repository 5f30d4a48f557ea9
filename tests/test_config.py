#!/usr/bin/env python3

# test_config.py - Tests for configuration parsing
# Part of the EESSI Stratum 1 Monitor (eessi-monitor)
#
#    Copyright (C) 2024-2025 The eessi-monitor authors
#
#    This program is free software: you can redistribute it and/or modify
#    it under the terms of the GNU General Public License as published by
#    the Free Software Foundation, version 3.
#
#    This program is distributed in the hope that it will be useful,
#    but WITHOUT ANY WARRANTY; without even the implied warranty of
#    MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
#    GNU General Public License for more details.
#
#    You should have received a copy of the GNU General Public License
#    along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
###############################################################################

import pytest

from eessimon.lib import config as config_module
from eessimon.lib.config import (
    MalformedConfigurationError,
    get_configuration,
    get_configuration_path,
    get_parsed_configuration,
)


@pytest.fixture
def no_system_config(monkeypatch, tmp_path):
    monkeypatch.delenv("EESSI_MONITOR_CONFIG", raising=False)
    monkeypatch.setattr(
        config_module, "DEFAULT_CONFIG_FILE", str(tmp_path / "no-such-monitor.yaml")
    )


class TestConfigurationPath:
    def test_explicit_missing(self, tmp_path):
        with pytest.raises(MalformedConfigurationError):
            get_configuration_path(str(tmp_path / "missing.yaml"))

    def test_environment(self, tmp_path, monkeypatch, no_system_config):
        config_file = tmp_path / "env.yaml"
        config_file.write_text("---\n")
        monkeypatch.setenv("EESSI_MONITOR_CONFIG", str(config_file))
        assert get_configuration_path() == str(config_file)

    def test_environment_missing(self, tmp_path, monkeypatch, no_system_config):
        monkeypatch.setenv("EESSI_MONITOR_CONFIG", str(tmp_path / "missing.yaml"))
        with pytest.raises(MalformedConfigurationError):
            get_configuration_path()

    def test_defaults(self, no_system_config):
        assert get_configuration_path() is None


class TestParsing:
    """YAML sections are flattened over the built-in defaults."""

    def test_sections(self, tmp_path):
        config_file = tmp_path / "monitor.yaml"
        config_file.write_text(
            "---\n"
            "monitor:\n"
            "  repository: dev.eessi.io\n"
            "  servers:\n"
            "    - s0.example.org\n"
            "  history_rows: 24\n"
            "paths:\n"
            "  web_log: /tmp/access_log\n"
            "logging:\n"
            "  debug: true\n"
            "report:\n"
            "  email: ops@example.org\n"
        )
        config = get_parsed_configuration(str(config_file))
        assert config["repository"] == "dev.eessi.io"
        assert config["servers"] == ["s0.example.org"]
        assert config["history_rows"] == 24
        assert config["web_log"] == "/tmp/access_log"
        assert config["debug"] is True
        assert config["email"] == "ops@example.org"
        # Untouched keys keep their defaults
        assert config["cvmfs_base"] == "/srv/cvmfs"
        assert config["fetch_timeout"] == 10

    def test_empty_file(self, tmp_path):
        config_file = tmp_path / "monitor.yaml"
        config_file.write_text("")
        assert get_parsed_configuration(str(config_file))["repository"] == (
            "software.eessi.io"
        )

    def test_not_a_mapping(self, tmp_path):
        config_file = tmp_path / "monitor.yaml"
        config_file.write_text("- a\n- b\n")
        with pytest.raises(MalformedConfigurationError):
            get_parsed_configuration(str(config_file))

    def test_section_not_a_mapping(self, tmp_path):
        config_file = tmp_path / "monitor.yaml"
        config_file.write_text("monitor: software.eessi.io\n")
        with pytest.raises(MalformedConfigurationError):
            get_parsed_configuration(str(config_file))

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "monitor.yaml"
        config_file.write_text("monitor: [unclosed\n")
        with pytest.raises(MalformedConfigurationError):
            get_parsed_configuration(str(config_file))


class TestGetConfiguration:
    def test_overrides(self, tmp_path):
        config_file = tmp_path / "monitor.yaml"
        config_file.write_text(
            "monitor:\n  repository: dev.eessi.io\n  cvmfs_base: /data/cvmfs\n"
        )
        config = get_configuration(
            str(config_file),
            {"repository": "software.eessi.io", "cvmfs_base": None, "servers": []},
        )
        assert config["repository"] == "software.eessi.io"
        assert config["repository_path"] == "/data/cvmfs/software.eessi.io"
        assert config["config_file"] == str(config_file)
        assert config["servers"] == []

    def test_derived_values(self, no_system_config):
        config = get_configuration(overrides={"data_directory": "/tmp/metrics"})
        assert config["config_file"] is None
        assert config["lock_file"] == "/tmp/metrics/.eessi-monitor.lock"
        assert config["web_log"] in [
            "/var/log/httpd/access_log",
            "/var/log/apache2/access.log",
        ]
        assert config["email_from"].startswith("eessi-monitor@")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"repository": "software"},
            {"repository": "bad name.eessi.io"},
            {"fetch_timeout": "soon"},
            {"probe_timeout": 0},
            {"history_rows": 0},
            {"log_tail_lines": "many"},
            {"servers": {"a": "b"}},
        ],
    )
    def test_malformed(self, overrides, no_system_config):
        with pytest.raises(MalformedConfigurationError):
            get_configuration(overrides=overrides)

    def test_single_server_string(self, no_system_config):
        config = get_configuration(overrides={"known_mirrors": "mirror.example.org"})
        assert config["known_mirrors"] == ["mirror.example.org"]
