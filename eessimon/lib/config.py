#!/usr/bin/env python3

# config.py - Utility functions for eessi-monitor configuration parsing
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

import os
import re
import yaml

from socket import getfqdn, gethostname


DEFAULT_CONFIG_FILE = "/etc/eessi/monitor.yaml"
DEFAULT_REPOSITORY = "software.eessi.io"
DEFAULT_CVMFS_BASE = "/srv/cvmfs"
DEFAULT_DATA_DIRECTORY = "/var/log/eessi/metrics"
DEFAULT_LOG_DIRECTORY = "/var/log/eessi"
DEFAULT_CVMFS_CONFIG_DIRECTORY = "/etc/cvmfs"

# Public servers probed, in order, when nothing else names an upstream
DEFAULT_KNOWN_MIRRORS = [
    "aws-eu-west-s1-sync.eessi.science",
    "cvmfs-s1.eessi-hpc.org",
    "aws-eu-west1.stratum1.cvmfs.eessi-infra.org",
    "cvmfs-egi.gridpp.rl.ac.uk",
]
DEFAULT_PLACEHOLDER_SERVER = "cvmfs-s1.eessi-hpc.org"
DEFAULT_KNOWN_NAMESPACE = "eessi"

DEFAULT_SQUID_LOGS = [
    "/var/log/squid/access.log",
    "/var/log/squid3/access.log",
    "/var/log/squid/access_log",
]

repository_name_re = re.compile(r"^[A-Za-z0-9][A-Za-z0-9-]*(\.[A-Za-z0-9-]+)+$")


class MalformedConfigurationError(Exception):
    """
    An exception when parsing the eessi-monitor configuration
    """

    def __init__(self, error=None):
        self.msg = f"ERROR: Configuration is malformed: {error}"

    def __str__(self):
        return str(self.msg)


def get_configuration_path(config_file=None):
    """
    Find the configuration file to load: an explicit path must exist, then
    the EESSI_MONITOR_CONFIG environment variable, then the system default
    if present. Returns None when running on built-in defaults.
    """
    if config_file is not None:
        if not os.path.isfile(config_file):
            raise MalformedConfigurationError(
                f'Configuration file "{config_file}" does not exist'
            )
        return config_file

    _config_file = os.environ.get("EESSI_MONITOR_CONFIG", None)
    if _config_file is not None:
        if not os.path.isfile(_config_file):
            raise MalformedConfigurationError(
                f'Configuration file "{_config_file}" from EESSI_MONITOR_CONFIG does not exist'
            )
        return _config_file

    if os.path.isfile(DEFAULT_CONFIG_FILE):
        return DEFAULT_CONFIG_FILE

    return None


def get_hostname():
    node_fqdn = getfqdn()
    node_hostname = gethostname().split(".", 1)[0]

    return node_fqdn, node_hostname


def detect_web_log():
    if os.path.isdir("/var/log/httpd"):
        # RHEL-style
        return "/var/log/httpd/access_log"
    else:
        # Debian-style
        return "/var/log/apache2/access.log"


def get_default_configuration():
    node_fqdn, node_hostname = get_hostname()

    return {
        "node_fqdn": node_fqdn,
        "node_hostname": node_hostname,
        # monitor
        "repository": DEFAULT_REPOSITORY,
        "cvmfs_base": DEFAULT_CVMFS_BASE,
        "data_directory": DEFAULT_DATA_DIRECTORY,
        "servers": list(),
        "servers_file": None,
        "known_mirrors": list(DEFAULT_KNOWN_MIRRORS),
        "known_namespace": DEFAULT_KNOWN_NAMESPACE,
        "placeholder_server": DEFAULT_PLACEHOLDER_SERVER,
        "fetch_timeout": 10,
        "probe_timeout": 5,
        "log_tail_lines": 1000,
        "history_rows": 48,
        "lock_file": None,
        # paths
        "web_log": None,
        "squid_logs": list(DEFAULT_SQUID_LOGS),
        "cvmfs_config_directory": DEFAULT_CVMFS_CONFIG_DIRECTORY,
        "cvmfs_server_command": "cvmfs_server",
        # logging
        "debug": False,
        "file_logging": True,
        "stdout_logging": True,
        "log_directory": DEFAULT_LOG_DIRECTORY,
        "log_dates": True,
        "log_colours": True,
        # report
        "output_file": None,
        "email": None,
        "sendmail_command": "/usr/sbin/sendmail -t",
        "email_from": f"eessi-monitor@{node_fqdn}",
    }


def get_parsed_configuration(config_file):
    """
    Load a YAML configuration file and flatten its sections over the defaults
    """
    with open(config_file, "r") as cfgfh:
        try:
            o_config = yaml.load(cfgfh, Loader=yaml.SafeLoader)
        except Exception as e:
            raise MalformedConfigurationError(f"Failed to parse {config_file}: {e}")

    if o_config is None:
        o_config = dict()
    if not isinstance(o_config, dict):
        raise MalformedConfigurationError(
            f"Top level of {config_file} must be a mapping"
        )

    config = get_default_configuration()

    try:
        o_monitor = o_config.get("monitor", dict()) or dict()
        config_monitor = {
            "repository": o_monitor.get("repository", config["repository"]),
            "cvmfs_base": o_monitor.get("cvmfs_base", config["cvmfs_base"]),
            "data_directory": o_monitor.get(
                "data_directory", config["data_directory"]
            ),
            "servers": o_monitor.get("servers", config["servers"]) or list(),
            "servers_file": o_monitor.get("servers_file", config["servers_file"]),
            "known_mirrors": o_monitor.get("known_mirrors", config["known_mirrors"])
            or list(),
            "known_namespace": o_monitor.get(
                "known_namespace", config["known_namespace"]
            ),
            "placeholder_server": o_monitor.get(
                "placeholder_server", config["placeholder_server"]
            ),
            "fetch_timeout": o_monitor.get("fetch_timeout", config["fetch_timeout"]),
            "probe_timeout": o_monitor.get("probe_timeout", config["probe_timeout"]),
            "log_tail_lines": o_monitor.get(
                "log_tail_lines", config["log_tail_lines"]
            ),
            "history_rows": o_monitor.get("history_rows", config["history_rows"]),
            "lock_file": o_monitor.get("lock_file", config["lock_file"]),
        }
        config = {**config, **config_monitor}

        o_paths = o_config.get("paths", dict()) or dict()
        config_paths = {
            "web_log": o_paths.get("web_log", config["web_log"]),
            "squid_logs": o_paths.get("squid_logs", config["squid_logs"]) or list(),
            "cvmfs_config_directory": o_paths.get(
                "cvmfs_config_directory", config["cvmfs_config_directory"]
            ),
            "cvmfs_server_command": o_paths.get(
                "cvmfs_server_command", config["cvmfs_server_command"]
            ),
        }
        config = {**config, **config_paths}

        o_logging = o_config.get("logging", dict()) or dict()
        config_logging = {
            "debug": o_logging.get("debug", config["debug"]),
            "file_logging": o_logging.get("file_logging", config["file_logging"]),
            "stdout_logging": o_logging.get(
                "stdout_logging", config["stdout_logging"]
            ),
            "log_directory": o_logging.get("log_directory", config["log_directory"]),
            "log_dates": o_logging.get("log_dates", config["log_dates"]),
            "log_colours": o_logging.get("log_colours", config["log_colours"]),
        }
        config = {**config, **config_logging}

        o_report = o_config.get("report", dict()) or dict()
        config_report = {
            "output_file": o_report.get("output_file", config["output_file"]),
            "email": o_report.get("email", config["email"]),
            "sendmail_command": o_report.get(
                "sendmail_command", config["sendmail_command"]
            ),
            "email_from": o_report.get("email_from", config["email_from"]),
        }
        config = {**config, **config_report}
    except AttributeError as e:
        raise MalformedConfigurationError(f"Section is not a mapping: {e}")

    return config


def validate_configuration(config):
    if not isinstance(config["repository"], str) or not repository_name_re.match(
        config["repository"]
    ):
        raise MalformedConfigurationError(
            f'Repository name "{config["repository"]}" is not a valid fully qualified repository name'
        )

    for key in ["fetch_timeout", "probe_timeout"]:
        try:
            value = float(config[key])
        except (TypeError, ValueError):
            raise MalformedConfigurationError(f'"{key}" must be a number')
        if value <= 0:
            raise MalformedConfigurationError(f'"{key}" must be positive')
        config[key] = value

    for key in ["log_tail_lines", "history_rows"]:
        try:
            value = int(config[key])
        except (TypeError, ValueError):
            raise MalformedConfigurationError(f'"{key}" must be an integer')
        if value < 1:
            raise MalformedConfigurationError(f'"{key}" must be at least 1')
        config[key] = value

    for key in ["servers", "known_mirrors", "squid_logs"]:
        if isinstance(config[key], str):
            config[key] = [config[key]]
        if not isinstance(config[key], list):
            raise MalformedConfigurationError(f'"{key}" must be a list')

    return config


def get_configuration(config_file=None, overrides=None):
    """
    Build the single configuration dictionary threaded through a monitoring pass

    {overrides} holds command-line values; None values leave the file (or
    default) setting in place.
    """
    config_path = get_configuration_path(config_file)
    if config_path is not None:
        config = get_parsed_configuration(config_path)
    else:
        config = get_default_configuration()
    config["config_file"] = config_path

    if overrides is not None:
        for key, value in overrides.items():
            if value is None:
                continue
            if isinstance(value, (list, tuple)) and len(value) < 1:
                continue
            config[key] = value

    if config["web_log"] in [None, "", "auto"]:
        config["web_log"] = detect_web_log()

    if config["lock_file"] in [None, ""]:
        config["lock_file"] = f"{config['data_directory']}/.eessi-monitor.lock"

    if not config["email_from"]:
        config["email_from"] = f"eessi-monitor@{config['node_fqdn']}"

    config["repository_path"] = f"{config['cvmfs_base']}/{config['repository']}"

    return validate_configuration(config)
