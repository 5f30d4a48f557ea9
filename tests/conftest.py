#!/usr/bin/env python3

# conftest.py - Shared fixtures for the eessi-monitor tests
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

from eessimon.lib.config import get_default_configuration, validate_configuration
from eessimon.lib.log import Logger
from eessimon.lib.manifest import RepositoryManifest


ROOT_HASH = "600230b0ba7620426f2e898f1e1f43c5466efe59"
OTHER_HASH = "0e1f3ad8e4c2fbd63a5a0ad0e1b7d30a5b27c6f1"


def build_manifest_bytes(revision=4711, root_hash=ROOT_HASH, published_at=1700000000):
    """
    Build a published manifest the way CVMFS lays it out: key-tagged header
    lines, a "--" separator, then a binary signature.
    """
    lines = [b"C" + root_hash.encode() if root_hash else b"", b"B1224704"]
    lines.append(b"Rd41d8cd98f00b204e9800998ecf8427e")
    lines.append(b"D240")
    if revision is not None:
        lines.append(b"S" + str(revision).encode())
    lines.append(b"Gno")
    lines.append(b"Ayes")
    lines.append(b"Nsoftware.eessi.io")
    if published_at is not None:
        lines.append(b"T" + str(published_at).encode())
    header = b"\n".join(line for line in lines if line)
    return header + b"\n--\n" + b"\x00\x9f\x13S\x7fT\x01\x02" + bytes(range(0, 64))


@pytest.fixture
def manifest_bytes():
    return build_manifest_bytes


@pytest.fixture
def config(tmp_path):
    """
    A monitoring configuration confined to a temporary directory
    """
    cvmfs_base = tmp_path / "srv" / "cvmfs"
    repository_path = cvmfs_base / "software.eessi.io"
    repository_path.mkdir(parents=True)

    config = get_default_configuration()
    config.update(
        {
            "node_fqdn": "stratum1.example.org",
            "node_hostname": "stratum1",
            "cvmfs_base": str(cvmfs_base),
            "repository_path": str(repository_path),
            "data_directory": str(tmp_path / "metrics"),
            "lock_file": str(tmp_path / "metrics" / ".eessi-monitor.lock"),
            "web_log": str(tmp_path / "httpd" / "access_log"),
            "squid_logs": [str(tmp_path / "squid" / "access.log")],
            "cvmfs_config_directory": str(tmp_path / "etc" / "cvmfs"),
            "log_directory": str(tmp_path / "log"),
            "cvmfs_server_command": "cvmfs_server_is_not_installed",
            "stdout_logging": False,
            "log_colours": False,
            "fetch_timeout": 1,
            "probe_timeout": 1,
            "email_from": "eessi-monitor@stratum1.example.org",
        }
    )
    return validate_configuration(config)


@pytest.fixture
def logger(config):
    logger = Logger(config)
    yield logger
    logger.terminate()


@pytest.fixture
def local_manifest():
    return RepositoryManifest(4711, ROOT_HASH, 1700000000, source="local")
