#!/usr/bin/env python3

# discovery.py - EESSI Stratum 1 monitor upstream server discovery
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

import re
import requests

from os import path

from eessimon.lib.common import command_exists, run_os_command
from eessimon.lib.manifest import manifest_url


_url_host_re = re.compile(r"^(?:https?)://([^/:@]+)(?::[0-9]+)?(?:/.*)?$")
_config_directive_re = re.compile(
    r"""^\s*(?:export\s+)?(CVMFS_SERVER_URL|CVMFS_STRATUM0)\s*=\s*["']?([^"'#]*)["']?"""
)

SOURCE_EXPLICIT = "explicit"
SOURCE_REPLICATION = "replication"
SOURCE_CONFIGURATION = "configuration"
SOURCE_MIRROR = "mirror"
SOURCE_PLACEHOLDER = "placeholder"
SOURCE_NONE = "none"


class ServerListError(Exception):
    """
    An exception when reading a server list file
    """

    def __init__(self, error=None):
        self.msg = f"ERROR: Cannot read server list: {error}"

    def __str__(self):
        return str(self.msg)


class ServerList(object):
    """
    The resolved upstream servers of a monitoring pass and where they came from

    {placeholder} is set when the only entry is the last-resort default, whose
    connectivity has not been verified.
    """

    def __init__(self, servers=(), source=SOURCE_NONE, placeholder=False):
        self._servers = tuple(normalize_server_list(servers))
        self._source = source
        self._placeholder = placeholder

    @property
    def servers(self):
        return self._servers

    @property
    def source(self):
        return self._source

    @property
    def placeholder(self):
        return self._placeholder

    def __len__(self):
        return len(self._servers)

    def __iter__(self):
        return iter(self._servers)

    def __contains__(self, server):
        return server in self._servers

    def __repr__(self):
        return f"ServerList(servers={list(self._servers)}, source={self._source!r}, placeholder={self._placeholder})"

    def to_dict(self):
        return {
            "servers": list(self._servers),
            "source": self._source,
            "placeholder": self._placeholder,
        }


def normalize_server_list(servers):
    """
    Deduplicate {servers} by hostname, keeping the first-seen order
    """
    seen = set()
    normalized = list()
    for server in servers:
        if server is None:
            continue
        server = server.strip()
        if not server:
            continue
        host = extract_host(server) or server
        if host in seen:
            continue
        seen.add(host)
        normalized.append(server)
    return normalized


def extract_host(url):
    if url is None:
        return None
    url = url.strip()
    if not url:
        return None
    match = _url_host_re.match(url)
    if match is not None:
        return match.group(1)
    if "/" in url or ":" in url or " " in url:
        return None
    return url


def load_server_file(filename):
    """
    Read one server per line; blank lines and "#" comments are ignored
    """
    servers = list()
    try:
        with open(filename, "r") as fh:
            for line in fh:
                line = line.split("#", 1)[0].strip()
                if line:
                    servers.append(line)
    except OSError as e:
        raise ServerListError(f"{filename}: {e.strerror or e}")
    return servers


#
# Discovery sources
#
def query_replication_tool(config, logger):
    """
    Ask "cvmfs_server info -r" for the upstream URL of a replica
    """
    cvmfs_server = config["cvmfs_server_command"]
    if not command_exists(cvmfs_server):
        logger.out(f"{cvmfs_server} command not found", state="d")
        return list()

    logger.out(f"Checking replica configuration using {cvmfs_server}...", state="i")
    retcode, stdout, stderr = run_os_command(
        [cvmfs_server, "info", "-r", config["repository"]]
    )
    if retcode != 0 or not stdout.strip():
        logger.out("Could not get replica information", state="d")
        return list()

    servers = list()
    for line in stdout.splitlines():
        if not line.startswith("Upstream:"):
            continue
        host = extract_host(line.split(":", 1)[1])
        if host is not None:
            logger.out(
                f"Found Stratum 0 server in replica configuration: {host}", state="o"
            )
            servers.append(host)
    return servers


def get_configuration_files(config):
    repository = config["repository"]
    config_directory = config["cvmfs_config_directory"]
    domain = repository.split(".", 1)[1] if "." in repository else repository
    return [
        f"{config_directory}/domain.d/{domain}.conf",
        f"{config_directory}/config.d/{repository}.conf",
    ]


def parse_configuration_file(filename):
    """
    Return the hosts named by CVMFS_SERVER_URL and CVMFS_STRATUM0 in a client file
    """
    hosts = list()
    with open(filename, "r", errors="replace") as fh:
        for line in fh:
            match = _config_directive_re.match(line)
            if match is None:
                continue
            for url in match.group(2).split(";"):
                url = url.replace("@fqrn@", "").replace("@org@", "")
                host = extract_host(url)
                if host is not None:
                    hosts.append(host)
    return hosts


def scan_client_configuration(config, logger):
    servers = list()
    for config_file in get_configuration_files(config):
        if not path.isfile(config_file):
            continue
        logger.out(f"Checking CVMFS configuration: {config_file}", state="i")
        try:
            hosts = parse_configuration_file(config_file)
        except OSError as e:
            logger.out(f"Cannot read {config_file}: {e}", state="w")
            continue
        for host in hosts:
            if host not in servers:
                logger.out(f"Found server in configuration: {host}", state="o")
                servers.append(host)
    return servers


def probe_server(config, server):
    url = manifest_url(server, config["repository"])
    try:
        response = requests.head(
            url, timeout=config["probe_timeout"], allow_redirects=True
        )
    except requests.exceptions.RequestException:
        return False
    return response.ok


def probe_known_mirrors(config, logger):
    """
    Probe the known public mirrors in order and return the first that responds
    """
    if config["known_namespace"] not in config["repository"]:
        return list()

    for server in config["known_mirrors"]:
        logger.out(f"Testing connectivity to {server}", state="i")
        if probe_server(config, server):
            logger.out(f"Successfully connected to {server}", state="o")
            return [server]
        logger.out(f"Could not connect to {server}", state="w")
    return list()


def discover_servers(config, logger, explicit=None):
    """
    Resolve the upstream servers for this pass

    An explicit list always wins. Otherwise the replication tool, the client
    configuration files and the known mirrors are tried in turn, falling back
    to the placeholder server.
    """
    if explicit:
        server_list = ServerList(explicit, SOURCE_EXPLICIT)
        logger.out(
            f"Using provided Stratum 0 servers: {' '.join(server_list.servers)}",
            state="i",
        )
        return server_list

    logger.out("Attempting to discover Stratum 0 servers automatically...", state="i")

    for source, source_function in [
        (SOURCE_REPLICATION, query_replication_tool),
        (SOURCE_CONFIGURATION, scan_client_configuration),
        (SOURCE_MIRROR, probe_known_mirrors),
    ]:
        servers = source_function(config, logger)
        if servers:
            server_list = ServerList(servers, source)
            break
    else:
        if config["placeholder_server"]:
            logger.out("Could not connect to any known server", state="w")
            logger.out(
                f"Adding {config['placeholder_server']} as fallback (connectivity will be checked later)",
                state="i",
            )
            server_list = ServerList(
                [config["placeholder_server"]], SOURCE_PLACEHOLDER, placeholder=True
            )
        else:
            server_list = ServerList()

    if len(server_list) > 0:
        logger.out(
            f"Discovered {len(server_list)} potential servers for monitoring",
            state="o",
        )
        for idx, server in enumerate(server_list, start=1):
            logger.out(f"  {idx}. {server}", state="i")
    else:
        logger.out(
            "No Stratum 0 servers found or specified. Synchronization check will be skipped.",
            state="w",
        )
    return server_list
