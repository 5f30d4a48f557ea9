#!/usr/bin/env python3

# collector.py - EESSI Stratum 1 monitor metric collection functions
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
import psutil
import requests

from collections import Counter
from math import ceil
from os import path, scandir

from eessimon.lib.common import command_exists, run_os_command, tail_file
from eessimon.lib.manifest import (
    MANIFEST_FILENAME,
    RepositoryManifest,
    manifest_url,
    parse_server_info,
    read_manifest_file,
)


# Status code of a common/combined log format line: '"GET /x HTTP/1.1" 200 123'
_access_status_re = re.compile(r'"[^"]*"\s+(\d{3})\b')
_squid_hit_re = re.compile(r"TCP_HIT|TCP_MEM_HIT|TCP_IMS_HIT")
_squid_miss_re = re.compile(r"TCP_MISS|TCP_REFRESH_MISS")

DISK_WARNING_PERCENT = 80
DISK_CRITICAL_PERCENT = 90


def get_dir_size(pathname):
    """
    Return the total size in bytes and the number of regular files below {pathname}

    Symlinks are not followed. Raises OSError if any part of the tree cannot be read.
    """
    total = 0
    files = 0
    with scandir(pathname) as it:
        for entry in it:
            if entry.is_file(follow_symlinks=False):
                total += entry.stat(follow_symlinks=False).st_size
                files += 1
            elif entry.is_dir(follow_symlinks=False):
                sub_total, sub_files = get_dir_size(entry.path)
                total += sub_total
                files += sub_files
    return total, files


#
# Repository size
#
def collect_repository_size(config, logger):
    repo_size = {
        "size_bytes": None,
        "size_kb": None,
        "size_mb": None,
        "size_gb": None,
        "file_count": None,
    }

    repo_path = config["repository_path"]
    if not path.isdir(repo_path):
        logger.out(f"Repository not found: {repo_path}", state="e")
        return repo_size

    logger.out(
        "Calculating repository size (this may take a moment)...", state="i"
    )
    try:
        size_bytes, file_count = get_dir_size(repo_path)
    except OSError as e:
        logger.out(f"Failed to calculate repository size: {e}", state="w")
        return repo_size

    size_kb = int(ceil(size_bytes / 1024))
    repo_size["size_bytes"] = size_bytes
    repo_size["size_kb"] = size_kb
    repo_size["size_mb"] = round(size_kb / 1024, 2)
    repo_size["size_gb"] = round(size_kb / 1024 / 1024, 2)
    repo_size["file_count"] = file_count

    logger.out(
        f"Size: {repo_size['size_gb']} GB ({file_count} files)",
        state="o",
    )
    return repo_size


#
# Catalog information
#
def query_server_info(config, logger):
    """
    Run "cvmfs_server info" for the repository; returns the parsed info or None
    """
    cvmfs_server = config["cvmfs_server_command"]
    if not command_exists(cvmfs_server):
        logger.out(f"{cvmfs_server} command not found", state="w")
        return None

    retcode, stdout, stderr = run_os_command(
        [cvmfs_server, "info", config["repository"]]
    )
    if retcode != 0 or not stdout.strip():
        logger.out(f"Could not get catalog info using {cvmfs_server}", state="w")
        return None

    info = parse_server_info(stdout)
    if info["revision"] is None:
        logger.out(f"{cvmfs_server} info did not report a revision", state="w")
        return None

    logger.out("Catalog information retrieved successfully", state="o")
    return info


def collect_catalog_info(config, logger):
    """
    Collect the local RepositoryManifest and catalog statistics

    The management tool is preferred; the published manifest on disk fills in
    whatever it does not provide.
    """
    repo_path = config["repository_path"]
    catalog_stats = {"catalog_size": None, "catalog_files": None}

    info = query_server_info(config, logger)

    manifest_file = f"{repo_path}/{MANIFEST_FILENAME}"
    if path.isfile(manifest_file):
        logger.out(f"Analyzing {MANIFEST_FILENAME} file...", state="i")
        file_manifest = read_manifest_file(manifest_file)
    else:
        logger.out(f"Published manifest not found: {manifest_file}", state="w")
        file_manifest = RepositoryManifest(source=manifest_file)

    if info is not None:
        manifest = RepositoryManifest(
            revision=info["revision"],
            root_hash=info["root_hash"] or file_manifest.root_hash,
            published_at=info["published_at"] or file_manifest.published_at,
            source=f"{config['cvmfs_server_command']} info",
        )
        catalog_stats["catalog_size"] = info["catalog_size"]
        catalog_stats["catalog_files"] = info["catalog_files"]
    else:
        manifest = file_manifest

    catalogs_path = f"{repo_path}/.cvmfs/catalogs"
    if catalog_stats["catalog_files"] is None or catalog_stats["catalog_size"] is None:
        try:
            if path.isdir(catalogs_path):
                catalogs_size, catalogs_files = get_dir_size(catalogs_path)
                if catalog_stats["catalog_files"] is None:
                    catalog_stats["catalog_files"] = catalogs_files
                if catalog_stats["catalog_size"] is None:
                    catalog_stats["catalog_size"] = catalogs_size
            elif path.isfile(f"{repo_path}/.cvmfscatalog"):
                if catalog_stats["catalog_size"] is None:
                    catalog_stats["catalog_size"] = path.getsize(
                        f"{repo_path}/.cvmfscatalog"
                    )
        except OSError as e:
            logger.out(f"Could not estimate catalog statistics: {e}", state="w")

    if manifest.revision is not None:
        logger.out(f"  Revision: {manifest.revision}", state="i")
    else:
        logger.out("  Revision: Could not be determined", state="w")
    if manifest.root_hash is not None:
        logger.out(f"  Root Hash: {manifest.root_hash}", state="i")
    if manifest.published_at is not None:
        logger.out(f"  Published: {manifest.published_at_text()}", state="i")
    if catalog_stats["catalog_size"] is not None:
        logger.out(f"  Catalog size: {catalog_stats['catalog_size']}", state="i")
    if catalog_stats["catalog_files"] is not None:
        logger.out(f"  Catalog files: {catalog_stats['catalog_files']}", state="i")

    return manifest, catalog_stats


#
# Web server access log
#
def parse_access_line(line):
    """
    Return the (client, status) of an access log line; status is None if absent
    """
    fields = line.split(None, 1)
    if not fields:
        return None, None
    client = fields[0]
    match = _access_status_re.search(line)
    if match is None:
        return client, None
    return client, int(match.group(1))


def collect_web_stats(config, logger):
    web_log = config["web_log"]
    repository = config["repository"]
    web_stats = {
        "log_file": web_log,
        "unique_clients": None,
        "total_requests": None,
        "status_200": None,
        "status_304": None,
        "status_404": None,
        "status_other": None,
        "top_clients": list(),
    }

    if not path.isfile(web_log):
        logger.out(f"Web server log not found: {web_log}", state="w")
        return web_stats

    logger.out("Analyzing web server logs...", state="i")
    try:
        lines = tail_file(web_log, config["log_tail_lines"])
    except OSError as e:
        logger.out(f"Cannot read web server log {web_log}: {e}", state="w")
        return web_stats

    clients = Counter()
    statuses = Counter()
    for line in lines:
        if repository not in line:
            continue
        client, status = parse_access_line(line)
        if client is None:
            continue
        clients[client] += 1
        if status in [200, 304, 404]:
            statuses[status] += 1
        else:
            statuses["other"] += 1

    total_requests = sum(clients.values())
    web_stats["unique_clients"] = len(clients)
    web_stats["total_requests"] = total_requests
    web_stats["status_200"] = statuses[200]
    web_stats["status_304"] = statuses[304]
    web_stats["status_404"] = statuses[404]
    web_stats["status_other"] = statuses["other"]
    web_stats["top_clients"] = [
        {"client": client, "requests": count}
        for client, count in clients.most_common(5)
    ]

    if total_requests < 1:
        logger.out(f"No entries for {repository} found in web server logs", state="w")
    else:
        logger.out(
            f"Found {len(clients)} unique clients with {total_requests} recent requests",
            state="o",
        )
    return web_stats


#
# Squid proxy access log
#
def find_squid_log(config):
    for log_file in config["squid_logs"]:
        if path.isfile(log_file):
            return log_file
    return None


def collect_proxy_stats(config, logger):
    repository = config["repository"]
    proxy_stats = {
        "log_file": None,
        "total_requests": 0,
        "cache_hits": 0,
        "cache_misses": 0,
        "hit_rate": 0.0,
    }

    squid_log = find_squid_log(config)
    if squid_log is None:
        logger.out("No Squid log file found - no proxy statistics", state="i")
        return proxy_stats
    proxy_stats["log_file"] = squid_log

    logger.out(f"Analyzing Squid logs: {squid_log}", state="i")
    try:
        lines = tail_file(squid_log, config["log_tail_lines"])
    except OSError as e:
        logger.out(f"Cannot read Squid log {squid_log}: {e}", state="w")
        for key in ["total_requests", "cache_hits", "cache_misses", "hit_rate"]:
            proxy_stats[key] = None
        return proxy_stats

    for line in lines:
        if repository not in line:
            continue
        proxy_stats["total_requests"] += 1
        if _squid_hit_re.search(line):
            proxy_stats["cache_hits"] += 1
        elif _squid_miss_re.search(line):
            proxy_stats["cache_misses"] += 1

    if proxy_stats["total_requests"] > 0:
        proxy_stats["hit_rate"] = round(
            proxy_stats["cache_hits"] * 100 / proxy_stats["total_requests"], 2
        )
        logger.out(
            f"Cache hit rate {proxy_stats['hit_rate']}% over {proxy_stats['total_requests']} requests",
            state="o",
        )
    else:
        logger.out(f"No entries for {repository} found in Squid logs", state="w")

    return proxy_stats


#
# Disk usage
#
def find_mount_point(pathname):
    mount_point = None
    for partition in psutil.disk_partitions(all=True):
        mountpoint = partition.mountpoint
        if pathname == mountpoint or pathname.startswith(mountpoint.rstrip("/") + "/"):
            if mount_point is None or len(mountpoint) > len(mount_point):
                mount_point = mountpoint
    return mount_point


def disk_usage_level(percent):
    if percent is None:
        return None
    if percent > DISK_CRITICAL_PERCENT:
        return "critical"
    if percent > DISK_WARNING_PERCENT:
        return "warning"
    return "ok"


def collect_disk_usage(config, logger):
    cvmfs_base = config["cvmfs_base"]
    disk_usage = {
        "path": cvmfs_base,
        "mount_point": None,
        "total": None,
        "used": None,
        "free": None,
        "percent": None,
        "level": None,
    }

    try:
        usage = psutil.disk_usage(cvmfs_base)
    except OSError as e:
        logger.out(f"Cannot determine disk usage of {cvmfs_base}: {e}", state="w")
        return disk_usage

    try:
        disk_usage["mount_point"] = find_mount_point(path.realpath(cvmfs_base))
    except OSError:
        pass
    disk_usage["total"] = usage.total
    disk_usage["used"] = usage.used
    disk_usage["free"] = usage.free
    disk_usage["percent"] = usage.percent
    disk_usage["level"] = disk_usage_level(usage.percent)

    if disk_usage["level"] == "critical":
        logger.out(
            f"Disk usage is over {DISK_CRITICAL_PERCENT}%! Consider freeing up space.",
            state="w",
        )
    elif disk_usage["level"] == "warning":
        logger.out(
            f"Disk usage is over {DISK_WARNING_PERCENT}%. Monitor space carefully.",
            state="w",
        )
    else:
        logger.out(f"Disk space usage is normal ({usage.percent}%)", state="o")

    return disk_usage


#
# Services
#
def get_active_unit(units):
    """
    Return the first of {units} which systemd reports as active, or None
    """
    for unit in units:
        retcode, stdout, stderr = run_os_command(["systemctl", "is-active", unit])
        if retcode == 0:
            return unit
    return None


def collect_service_status(config, logger):
    service_status = {"web_server": None, "proxy": None}

    if not command_exists("systemctl"):
        logger.out("systemctl not found; cannot determine service states", state="w")
        return service_status

    service_status["web_server"] = get_active_unit(["httpd", "apache2"])
    if service_status["web_server"] is not None:
        logger.out(
            f"Web server ({service_status['web_server']}) is running", state="o"
        )
    else:
        logger.out("Could not determine if web server is running", state="w")

    service_status["proxy"] = get_active_unit(["squid", "squid3"])
    if service_status["proxy"] is not None:
        logger.out(f"Squid proxy ({service_status['proxy']}) is running", state="o")
    else:
        logger.out("Squid proxy is not running", state="i")

    return service_status


def check_repository_access(config, logger):
    """
    Check that this host serves the repository manifest over HTTP
    """
    url = manifest_url(config["node_fqdn"], config["repository"])
    try:
        response = requests.head(
            url, timeout=config["probe_timeout"], allow_redirects=True
        )
    except requests.exceptions.RequestException:
        response = None

    if response is not None and response.ok:
        logger.out("Repository is accessible via HTTP", state="o")
        return True

    logger.out("Repository is NOT accessible via HTTP", state="w")
    logger.out(f"  Test with: curl --head {url}", state="i")
    return False
