#!/usr/bin/env python3

# monitor.py - EESSI Stratum 1 monitor monitoring pass
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

import fcntl

from contextlib import contextmanager
from datetime import datetime
from os import makedirs, path

import eessimon.lib.collector as collector
import eessimon.lib.discovery as discovery
import eessimon.lib.report as report
import eessimon.lib.store as store
import eessimon.lib.sync as sync

from eessimon.lib.manifest import RepositoryManifest


class MonitorError(Exception):
    """
    An exception which aborts a monitoring pass
    """

    def __init__(self, error=None):
        self.msg = f"ERROR: {error}"

    def __str__(self):
        return str(self.msg)


class MonitorLockedError(MonitorError):
    """
    An exception when another monitoring pass holds the lock
    """

    pass


@contextmanager
def monitor_lock(lock_file, logger):
    """
    Hold an exclusive, non-blocking lock on {lock_file} for one pass

    If the lock file cannot be created the pass runs unlocked.
    """
    try:
        if not path.isdir(path.dirname(lock_file)):
            makedirs(path.dirname(lock_file))
        lock_fh = open(lock_file, "a")
    except OSError as e:
        logger.out(f"Cannot create lock file {lock_file}: {e}", state="e")
        yield
        return

    try:
        fcntl.flock(lock_fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        lock_fh.close()
        raise MonitorLockedError(
            f"Another monitoring pass holds the lock on {lock_file}"
        )

    try:
        yield
    finally:
        fcntl.flock(lock_fh, fcntl.LOCK_UN)
        lock_fh.close()


def get_explicit_servers(config, logger):
    """
    Combine the configured servers with those of the server list file

    An unreadable server list file is a warning; its servers are skipped.
    """
    servers = list(config["servers"])
    if config["servers_file"]:
        try:
            file_servers = discovery.load_server_file(config["servers_file"])
        except discovery.ServerListError as e:
            logger.out(str(e), state="w")
        else:
            logger.out(
                f"Read {len(file_servers)} servers from {config['servers_file']}",
                state="i",
            )
            servers.extend(file_servers)
    return discovery.normalize_server_list(servers)


class MonitoringSnapshot(object):
    """
    All metrics gathered by one monitoring pass
    """

    def __init__(self, config):
        now = datetime.now()
        self.timestamp = now.strftime("%Y-%m-%d %H:%M:%S")
        self.date = now.strftime("%Y-%m-%d")
        self.repository = config["repository"]
        self.node_fqdn = config["node_fqdn"]

        self.repo_size = dict()
        self.manifest = RepositoryManifest()
        self.catalog_stats = dict()
        self.web_stats = dict()
        self.proxy_stats = dict()
        self.disk_usage = dict()
        self.service_status = dict()
        self.repository_access = None
        self.server_list = None
        self.sync_summary = None
        self.stored = dict()
        self.report_file = None
        self.report_sent = False
        self.messages = list()

    def to_dict(self):
        return {
            "timestamp": self.timestamp,
            "repository": self.repository,
            "host": self.node_fqdn,
            "repository_size": self.repo_size,
            "manifest": self.manifest.to_dict(),
            "catalog": self.catalog_stats,
            "web": self.web_stats,
            "proxy": self.proxy_stats,
            "disk": self.disk_usage,
            "services": self.service_status,
            "repository_access": self.repository_access,
            "servers": self.server_list.to_dict()
            if self.server_list is not None
            else None,
            "sync": self.sync_summary.to_dict()
            if self.sync_summary is not None
            else None,
            "stored": self.stored,
            "report_file": self.report_file,
            "report_sent": self.report_sent,
            "messages": self.messages,
        }


class MonitoringInstance(object):
    """
    One sequential monitoring pass over a Stratum 1 replica:
    collect, discover, compare, store, then render and send.
    """

    def __init__(self, config, logger):
        self.config = config
        self.logger = logger
        self.snapshot = None
        self.fault_start = len(self.logger.faults)

    def check_repository(self):
        repository_path = self.config["repository_path"]
        if not path.isdir(repository_path):
            self.logger.out(f"Repository not found: {repository_path}", state="e")
            raise MonitorError(f"Repository not found: {repository_path}")

    def collect(self):
        snapshot = self.snapshot

        self.logger.header("Checking Repository Size")
        snapshot.repo_size = collector.collect_repository_size(
            self.config, self.logger
        )

        self.logger.header("Checking Catalog Information")
        snapshot.manifest, snapshot.catalog_stats = collector.collect_catalog_info(
            self.config, self.logger
        )

        self.logger.header("Analyzing Web Server Logs")
        snapshot.web_stats = collector.collect_web_stats(self.config, self.logger)

        self.logger.header("Checking Squid Proxy Status")
        snapshot.proxy_stats = collector.collect_proxy_stats(self.config, self.logger)

        self.logger.header("Checking Disk Usage")
        snapshot.disk_usage = collector.collect_disk_usage(self.config, self.logger)

        self.logger.header("Checking Service Status")
        snapshot.service_status = collector.collect_service_status(
            self.config, self.logger
        )
        snapshot.repository_access = collector.check_repository_access(
            self.config, self.logger
        )

    def discover(self):
        self.logger.header("Discovering Stratum 0 Servers")
        explicit = get_explicit_servers(self.config, self.logger)
        self.snapshot.server_list = discovery.discover_servers(
            self.config, self.logger, explicit=explicit
        )

    def compare(self):
        self.logger.header("Checking Stratum 0 Synchronization")
        self.snapshot.sync_summary = sync.compare_servers(
            self.config, self.logger, self.snapshot.manifest, self.snapshot.server_list
        )

    def persist(self):
        self.logger.header("Saving Metrics")
        self.snapshot.stored = store.write_snapshot(
            self.config, self.logger, self.snapshot
        )

    def render(self):
        output_file = self.config["output_file"]
        recipient = self.config["email"]
        if not output_file:
            if recipient:
                self.logger.out(
                    "Email requested without an output file; not sending",
                    state="w",
                )
            return

        self.logger.header("Generating Report")
        self.snapshot.messages = self.logger.faults[self.fault_start :]
        history = report.read_history(self.config)
        charts = report.render_charts(
            self.config, self.snapshot, history, logger=self.logger
        )
        html = report.render_html(self.config, self.snapshot, history, charts=charts)
        if not report.write_report(self.config, self.logger, html, output_file):
            return
        self.snapshot.report_file = output_file

        if recipient:
            self.snapshot.report_sent = report.send_report(
                self.config, self.logger, output_file, recipient
            )

    def run(self):
        """
        Run a full monitoring pass and return its MonitoringSnapshot

        Raises MonitorError if the repository is missing and
        MonitorLockedError if another pass is running.
        """
        self.check_repository()
        with monitor_lock(self.config["lock_file"], self.logger):
            self.snapshot = MonitoringSnapshot(self.config)
            self.logger.out(
                f"Starting monitoring pass for {self.config['repository']} on {self.config['node_fqdn']}",
                state="s",
            )
            self.collect()
            self.discover()
            self.compare()
            self.persist()
            self.render()
            self.snapshot.messages = self.logger.faults[self.fault_start :]
        return self.snapshot

    def check_sync(self):
        """
        Compare the local manifest against the upstream servers only; nothing is stored
        """
        self.check_repository()
        self.snapshot = MonitoringSnapshot(self.config)
        self.logger.header("Checking Catalog Information")
        self.snapshot.manifest, self.snapshot.catalog_stats = (
            collector.collect_catalog_info(self.config, self.logger)
        )
        self.discover()
        self.compare()
        self.snapshot.messages = self.logger.faults[self.fault_start :]
        return self.snapshot
