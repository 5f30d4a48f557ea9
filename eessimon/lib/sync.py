#!/usr/bin/env python3

# sync.py - EESSI Stratum 1 monitor Stratum 0 synchronization comparison
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

import requests

from collections import namedtuple
from datetime import datetime
from enum import Enum

from eessimon.lib.manifest import (
    format_timestamp,
    manifest_url,
    parse_manifest,
)


class SyncStatus(Enum):
    SYNCHRONIZED = "synchronized"
    OUT_OF_SYNC = "out_of_sync"
    AHEAD_OF_UPSTREAM = "ahead_of_upstream"
    HASH_MISMATCH = "hash_mismatch"
    UNREACHABLE = "unreachable"

    def __str__(self):
        return self.value


# Aggregate bucket of each status in the summary counts
status_buckets = {
    SyncStatus.SYNCHRONIZED: "synchronized",
    SyncStatus.OUT_OF_SYNC: "out_of_sync",
    SyncStatus.AHEAD_OF_UPSTREAM: "out_of_sync",
    SyncStatus.HASH_MISMATCH: "out_of_sync",
    SyncStatus.UNREACHABLE: "unreachable",
}


class SyncRecord(
    namedtuple(
        "SyncRecord",
        [
            "timestamp",
            "server",
            "local_revision",
            "upstream_revision",
            "local_timestamp",
            "upstream_timestamp",
            "status",
            "lag_hours",
            "upstream_root_hash",
        ],
    )
):
    """
    One comparison of the local replica against one upstream server
    """

    __slots__ = ()

    def to_dict(self):
        return {
            "timestamp": self.timestamp,
            "server": self.server,
            "local_revision": self.local_revision,
            "upstream_revision": self.upstream_revision,
            "local_timestamp": self.local_timestamp,
            "local_published": format_timestamp(self.local_timestamp),
            "upstream_timestamp": self.upstream_timestamp,
            "upstream_published": format_timestamp(self.upstream_timestamp),
            "status": self.status.value,
            "lag_hours": self.lag_hours,
            "upstream_root_hash": self.upstream_root_hash,
        }


class SyncSummary(object):
    """
    The outcome of comparing the local replica against every upstream server
    """

    def __init__(
        self,
        repository,
        local,
        records,
        latest_server,
        latest_revision,
        latest_timestamp,
    ):
        self.repository = repository
        self.local = local
        self.records = list(records)
        self.latest_server = latest_server
        self.latest_revision = latest_revision
        self.latest_timestamp = latest_timestamp

        self.status_counts = {status.value: 0 for status in SyncStatus}
        self.counts = {"synchronized": 0, "out_of_sync": 0, "unreachable": 0}
        for record in self.records:
            self.status_counts[record.status.value] += 1
            self.counts[status_buckets[record.status]] += 1

    @property
    def total(self):
        return len(self.records)

    @property
    def overall(self):
        if self.total < 1:
            return "Not checked"
        if self.counts["synchronized"] == self.total:
            return "Synchronized with all servers"
        if self.counts["synchronized"] > 0:
            return f"Partially synchronized ({self.counts['synchronized']}/{self.total})"
        return "Not synchronized with any server"

    @property
    def newer_elsewhere(self):
        return (
            self.latest_server is not None
            and self.latest_revision is not None
            and self.latest_revision != self.local.revision
        )

    @property
    def suggested_actions(self):
        if self.total < 1 or self.counts["synchronized"] == self.total:
            return list()
        if not self.newer_elsewhere:
            return list()
        return [
            "Check Stratum 1 server snapshot/replication schedule",
            f"Verify network connectivity to {self.latest_server}",
            "Check for errors in /var/log/cvmfs or systemd journal",
            f"Manually trigger replication with: cvmfs_server snapshot {self.repository}",
        ]

    def to_dict(self):
        return {
            "repository": self.repository,
            "overall": self.overall,
            "total": self.total,
            "counts": dict(self.counts),
            "status_counts": dict(self.status_counts),
            "local": self.local.to_dict(),
            "latest_server": self.latest_server,
            "latest_revision": self.latest_revision,
            "latest_timestamp": self.latest_timestamp,
            "latest_published": format_timestamp(self.latest_timestamp),
            "suggested_actions": self.suggested_actions,
            "records": [record.to_dict() for record in self.records],
        }


def classify(local, upstream):
    """
    Classify the local manifest against an upstream manifest

    Returns a (SyncStatus, lag_hours) tuple; lag_hours is positive when the
    upstream is newer and None when the timestamps do not allow an estimate.
    A revision that is unknown on either side never compares equal.
    """
    if upstream is None:
        return SyncStatus.UNREACHABLE, None

    if local.revision is not None and local.revision == upstream.revision:
        if (
            local.root_hash is not None
            and upstream.root_hash is not None
            and local.root_hash != upstream.root_hash
        ):
            return SyncStatus.HASH_MISMATCH, None
        return SyncStatus.SYNCHRONIZED, None

    if local.published_at is None or upstream.published_at is None:
        return SyncStatus.OUT_OF_SYNC, None

    lag_hours = (upstream.published_at - local.published_at) / 3600
    if lag_hours < 0:
        return SyncStatus.AHEAD_OF_UPSTREAM, lag_hours
    return SyncStatus.OUT_OF_SYNC, lag_hours


def fetch_manifest(config, server):
    """
    Fetch and parse the published manifest of {server}; None if unreachable
    """
    url = manifest_url(server, config["repository"])
    try:
        response = requests.get(url, timeout=config["fetch_timeout"])
    except requests.exceptions.RequestException:
        return None
    if not response.ok or not response.content:
        return None
    return parse_manifest(response.content, source=url)


def compare_servers(config, logger, local, server_list, fetcher=fetch_manifest):
    """
    Compare the local manifest against each server in turn, without retries
    """
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    records = list()

    latest_server = None
    latest_revision = local.revision
    latest_timestamp = local.published_at

    logger.out(f"Local revision: {local.revision}", state="i")
    logger.out(f"Local timestamp: {local.published_at_text()}", state="i")

    for server in server_list:
        logger.out(f"Checking Stratum 0 server: {server}", state="i")
        upstream = fetcher(config, server)
        status, lag_hours = classify(local, upstream)

        if upstream is None:
            logger.out("  Failed to connect to Stratum 0 server", state="e")
            logger.out(
                f"  Check that {server} is accessible and serves {config['repository']}",
                state="i",
            )
            records.append(
                SyncRecord(
                    timestamp,
                    server,
                    local.revision,
                    None,
                    local.published_at,
                    None,
                    status,
                    None,
                    None,
                )
            )
            continue

        logger.out(f"  Revision: {upstream.revision}", state="i")
        if upstream.published_at is not None:
            logger.out(f"  Last modified: {upstream.published_at_text()}", state="i")

        if upstream.published_at is not None and (
            latest_timestamp is None or upstream.published_at > latest_timestamp
        ):
            latest_server = server
            latest_revision = upstream.revision
            latest_timestamp = upstream.published_at

        if status == SyncStatus.SYNCHRONIZED:
            logger.out("  Synchronized with local server", state="o")
        elif status == SyncStatus.HASH_MISMATCH:
            logger.out("  Root hashes differ despite matching revisions!", state="w")
        elif status == SyncStatus.AHEAD_OF_UPSTREAM:
            logger.out(
                f"  Local server is ahead by approximately {abs(lag_hours):.1f} hours",
                state="w",
            )
        elif lag_hours is not None:
            logger.out(
                f"  NOT synchronized; Stratum 0 is ahead by approximately {lag_hours:.1f} hours",
                state="w",
            )
        else:
            logger.out("  NOT synchronized with local server", state="w")

        records.append(
            SyncRecord(
                timestamp,
                server,
                local.revision,
                upstream.revision,
                local.published_at,
                upstream.published_at,
                status,
                lag_hours,
                upstream.root_hash,
            )
        )

    summary = SyncSummary(
        config["repository"],
        local,
        records,
        latest_server,
        latest_revision,
        latest_timestamp,
    )

    if summary.total < 1:
        logger.out("No Stratum 0 servers checked", state="w")
    elif summary.counts["synchronized"] == summary.total:
        logger.out(
            f"Synchronized with all {summary.total} Stratum 0 servers", state="o"
        )
    else:
        logger.out(
            f"Synchronized with {summary.counts['synchronized']} out of {summary.total} Stratum 0 servers",
            state="w",
        )
        if summary.newer_elsewhere:
            logger.out(
                f"Latest revision ({summary.latest_revision}) found on server: {summary.latest_server}",
                state="i",
            )

    return summary
