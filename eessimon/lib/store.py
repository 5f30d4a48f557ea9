#!/usr/bin/env python3

# store.py - EESSI Stratum 1 monitor time-series store
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

"""
Append-only CSV files holding the metrics of each monitoring pass.

Files live below the data directory, split by cadence into "daily" and
"hourly" subdirectories. Rows have no header; the columns of each category
are fixed by CATEGORIES and always start with a timestamp. Missing values
are written as "unknown".
"""

import csv

from os import makedirs, path

from eessimon.lib.common import UNKNOWN, tail_file


CATEGORIES = {
    "daily/repo_size": ["date", "size_kb", "size_mb", "size_gb", "num_files"],
    "daily/disk_usage": ["date", "path", "total", "used", "free", "percent"],
    "hourly/catalog_stats": [
        "timestamp",
        "revision",
        "catalog_size",
        "catalog_files",
        "root_hash",
        "published",
    ],
    "hourly/apache_stats": [
        "timestamp",
        "unique_clients",
        "total_requests",
        "status_200",
        "status_304",
        "status_404",
        "status_other",
    ],
    "hourly/squid_stats": [
        "timestamp",
        "total_requests",
        "cache_hits",
        "cache_misses",
        "hit_rate",
    ],
    "hourly/stratum0_sync": [
        "timestamp",
        "local_revision",
        "upstream_revision",
        "local_published",
        "upstream_published",
        "server",
        "status",
    ],
}


def category_path(config, category):
    return f"{config['data_directory']}/{category}.csv"


def format_value(value):
    if value is None:
        return UNKNOWN
    return str(value)


def append_row(config, category, values, logger=None):
    """
    Append one row of {values} to the {category} file

    Returns False, after logging an error, if the row could not be written.
    """
    filename = category_path(config, category)
    if len(values) != len(CATEGORIES[category]):
        if logger is not None:
            logger.out(
                f"Refusing to write {len(values)} values to {category} ({len(CATEGORIES[category])} columns)",
                state="e",
            )
        return False

    try:
        if not path.isdir(path.dirname(filename)):
            makedirs(path.dirname(filename))
        with open(filename, "a", newline="") as fh:
            csv.writer(fh).writerow([format_value(value) for value in values])
    except OSError as e:
        if logger is not None:
            logger.out(f"Failed to write {filename}: {e}", state="e")
        return False

    if logger is not None:
        logger.out(f"Saved data to {filename}", state="d")
    return True


def snapshot_rows(snapshot):
    """
    Return the rows of each category for one monitoring snapshot
    """
    repo_size = snapshot.repo_size or dict()
    disk_usage = snapshot.disk_usage or dict()
    web_stats = snapshot.web_stats or dict()
    proxy_stats = snapshot.proxy_stats or dict()
    manifest = snapshot.manifest

    rows = {
        "daily/repo_size": [
            [
                snapshot.date,
                repo_size.get("size_kb"),
                repo_size.get("size_mb"),
                repo_size.get("size_gb"),
                repo_size.get("file_count"),
            ]
        ],
        "daily/disk_usage": [
            [
                snapshot.date,
                disk_usage.get("path"),
                disk_usage.get("total"),
                disk_usage.get("used"),
                disk_usage.get("free"),
                disk_usage.get("percent"),
            ]
        ],
        "hourly/catalog_stats": [
            [
                snapshot.timestamp,
                manifest.revision,
                snapshot.catalog_stats.get("catalog_size"),
                snapshot.catalog_stats.get("catalog_files"),
                manifest.root_hash,
                manifest.published_at_text(),
            ]
        ],
        "hourly/apache_stats": [
            [
                snapshot.timestamp,
                web_stats.get("unique_clients"),
                web_stats.get("total_requests"),
                web_stats.get("status_200"),
                web_stats.get("status_304"),
                web_stats.get("status_404"),
                web_stats.get("status_other"),
            ]
        ],
        "hourly/squid_stats": [
            [
                snapshot.timestamp,
                proxy_stats.get("total_requests"),
                proxy_stats.get("cache_hits"),
                proxy_stats.get("cache_misses"),
                proxy_stats.get("hit_rate"),
            ]
        ],
        "hourly/stratum0_sync": list(),
    }

    if snapshot.sync_summary is not None:
        for record in snapshot.sync_summary.records:
            record_dict = record.to_dict()
            rows["hourly/stratum0_sync"].append(
                [
                    snapshot.timestamp,
                    record.local_revision,
                    record.upstream_revision,
                    record_dict["local_published"],
                    record_dict["upstream_published"],
                    record.server,
                    record.status.value,
                ]
            )

    return rows


def write_snapshot(config, logger, snapshot):
    """
    Persist a monitoring snapshot; each category is written independently

    Returns a dictionary of category to success. Categories without rows
    (no servers compared) are not included.
    """
    results = dict()
    for category, rows in snapshot_rows(snapshot).items():
        if not rows:
            continue
        results[category] = all(
            [append_row(config, category, row, logger=logger) for row in rows]
        )
    return results


def read_tail(config, category, lines=None):
    """
    Return the last {lines} rows of {category} as dictionaries keyed by column

    Short rows are padded with "unknown"; rows with too many fields are skipped.
    A missing or unreadable file gives an empty list.
    """
    if lines is None:
        lines = config["history_rows"]
    columns = CATEGORIES[category]

    try:
        raw_lines = tail_file(category_path(config, category), lines)
    except OSError:
        return list()

    rows = list()
    for raw_line in raw_lines:
        try:
            fields = next(csv.reader([raw_line]), None)
        except csv.Error:
            continue
        if not fields or len(fields) > len(columns):
            continue
        fields = fields + [UNKNOWN] * (len(columns) - len(fields))
        rows.append(dict(zip(columns, fields)))
    return rows


def to_number(value):
    """
    Convert a stored field to a float, or None if it is unknown or not numeric
    """
    if value is None or value == UNKNOWN:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
