#!/usr/bin/env python3

# charts.py - EESSI Stratum 1 monitor report charts
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

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402

from base64 import b64encode  # noqa: E402
from io import BytesIO  # noqa: E402
from math import isnan, nan  # noqa: E402

from eessimon.lib.store import to_number  # noqa: E402
from eessimon.lib.sync import SyncStatus  # noqa: E402


CHART_SIZE = (8, 4)
CHART_DPI = 80

status_colours = {
    SyncStatus.SYNCHRONIZED: "#2ecc71",
    SyncStatus.OUT_OF_SYNC: "#e74c3c",
    SyncStatus.AHEAD_OF_UPSTREAM: "#f39c12",
    SyncStatus.HASH_MISMATCH: "#8e44ad",
    SyncStatus.UNREACHABLE: "#7f8c8d",
}


def figure_to_data_uri(figure):
    buffer = BytesIO()
    figure.tight_layout()
    figure.savefig(buffer, format="png", dpi=CHART_DPI)
    plt.close(figure)
    return "data:image/png;base64," + b64encode(buffer.getvalue()).decode("ascii")


def no_data_chart(title):
    figure, ax = plt.subplots(figsize=CHART_SIZE)
    ax.set_title(title)
    ax.text(
        0.5,
        0.5,
        "No data available",
        ha="center",
        va="center",
        fontsize=14,
        color="#7f8c8d",
        transform=ax.transAxes,
    )
    ax.set_xticks([])
    ax.set_yticks([])
    return figure_to_data_uri(figure)


def series(rows, x_column, y_column):
    """
    Return the (x, y) points of {rows} whose {y_column} is numeric
    """
    xs = list()
    ys = list()
    for row in rows:
        value = to_number(row.get(y_column))
        if value is None:
            continue
        xs.append(row.get(x_column))
        ys.append(value)
    return xs, ys


def size_history_chart(repository, rows):
    title = f"Repository Size: {repository}"
    labels, sizes = series(rows, "date", "size_gb")
    if not sizes:
        return no_data_chart(title)

    figure, ax = plt.subplots(figsize=CHART_SIZE)
    ax.plot(range(len(sizes)), sizes, marker="o", color="#3498db", linewidth=2)
    ax.fill_between(range(len(sizes)), sizes, alpha=0.2, color="#3498db")
    ax.set_title(title)
    ax.set_ylabel("GB")
    ax.set_xticks(range(len(labels)))
    ax.set_xticklabels(labels, rotation=45, ha="right", fontsize=8)
    ax.set_ylim(bottom=0)
    ax.grid(True, alpha=0.3)
    return figure_to_data_uri(figure)


def aligned_series(rows, x_column, y_columns):
    """
    Return the x labels of {rows} and one y list per column in {y_columns}

    All lists share the same rows; a value which is not numeric is NaN. Rows
    without any numeric value are dropped.
    """
    labels = list()
    columns = [list() for _ in y_columns]
    for row in rows:
        values = [to_number(row.get(column)) for column in y_columns]
        if all(value is None for value in values):
            continue
        labels.append(row.get(x_column))
        for column, value in zip(columns, values):
            column.append(nan if value is None else value)
    return labels, columns


def has_values(values):
    return any(not isnan(value) for value in values)


def traffic_history_chart(repository, rows):
    title = f"Client Activity: {repository}"
    labels, (requests, clients) = aligned_series(
        rows, "timestamp", ["total_requests", "unique_clients"]
    )
    if not labels:
        return no_data_chart(title)

    positions = range(len(labels))
    figure, ax = plt.subplots(figsize=CHART_SIZE)
    if has_values(requests):
        ax.plot(
            positions,
            requests,
            marker="o",
            color="#2ecc71",
            label="Total requests",
        )
    if has_values(clients):
        ax.plot(
            positions,
            clients,
            marker="s",
            color="#9b59b6",
            label="Unique clients",
        )
    ax.set_title(title)
    ax.set_ylabel("Count")
    ax.set_xticks(positions)
    ax.set_xticklabels(labels, rotation=45, ha="right", fontsize=7)
    ax.set_ylim(bottom=0)
    ax.grid(True, alpha=0.3)
    ax.legend(loc="upper left")
    return figure_to_data_uri(figure)


def sync_status_chart(repository, summary):
    title = f"Stratum 0 Synchronization: {repository}"
    if summary is None or summary.total < 1:
        return no_data_chart(title)

    statuses = [status for status in SyncStatus]
    counts = [summary.status_counts[status.value] for status in statuses]

    figure, ax = plt.subplots(figsize=CHART_SIZE)
    ax.bar(
        [status.value.replace("_", " ") for status in statuses],
        counts,
        color=[status_colours[status] for status in statuses],
    )
    ax.set_title(title)
    ax.set_ylabel("Servers")
    ax.yaxis.get_major_locator().set_params(integer=True)
    ax.grid(True, axis="y", alpha=0.3)
    return figure_to_data_uri(figure)


def render_charts(config, snapshot, history, logger=None):
    """
    Render the report charts as PNG data URIs keyed by chart name

    A chart which fails to render is logged and left out.
    """
    repository = config["repository"]
    chart_functions = [
        (
            "repo_size",
            lambda: size_history_chart(
                repository, history.get("daily/repo_size", list())
            ),
        ),
        (
            "traffic",
            lambda: traffic_history_chart(
                repository, history.get("hourly/apache_stats", list())
            ),
        ),
        ("sync_status", lambda: sync_status_chart(repository, snapshot.sync_summary)),
    ]

    charts = dict()
    for name, chart_function in chart_functions:
        if logger is not None:
            logger.out(f"Creating {name} chart...", state="d")
        try:
            charts[name] = chart_function()
        except Exception as e:
            plt.close("all")
            if logger is not None:
                logger.out(f"Failed to create {name} chart: {e}", state="w")
    return charts
