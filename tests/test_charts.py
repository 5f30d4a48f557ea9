#!/usr/bin/env python3

# test_charts.py - Tests for the report charts
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

from math import isnan

import matplotlib.pyplot as plt

from eessimon.lib import charts
from eessimon.lib.charts import aligned_series, traffic_history_chart


ROWS = [
    {"timestamp": "10:00", "total_requests": "100", "unique_clients": "5"},
    {"timestamp": "11:00", "total_requests": "120", "unique_clients": "unknown"},
    {"timestamp": "12:00", "total_requests": "unknown", "unique_clients": "unknown"},
    {"timestamp": "13:00", "total_requests": "90", "unique_clients": "7"},
]


class TestAlignedSeries:
    def test_gaps_are_nan(self):
        labels, (requests, clients) = aligned_series(
            ROWS, "timestamp", ["total_requests", "unique_clients"]
        )
        assert labels == ["10:00", "11:00", "13:00"]
        assert requests == [100.0, 120.0, 90.0]
        assert len(clients) == len(labels)
        assert clients[0] == 5.0
        assert isnan(clients[1])
        assert clients[2] == 7.0

    def test_no_numeric_rows(self):
        labels, (requests,) = aligned_series(ROWS[2:3], "timestamp", ["total_requests"])
        assert labels == []
        assert requests == []


class TestTrafficChart:
    def test_series_share_the_x_axis(self, monkeypatch):
        figures = list()

        def keep_figure(figure):
            figures.append(figure)
            return "data:image/png;base64,"

        monkeypatch.setattr(charts, "figure_to_data_uri", keep_figure)
        traffic_history_chart("software.eessi.io", ROWS)

        ax = figures[0].axes[0]
        lines = {line.get_label(): line for line in ax.get_lines()}
        assert list(lines["Total requests"].get_xdata()) == [0, 1, 2]
        assert list(lines["Unique clients"].get_xdata()) == [0, 1, 2]
        assert isnan(lines["Unique clients"].get_ydata()[1])
        assert [tick.get_text() for tick in ax.get_xticklabels()] == [
            "10:00",
            "11:00",
            "13:00",
        ]
        plt.close(figures[0])

    def test_renders_png(self):
        uri = traffic_history_chart("software.eessi.io", ROWS)
        assert uri.startswith("data:image/png;base64,")

    def test_no_data(self, monkeypatch):
        titles = list()
        monkeypatch.setattr(charts, "no_data_chart", lambda title: titles.append(title))
        traffic_history_chart("software.eessi.io", ROWS[2:3])
        assert titles == ["Client Activity: software.eessi.io"]
