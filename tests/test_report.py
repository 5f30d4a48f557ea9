#!/usr/bin/env python3

# test_report.py - Tests for the HTML report and email delivery
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

from email import message_from_string

from eessimon.lib import report
from eessimon.lib.discovery import ServerList
from eessimon.lib.monitor import MonitoringSnapshot
from eessimon.lib.report import (
    read_history,
    render_html,
    send_report,
    write_report,
)
from eessimon.lib.store import CATEGORIES, append_row
from eessimon.lib.sync import compare_servers
from eessimon.lib.manifest import RepositoryManifest

from tests.conftest import ROOT_HASH


class FakePipe:
    def __init__(self, retcode=None, fail_write=False):
        self.retcode = retcode
        self.fail_write = fail_write
        self.data = None
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def write(self, data):
        if self.fail_write:
            raise BrokenPipeError("sendmail went away")
        self.data = data

    def close(self):
        self.closed = True
        return self.retcode


class TestRenderHtml:
    """The report is self-contained and shows "unknown" for missing values."""

    def test_empty_snapshot(self, config):
        snapshot = MonitoringSnapshot(config)
        html = render_html(config, snapshot, dict(), charts=dict())
        assert html.startswith("<!DOCTYPE html>")
        for section in [
            "Repository Summary",
            "Client Activity",
            "Stratum 0 Synchronization",
            "Visualization",
            "System Health",
        ]:
            assert f"<h2>{section}</h2>" in html
        assert "No Stratum 0 servers were checked." in html
        assert "<div class='metric-value'>unknown</div>" in html
        assert "None" not in html

    def test_sync_table(self, config, logger, local_manifest):
        snapshot = MonitoringSnapshot(config)
        snapshot.manifest = local_manifest
        upstreams = {
            "s0-a.example.org": RepositoryManifest(4711, ROOT_HASH, 1700000000),
            "s0-b.example.org": RepositoryManifest(4712, ROOT_HASH, 1700007200),
        }
        snapshot.server_list = ServerList(list(upstreams))
        snapshot.sync_summary = compare_servers(
            config,
            logger,
            local_manifest,
            snapshot.server_list,
            fetcher=lambda config, server: upstreams[server],
        )
        html = render_html(config, snapshot, dict(), charts=dict())
        assert "s0-a.example.org" in html
        assert "2.0 h behind" in html
        assert "Latest revision (4712) found on server: <b>s0-b.example.org</b>" in html
        assert "cvmfs_server snapshot software.eessi.io" in html

    def test_placeholder_alert(self, config):
        snapshot = MonitoringSnapshot(config)
        snapshot.server_list = ServerList(
            ["cvmfs-s1.eessi-hpc.org"], source="placeholder", placeholder=True
        )
        html = render_html(config, snapshot, dict(), charts=dict())
        assert "cvmfs-s1.eessi-hpc.org was used as a fallback" in html

    def test_escaping(self, config):
        snapshot = MonitoringSnapshot(config)
        snapshot.web_stats = {
            "unique_clients": 1,
            "total_requests": 1,
            "top_clients": [{"client": "<script>alert(1)</script>", "requests": 1}],
        }
        snapshot.messages = [
            {
                "timestamp": "2024-01-01 10:00:00",
                "level": "warning",
                "message": "a & b",
            }
        ]
        html = render_html(config, snapshot, dict(), charts=dict())
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "a &amp; b" in html

    def test_charts(self, config):
        append_row(config, "daily/repo_size", ["2024-01-01", 1024, 1.0, 0.0, 10])
        append_row(config, "daily/repo_size", ["2024-01-02", 2048, 2.0, 0.0, 20])
        snapshot = MonitoringSnapshot(config)
        history = read_history(config)
        assert set(history) == set(CATEGORIES)
        html = render_html(config, snapshot, history)
        assert html.count("data:image/png;base64,") == 3


class TestWriteAndSend:
    def test_write_nested(self, config, logger, tmp_path):
        output_file = str(tmp_path / "www" / "reports" / "report.html")
        assert write_report(config, logger, "<html></html>\n", output_file)
        with open(output_file) as fh:
            assert fh.read() == "<html></html>\n"

    def test_write_failure(self, config, logger, tmp_path):
        tmp_path.joinpath("blocked").write_text("")
        output_file = str(tmp_path / "blocked" / "report.html")
        assert not write_report(config, logger, "", output_file)
        assert logger.faults[-1]["level"] == "error"

    def test_not_requested(self, config, logger, tmp_path):
        assert not send_report(config, logger, None, None)
        assert not send_report(config, logger, str(tmp_path / "report.html"), None)
        assert logger.faults == []

    def test_recipient_without_report(self, config, logger):
        assert not send_report(config, logger, None, "ops@example.org")
        assert logger.faults[-1]["level"] == "warning"

    def test_send(self, config, logger, tmp_path, monkeypatch):
        output_file = tmp_path / "report.html"
        output_file.write_text("<html>report</html>")
        sent = dict()
        pipe = FakePipe()

        def fake_popen(command, mode):
            sent["command"] = command
            return pipe

        monkeypatch.setattr(report, "popen", fake_popen)
        assert send_report(config, logger, str(output_file), "ops@example.org")
        assert sent["command"] == "/usr/sbin/sendmail -t"
        assert pipe.closed

        message = message_from_string(pipe.data)
        assert message["To"] == "<ops@example.org>"
        assert message["Subject"].startswith(
            "EESSI Stratum 1 Report - software.eessi.io - "
        )
        attachment = message.get_payload()[1]
        assert attachment.get_filename() == "report.html"
        assert "<html>report</html>" in attachment.get_payload(decode=True).decode()

    def test_sendmail_failure(self, config, logger, tmp_path, monkeypatch):
        output_file = tmp_path / "report.html"
        output_file.write_text("<html>report</html>")

        monkeypatch.setattr(report, "popen", lambda command, mode: FakePipe(256))
        assert not send_report(config, logger, str(output_file), "ops@example.org")
        assert logger.faults[-1]["level"] == "error"

    def test_pipe_closed_when_write_fails(self, config, logger, tmp_path, monkeypatch):
        output_file = tmp_path / "report.html"
        output_file.write_text("<html>report</html>")
        pipe = FakePipe(fail_write=True)

        monkeypatch.setattr(report, "popen", lambda command, mode: pipe)
        assert not send_report(config, logger, str(output_file), "ops@example.org")
        assert pipe.closed
        assert logger.faults[-1]["level"] == "error"
        assert "sendmail went away" in logger.faults[-1]["message"]
