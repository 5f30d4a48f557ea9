#!/usr/bin/env python3

# report.py - EESSI Stratum 1 monitor HTML report rendering and delivery
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

from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate
from html import escape
from os import makedirs, path, popen

from eessimon.lib.charts import render_charts
from eessimon.lib.common import UNKNOWN, format_bytes, or_unknown
from eessimon.lib.manifest import format_timestamp
from eessimon.lib.store import CATEGORIES, read_tail
from eessimon.lib.sync import SyncStatus


REPORT_CSS = """
body {
    font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, "Helvetica Neue", Arial, sans-serif;
    line-height: 1.6;
    color: #333;
    max-width: 1200px;
    margin: 0 auto;
    padding: 20px;
}
h1, h2, h3 { color: #2c3e50; }
.header { background-color: #3498db; color: white; padding: 20px; border-radius: 5px; margin-bottom: 30px; }
.header h1 { color: white; }
.section { background-color: #f8f9fa; border-radius: 5px; padding: 20px; margin-bottom: 20px; box-shadow: 0 2px 5px rgba(0,0,0,0.1); }
.metric { display: flex; align-items: center; margin-bottom: 10px; }
.metric-label { width: 200px; font-weight: bold; }
.metric-value { font-family: monospace; }
.plots { display: flex; flex-wrap: wrap; justify-content: space-between; }
.plot { flex: 0 0 48%; margin-bottom: 20px; }
.alert { background-color: #f8d7da; color: #721c24; padding: 10px; border-radius: 5px; margin-bottom: 10px; }
table { width: 100%; border-collapse: collapse; margin-bottom: 20px; }
th, td { padding: 8px; text-align: left; border-bottom: 1px solid #ddd; }
th { background-color: #f2f2f2; }
.status-badge { display: inline-block; padding: 4px 8px; border-radius: 4px; font-weight: bold; }
.status-success { background-color: #d4edda; color: #155724; }
.status-warning { background-color: #fff3cd; color: #856404; }
.status-danger { background-color: #f8d7da; color: #721c24; }
@media (max-width: 768px) { .plot { flex: 0 0 100%; } }
"""

status_badges = {
    SyncStatus.SYNCHRONIZED: ("status-success", "Synchronized"),
    SyncStatus.OUT_OF_SYNC: ("status-danger", "Out of sync"),
    SyncStatus.AHEAD_OF_UPSTREAM: ("status-warning", "Ahead of Stratum 0"),
    SyncStatus.HASH_MISMATCH: ("status-warning", "Hash mismatch"),
    SyncStatus.UNREACHABLE: ("status-danger", "Unreachable"),
}

chart_titles = {
    "repo_size": "Repository Size",
    "traffic": "Client Activity",
    "sync_status": "Stratum 0 Synchronization",
}


def esc(value):
    """
    Escape any value for HTML, substituting "unknown" for None
    """
    return escape(or_unknown(value))


def badge(css_class, text):
    return f"<span class='status-badge {css_class}'>{esc(text)}</span>"


def metric(label, value, suffix=""):
    if value is not None and suffix:
        value = f"{value}{suffix}"
    return (
        "<div class='metric'>"
        f"<div class='metric-label'>{esc(label)}:</div>"
        f"<div class='metric-value'>{esc(value)}</div>"
        "</div>"
    )


def overall_badge_class(summary):
    if summary is None or summary.total < 1:
        return "status-warning"
    if summary.counts["synchronized"] == summary.total:
        return "status-success"
    if summary.counts["synchronized"] > 0:
        return "status-warning"
    return "status-danger"


def format_lag(record):
    if record.lag_hours is None:
        return UNKNOWN
    if record.lag_hours < 0:
        return f"{abs(record.lag_hours):.1f} h ahead"
    return f"{record.lag_hours:.1f} h behind"


def render_sync_section(snapshot):
    summary = snapshot.sync_summary
    lines = list()
    lines.append("<div class='section'>")
    lines.append("<h2>Stratum 0 Synchronization</h2>")

    overall = summary.overall if summary is not None else "Not checked"
    lines.append(
        "<div class='metric'><div class='metric-label'>Overall Status:</div>"
        f"<div class='metric-value'>{badge(overall_badge_class(summary), overall)}</div></div>"
    )
    lines.append(metric("Stratum 1 Revision", snapshot.manifest.revision))
    lines.append(metric("Stratum 1 Published", snapshot.manifest.published_at_text()))

    if snapshot.server_list is not None and snapshot.server_list.placeholder:
        lines.append(
            "<div class='alert'>No upstream server was configured or discovered; "
            f"{esc(snapshot.server_list.servers[0])} was used as a fallback.</div>"
        )

    if summary is None or summary.total < 1:
        lines.append("<p>No Stratum 0 servers were checked.</p>")
        lines.append("</div>")
        return lines

    lines.append("<h3>Stratum 0 Servers</h3>")
    lines.append("<table>")
    lines.append(
        "<tr><th>Server</th><th>Revision</th><th>Last Modified</th><th>Lag</th><th>Status</th></tr>"
    )
    for record in summary.records:
        css_class, status_text = status_badges[record.status]
        lines.append("<tr>")
        lines.append(f"<td>{esc(record.server)}</td>")
        lines.append(f"<td>{esc(record.upstream_revision)}</td>")
        lines.append(f"<td>{esc(format_timestamp(record.upstream_timestamp))}</td>")
        lines.append(f"<td>{esc(format_lag(record))}</td>")
        lines.append(f"<td>{badge(css_class, status_text)}</td>")
        lines.append("</tr>")
    lines.append("</table>")

    if summary.newer_elsewhere:
        lines.append(
            f"<p>Latest revision ({esc(summary.latest_revision)}) found on server: "
            f"<b>{esc(summary.latest_server)}</b>, published {esc(format_timestamp(summary.latest_timestamp))}</p>"
        )
    if summary.suggested_actions:
        lines.append("<h3>Suggested actions</h3>")
        lines.append("<ul>")
        for action in summary.suggested_actions:
            lines.append(f"<li>{esc(action)}</li>")
        lines.append("</ul>")

    lines.append("</div>")
    return lines


def render_health_section(snapshot):
    services = snapshot.service_status or dict()
    disk_usage = snapshot.disk_usage or dict()
    summary = snapshot.sync_summary

    if services.get("web_server") is not None:
        web_server = ("status-success", f"Running ({services['web_server']})")
    else:
        web_server = ("status-danger", "Not Running")
    if services.get("proxy") is not None:
        proxy = ("status-success", f"Running ({services['proxy']})")
    else:
        proxy = ("status-warning", "Not Running")
    if snapshot.repository_access is None:
        access = ("status-warning", "Not checked")
    elif snapshot.repository_access:
        access = ("status-success", "Accessible")
    else:
        access = ("status-danger", "Not Accessible")
    sync = (
        overall_badge_class(summary),
        summary.overall if summary is not None else "Not checked",
    )
    disk_level = disk_usage.get("level")
    if disk_level is None:
        disk = ("status-warning", UNKNOWN)
    else:
        disk = (
            {
                "ok": "status-success",
                "warning": "status-warning",
                "critical": "status-danger",
            }[disk_level],
            f"{disk_usage['percent']}% used, {format_bytes(disk_usage['free'])} free",
        )

    lines = list()
    lines.append("<div class='section'>")
    lines.append("<h2>System Health</h2>")
    lines.append("<table>")
    lines.append("<tr><th>Component</th><th>Status</th></tr>")
    for component, (css_class, text) in [
        ("Web Server", web_server),
        ("Squid Proxy", proxy),
        ("Repository Access", access),
        ("Stratum 0 Sync", sync),
        ("Disk Space", disk),
    ]:
        lines.append(
            f"<tr><td>{esc(component)}</td><td>{badge(css_class, text)}</td></tr>"
        )
    lines.append("</table>")

    if snapshot.messages:
        lines.append("<h3>Warnings and Errors</h3>")
        lines.append("<table>")
        lines.append("<tr><th>Time</th><th>Level</th><th>Message</th></tr>")
        for message in snapshot.messages:
            css_class = (
                "status-danger" if message["level"] == "error" else "status-warning"
            )
            lines.append(
                f"<tr><td>{esc(message['timestamp'])}</td>"
                f"<td>{badge(css_class, message['level'])}</td>"
                f"<td>{esc(message['message'])}</td></tr>"
            )
        lines.append("</table>")

    lines.append("</div>")
    return lines


def render_html(config, snapshot, history, charts=None):
    """
    Render a self-contained HTML report of a monitoring snapshot

    {history} maps store categories to their most recent rows. Every missing
    value is shown as "unknown".
    """
    if charts is None:
        charts = render_charts(config, snapshot, history)

    repo_size = snapshot.repo_size or dict()
    web_stats = snapshot.web_stats or dict()
    proxy_stats = snapshot.proxy_stats or dict()

    lines = list()
    lines.append("<!DOCTYPE html>")
    lines.append("<html lang='en'>")
    lines.append("<head>")
    lines.append("<meta charset='UTF-8'>")
    lines.append(
        "<meta name='viewport' content='width=device-width, initial-scale=1.0'>"
    )
    lines.append("<title>EESSI Stratum 1 Monitoring Report</title>")
    lines.append(f"<style>{REPORT_CSS}</style>")
    lines.append("</head>")
    lines.append("<body>")

    lines.append("<div class='header'>")
    lines.append("<h1>EESSI Stratum 1 Monitoring Report</h1>")
    lines.append(f"<p>Repository: {esc(snapshot.repository)}</p>")
    lines.append(f"<p>Host: {esc(snapshot.node_fqdn)}</p>")
    lines.append(f"<p>Report generated on {esc(snapshot.timestamp)}</p>")
    lines.append("</div>")

    lines.append("<div class='section'>")
    lines.append("<h2>Repository Summary</h2>")
    lines.append(metric("Size", repo_size.get("size_gb"), suffix=" GB"))
    lines.append(metric("Total Files", repo_size.get("file_count")))
    lines.append(metric("Revision", snapshot.manifest.revision))
    lines.append(metric("Root Hash", snapshot.manifest.root_hash))
    lines.append(metric("Published", snapshot.manifest.published_at_text()))
    lines.append(metric("Catalog Size", snapshot.catalog_stats.get("catalog_size")))
    lines.append(metric("Catalog Files", snapshot.catalog_stats.get("catalog_files")))
    lines.append("</div>")

    lines.append("<div class='section'>")
    lines.append("<h2>Client Activity</h2>")
    lines.append(metric("Unique Clients", web_stats.get("unique_clients")))
    lines.append(metric("Total Requests", web_stats.get("total_requests")))
    lines.append(metric("Cache Hit Rate", proxy_stats.get("hit_rate"), suffix="%"))
    if web_stats.get("top_clients"):
        lines.append("<h3>Top Clients</h3>")
        lines.append("<table>")
        lines.append("<tr><th>Client</th><th>Requests</th></tr>")
        for client in web_stats["top_clients"]:
            lines.append(
                f"<tr><td>{esc(client['client'])}</td><td>{esc(client['requests'])}</td></tr>"
            )
        lines.append("</table>")
    lines.append("</div>")

    lines.extend(render_sync_section(snapshot))

    lines.append("<div class='section'>")
    lines.append("<h2>Visualization</h2>")
    lines.append("<div class='plots'>")
    for name, title in chart_titles.items():
        if name not in charts:
            continue
        lines.append("<div class='plot'>")
        lines.append(f"<h3>{esc(title)}</h3>")
        lines.append(
            f"<img src='{charts[name]}' alt='{esc(title)}' style='max-width:100%;'>"
        )
        lines.append("</div>")
    lines.append("</div>")
    lines.append("</div>")

    lines.extend(render_health_section(snapshot))

    lines.append("<footer style='text-align: center; margin-top: 50px; color: #777;'>")
    lines.append("<p>Generated by eessi-monitor</p>")
    lines.append("</footer>")
    lines.append("</body>")
    lines.append("</html>")

    return "\n".join(lines) + "\n"


def read_history(config):
    """
    Read the tail of every store category for the report charts
    """
    return {category: read_tail(config, category) for category in CATEGORIES}


def write_report(config, logger, html, output_file):
    try:
        output_directory = path.dirname(path.abspath(output_file))
        if not path.isdir(output_directory):
            makedirs(output_directory)
        with open(output_file, "w", encoding="utf-8") as fh:
            fh.write(html)
    except OSError as e:
        logger.out(f"Failed to write HTML report {output_file}: {e}", state="e")
        return False

    logger.out(f"HTML report generated: {output_file}", state="o")
    return True


def build_report_email(config, output_file, recipient):
    current_datetime = datetime.now()

    message = MIMEMultipart()
    message["Date"] = formatdate(current_datetime.timestamp(), localtime=True)
    message["Subject"] = (
        f"EESSI Stratum 1 Report - {config['repository']} - {current_datetime.strftime('%Y-%m-%d')}"
    )
    message["To"] = f"<{recipient}>"
    message["From"] = f"EESSI Stratum 1 Monitor <{config['email_from']}>"

    message.attach(
        MIMEText(
            f"EESSI Stratum 1 Monitoring Report for {config['repository']} on {config['node_fqdn']}.\n"
            "The full report is attached.\n"
        )
    )

    with open(output_file, "r", encoding="utf-8") as fh:
        attachment = MIMEText(fh.read(), "html", "utf-8")
    attachment.add_header(
        "Content-Disposition", "attachment", filename=path.basename(output_file)
    )
    message.attach(attachment)

    return message


def send_report(config, logger, output_file, recipient):
    """
    Mail the report at {output_file} to {recipient} through the local sendmail

    Only sent when both are set. Failures are logged and reported as False.
    """
    if not output_file or not recipient:
        if recipient:
            logger.out("Email requested without an output file; not sending", state="w")
        return False

    logger.out(f"Sending report to {recipient}...", state="i")
    try:
        message = build_report_email(config, output_file, recipient)
    except OSError as e:
        logger.out(f"Failed to read report {output_file}: {e}", state="e")
        return False

    try:
        with popen(config["sendmail_command"], "w") as p:
            p.write(message.as_string())
            retcode = p.close()
    except Exception as e:
        logger.out(f"Failed to send report email: {e}", state="e")
        return False

    if retcode is not None:
        logger.out(f"Failed to send report email: sendmail exited {retcode}", state="e")
        return False

    logger.out("Email sent successfully", state="o")
    return True
