#!/usr/bin/env python3

# formatters.py - EESSI Stratum 1 monitor Click CLI output formatters
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

from json import dumps as jdumps

from eessimon.lib.common import UNKNOWN, format_bytes, or_unknown


# Define colour values for use in formatters
ansii = {
    "red": "\033[91m",
    "blue": "\033[94m",
    "cyan": "\033[96m",
    "green": "\033[92m",
    "yellow": "\033[93m",
    "purple": "\033[95m",
    "bold": "\033[1m",
    "end": "\033[0m",
}

status_colours = {
    "synchronized": ansii["green"],
    "out_of_sync": ansii["red"],
    "ahead_of_upstream": ansii["yellow"],
    "hash_mismatch": ansii["yellow"],
    "unreachable": ansii["red"],
}


def cli_format_json(CLI_CONFIG, data):
    return jdumps(data)


def cli_format_json_pretty(CLI_CONFIG, data):
    return jdumps(data, indent=2)


machine_formats = [cli_format_json, cli_format_json_pretty]


def format_lag(lag_hours):
    if lag_hours is None:
        return UNKNOWN
    if lag_hours < 0:
        return f"{abs(lag_hours):.1f}h ahead"
    return f"{lag_hours:.1f}h behind"


def format_sync_records(records):
    """
    Format the per-server synchronization records as a table
    """

    server_length = 7
    revision_length = 9
    published_length = 10
    lag_length = 4
    status_length = 7
    for record in records:
        _server_length = len(record["server"]) + 1
        if _server_length > server_length:
            server_length = _server_length
        _revision_length = len(or_unknown(record["upstream_revision"])) + 1
        if _revision_length > revision_length:
            revision_length = _revision_length
        _published_length = len(record["upstream_published"]) + 1
        if _published_length > published_length:
            published_length = _published_length
        _lag_length = len(format_lag(record["lag_hours"])) + 1
        if _lag_length > lag_length:
            lag_length = _lag_length
        _status_length = len(record["status"]) + 1
        if _status_length > status_length:
            status_length = _status_length

    output = list()
    output.append(
        "{bold}{server: <{server_length}} {revision: <{revision_length}} {published: <{published_length}} {lag: <{lag_length}} {status: <{status_length}}{end}".format(
            bold=ansii["bold"],
            end=ansii["end"],
            server_length=server_length,
            revision_length=revision_length,
            published_length=published_length,
            lag_length=lag_length,
            status_length=status_length,
            server="Server",
            revision="Revision",
            published="Published",
            lag="Lag",
            status="Status",
        )
    )
    for record in records:
        output.append(
            "{server: <{server_length}} {revision: <{revision_length}} {published: <{published_length}} {lag: <{lag_length}} {status_colour}{status: <{status_length}}{end}".format(
                end=ansii["end"],
                server_length=server_length,
                revision_length=revision_length,
                published_length=published_length,
                lag_length=lag_length,
                status_length=status_length,
                server=record["server"],
                revision=or_unknown(record["upstream_revision"]),
                published=record["upstream_published"],
                lag=format_lag(record["lag_hours"]),
                status_colour=status_colours.get(record["status"], ""),
                status=record["status"],
            )
        )
    return "\n".join(output)


def overall_colour(sync_data):
    if sync_data is None or sync_data["total"] < 1:
        return ansii["blue"]
    if sync_data["counts"]["synchronized"] == sync_data["total"]:
        return ansii["green"]
    if sync_data["counts"]["synchronized"] > 0:
        return ansii["yellow"]
    return ansii["red"]


def format_sync_summary(sync_data):
    output = list()
    output.append(
        f"{ansii['purple']}Stratum 0 sync:{ansii['end']}    {overall_colour(sync_data)}{sync_data['overall']}{ansii['end']}"
    )
    local = sync_data["local"]
    output.append(
        f"{ansii['purple']}Local revision:{ansii['end']}    {or_unknown(local['revision'])} ({local['published']})"
    )
    if sync_data["latest_server"] is not None:
        output.append(
            f"{ansii['purple']}Latest revision:{ansii['end']}   {or_unknown(sync_data['latest_revision'])} on {sync_data['latest_server']} ({sync_data['latest_published']})"
        )

    if sync_data["records"]:
        output.append("")
        output.append(format_sync_records(sync_data["records"]))

    if sync_data["suggested_actions"]:
        output.append("")
        output.append(f"{ansii['bold']}Suggested actions:{ansii['end']}")
        for action in sync_data["suggested_actions"]:
            output.append(f"  * {action}")

    return output


def cli_run_format_pretty(CLI_CONFIG, data):
    """
    Pretty format the output of cli_run
    """

    repo_size = data.get("repository_size", {})
    manifest = data.get("manifest", {})
    web = data.get("web", {})
    proxy = data.get("proxy", {})
    disk = data.get("disk", {})
    services = data.get("services", {})

    if repo_size.get("size_gb") is not None:
        size_string = f"{repo_size['size_gb']} GB ({repo_size['file_count']} files)"
    else:
        size_string = UNKNOWN

    if web.get("total_requests") is not None:
        clients_string = f"{web['unique_clients']} unique, {web['total_requests']} requests"
    else:
        clients_string = UNKNOWN

    if proxy.get("hit_rate") is not None and proxy.get("log_file") is not None:
        proxy_string = f"{proxy['hit_rate']}% of {proxy['total_requests']} requests"
    else:
        proxy_string = UNKNOWN

    disk_level = disk.get("level")
    if disk_level == "critical":
        disk_colour = ansii["red"]
    elif disk_level == "warning":
        disk_colour = ansii["yellow"]
    elif disk_level == "ok":
        disk_colour = ansii["green"]
    else:
        disk_colour = ansii["blue"]
    if disk.get("percent") is not None:
        disk_string = f"{disk['percent']}% used, {format_bytes(disk['free'])} free"
    else:
        disk_string = UNKNOWN

    def service_string(unit):
        if unit is None:
            return f"{ansii['red']}Not running{ansii['end']}"
        return f"{ansii['green']}Running ({unit}){ansii['end']}"

    if data.get("repository_access") is None:
        access_string = f"{ansii['blue']}Not checked{ansii['end']}"
    elif data["repository_access"]:
        access_string = f"{ansii['green']}Accessible{ansii['end']}"
    else:
        access_string = f"{ansii['red']}Not accessible{ansii['end']}"

    output = list()
    output.append(f"{ansii['bold']}Monitoring summary{ansii['end']}")
    output.append("")
    output.append(f"{ansii['purple']}Repository:{ansii['end']}        {data['repository']}")
    output.append(f"{ansii['purple']}Host:{ansii['end']}              {data['host']}")
    output.append(f"{ansii['purple']}Timestamp:{ansii['end']}         {data['timestamp']}")
    output.append(f"{ansii['purple']}Size:{ansii['end']}              {size_string}")
    output.append(
        f"{ansii['purple']}Revision:{ansii['end']}          {or_unknown(manifest.get('revision'))} ({manifest.get('published', UNKNOWN)})"
    )
    output.append(f"{ansii['purple']}Clients:{ansii['end']}           {clients_string}")
    output.append(f"{ansii['purple']}Cache hit rate:{ansii['end']}    {proxy_string}")
    output.append(
        f"{ansii['purple']}Disk:{ansii['end']}              {disk_colour}{disk_string}{ansii['end']}"
    )
    output.append(
        f"{ansii['purple']}Web server:{ansii['end']}        {service_string(services.get('web_server'))}"
    )
    output.append(
        f"{ansii['purple']}Squid proxy:{ansii['end']}       {service_string(services.get('proxy'))}"
    )
    output.append(f"{ansii['purple']}Repository access:{ansii['end']} {access_string}")

    if data.get("sync") is not None:
        output.extend(format_sync_summary(data["sync"]))

    output.append("")
    if data.get("report_file") is not None:
        sent = " (emailed)" if data.get("report_sent") else ""
        output.append(
            f"{ansii['purple']}Report:{ansii['end']}            {data['report_file']}{sent}"
        )
    messages = data.get("messages", [])
    if messages:
        output.append(
            f"{ansii['purple']}Faults:{ansii['end']}            {ansii['yellow']}{len(messages)} warnings/errors this pass{ansii['end']}"
        )
    else:
        output.append(f"{ansii['purple']}Faults:{ansii['end']}            None")

    return "\n".join(output)


def cli_sync_format_pretty(CLI_CONFIG, data):
    """
    Pretty format the output of cli_sync
    """

    output = list()
    output.append(
        f"{ansii['purple']}Repository:{ansii['end']}        {data['repository']}"
    )
    output.append(
        f"{ansii['purple']}Servers from:{ansii['end']}      {data['servers']['source']}"
    )
    output.extend(format_sync_summary(data))
    return "\n".join(output)


def cli_discover_format_pretty(CLI_CONFIG, data):
    """
    Pretty format the output of cli_discover
    """

    output = list()
    output.append(
        f"{ansii['purple']}Repository:{ansii['end']}   {data['repository']}"
    )
    source = data["source"]
    if data["placeholder"]:
        source = f"{source} {ansii['yellow']}(connectivity not verified){ansii['end']}"
    output.append(f"{ansii['purple']}Source:{ansii['end']}       {source}")
    if data["servers"]:
        output.append(f"{ansii['purple']}Servers:{ansii['end']}")
        for idx, server in enumerate(data["servers"], start=1):
            output.append(f"  {idx}. {server}")
    else:
        output.append(f"{ansii['purple']}Servers:{ansii['end']}      None")
    return "\n".join(output)


def cli_manifest_format_pretty(CLI_CONFIG, data):
    """
    Pretty format the output of cli_manifest
    """

    output = list()
    output.append(f"{ansii['purple']}Source:{ansii['end']}      {data['source']}")
    output.append(
        f"{ansii['purple']}Revision:{ansii['end']}    {or_unknown(data['revision'])}"
    )
    output.append(
        f"{ansii['purple']}Root hash:{ansii['end']}   {or_unknown(data['root_hash'])}"
    )
    output.append(
        f"{ansii['purple']}Published:{ansii['end']}   {data['published']} ({or_unknown(data['published_at'])})"
    )
    return "\n".join(output)
