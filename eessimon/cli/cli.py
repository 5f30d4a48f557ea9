#!/usr/bin/env python3

# cli.py - EESSI Stratum 1 monitor Click CLI main library
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

from colorama import Fore
from functools import wraps
from os import path
from sys import exit

from eessimon.cli.helpers import *
from eessimon.cli.formatters import *

from eessimon.lib.config import MalformedConfigurationError
from eessimon.lib.log import Logger
from eessimon.lib.manifest import MANIFEST_FILENAME, read_manifest_file

import eessimon.lib.discovery
import eessimon.lib.monitor
import eessimon.lib.sync

import click


###############################################################################
# Context and completion handler, globals
###############################################################################


CONTEXT_SETTINGS = dict(
    help_option_names=["-h", "--help"], max_content_width=MAX_CONTENT_WIDTH
)

CLI_CONFIG = dict()


###############################################################################
# Local helper functions
###############################################################################


def finish(success=True, data=None, formatter=None):
    """
    Output data to the terminal and exit based on code (T/F or integer code)
    """

    if data is not None:
        if formatter is not None and success is True:
            echo(CLI_CONFIG, formatter(CLI_CONFIG, data))
        elif success is True:
            echo(CLI_CONFIG, data)
        else:
            echo(CLI_CONFIG, Fore.RED + data + Fore.RESET)

    # Allow passing raw values if not a bool
    if isinstance(success, bool):
        if success:
            exit(0)
        else:
            exit(1)
    else:
        exit(success)


def version(ctx, param, value):
    """
    Show the version of the CLI client
    """

    if not value or ctx.resilient_parsing:
        return

    from importlib.metadata import version as get_version, PackageNotFoundError

    try:
        version = get_version("eessi-monitor")
    except PackageNotFoundError:
        version = VERSION
    echo(CLI_CONFIG, f"EESSI Stratum 1 Monitor version {version}")
    ctx.exit()


def load_config(overrides, format_function=None):
    """
    Load the monitoring configuration or exit with the configuration error
    """

    try:
        return get_monitor_config(
            CLI_CONFIG,
            overrides,
            machine_output=format_function in machine_formats,
        )
    except MalformedConfigurationError as e:
        finish(False, e.msg)


###############################################################################
# Click command decorators
###############################################################################


def format_opt(formats, default_format="pretty"):
    """
    Click Option Decorator with argument:
    Wraps a Click command that can output in multiple formats; {formats} defines a dictionary of
    formatting functions for the command with keys as valid format types.
    Injects a "format_function" argument into the function for this purpose.
    """

    if default_format not in formats.keys():
        echo(CLI_CONFIG, f"Fatal code error: {default_format} not in {formats.keys()}")
        exit(255)

    def format_decorator(function):
        @click.option(
            "-f",
            "--format",
            "output_format",
            default=default_format,
            show_default=True,
            type=click.Choice(formats.keys()),
            help="Output information in this format.",
        )
        @wraps(function)
        def format_action(*args, **kwargs):
            kwargs["format_function"] = formats[kwargs["output_format"]]

            del kwargs["output_format"]

            return function(*args, **kwargs)

        return format_action

    return format_decorator


def repository_opt(function):
    """
    Click Option Decorator:
    Wraps a Click command which operates on one repository
    """

    @click.option(
        "-r",
        "--repository",
        "repository",
        default=None,
        help="Repository to monitor [default: software.eessi.io].",
    )
    @wraps(function)
    def repository_action(*args, **kwargs):
        return function(*args, **kwargs)

    return repository_action


def servers_opt(function):
    """
    Click Option Decorator:
    Wraps a Click command which compares against upstream servers, adding "servers" and "servers_file"
    """

    @click.option(
        "-s",
        "--server",
        "servers",
        multiple=True,
        default=[],
        help="Stratum 0 server to compare against; may be given multiple times.",
    )
    @click.option(
        "-S",
        "--server-file",
        "servers_file",
        default=None,
        type=click.Path(dir_okay=False),
        help="File listing Stratum 0 servers, one per line.",
    )
    @wraps(function)
    def servers_action(*args, **kwargs):
        return function(*args, **kwargs)

    return servers_action


###############################################################################
# Click command definitions
###############################################################################


###############################################################################
# > eessi-monitor run
###############################################################################
@click.command(
    name="run",
    short_help="Run a full monitoring pass.",
)
@repository_opt
@click.option(
    "-o",
    "--output",
    "output_file",
    default=None,
    type=click.Path(dir_okay=False),
    help="Write an HTML report to this file.",
)
@click.option(
    "-e",
    "--email",
    "email",
    default=None,
    help="Send the HTML report to this address (requires --output).",
)
@servers_opt
@click.option(
    "-d",
    "--data-dir",
    "data_directory",
    default=None,
    type=click.Path(file_okay=False),
    help="Directory holding the metric history [default: /var/log/eessi/metrics].",
)
@click.option(
    "-b",
    "--cvmfs-base",
    "cvmfs_base",
    default=None,
    type=click.Path(file_okay=False),
    help="Directory holding the replicated repositories [default: /srv/cvmfs].",
)
@format_opt(
    {
        "pretty": cli_run_format_pretty,
        "json": cli_format_json,
        "json-pretty": cli_format_json_pretty,
    }
)
def cli_run(
    repository,
    output_file,
    email,
    servers,
    servers_file,
    data_directory,
    cvmfs_base,
    format_function,
):
    """
    Run a full monitoring pass over the local Stratum 1 replica of a repository.

    Collects the repository size, catalog revision, web server and Squid proxy traffic, disk usage
    and service states; compares the local revision against each Stratum 0 server; appends the
    results to the metric history; and optionally writes an HTML report and emails it.

    If no "-s"/"--server" or "-S"/"--server-file" is given, servers are discovered from the
    replica configuration, the local CVMFS client configuration, or a list of known public
    mirrors, in that order.

    The exit code is 0 whenever the pass completes, regardless of the synchronization state.

    \b
    Format options:
        "pretty": Output a summary in a nice colourful format.
        "json": Output in unformatted JSON.
        "json-pretty": Output in formatted JSON.
    """

    config = load_config(
        {
            "repository": repository,
            "output_file": output_file,
            "email": email,
            "servers": list(servers),
            "servers_file": servers_file,
            "data_directory": data_directory,
            "cvmfs_base": cvmfs_base,
        },
        format_function,
    )
    logger = Logger(config)

    try:
        snapshot = eessimon.lib.monitor.MonitoringInstance(config, logger).run()
    except eessimon.lib.monitor.MonitorLockedError as e:
        logger.terminate()
        finish(2, e.msg)
    except eessimon.lib.monitor.MonitorError as e:
        logger.terminate()
        finish(False, e.msg)

    logger.terminate()
    finish(True, snapshot.to_dict(), format_function)


###############################################################################
# > eessi-monitor sync
###############################################################################
@click.command(
    name="sync",
    short_help="Check Stratum 0 synchronization only.",
)
@repository_opt
@servers_opt
@click.option(
    "-b",
    "--cvmfs-base",
    "cvmfs_base",
    default=None,
    type=click.Path(file_okay=False),
    help="Directory holding the replicated repositories [default: /srv/cvmfs].",
)
@format_opt(
    {
        "pretty": cli_sync_format_pretty,
        "json": cli_format_json,
        "json-pretty": cli_format_json_pretty,
    }
)
def cli_sync(
    repository,
    servers,
    servers_file,
    cvmfs_base,
    format_function,
):
    """
    Compare the local revision of a repository against its Stratum 0 servers.

    Nothing is written to the metric history and no report is generated.

    \b
    Format options:
        "pretty": Output all details in a nice colourful format.
        "json": Output in unformatted JSON.
        "json-pretty": Output in formatted JSON.
    """

    config = load_config(
        {
            "repository": repository,
            "servers": list(servers),
            "servers_file": servers_file,
            "cvmfs_base": cvmfs_base,
        },
        format_function,
    )
    logger = Logger(config)

    try:
        snapshot = eessimon.lib.monitor.MonitoringInstance(config, logger).check_sync()
    except eessimon.lib.monitor.MonitorError as e:
        logger.terminate()
        finish(False, e.msg)

    logger.terminate()
    data = snapshot.sync_summary.to_dict()
    data["servers"] = snapshot.server_list.to_dict()
    finish(True, data, format_function)


###############################################################################
# > eessi-monitor discover
###############################################################################
@click.command(
    name="discover",
    short_help="Show the Stratum 0 servers to compare against.",
)
@repository_opt
@servers_opt
@format_opt(
    {
        "pretty": cli_discover_format_pretty,
        "json": cli_format_json,
        "json-pretty": cli_format_json_pretty,
    }
)
def cli_discover(
    repository,
    servers,
    servers_file,
    format_function,
):
    """
    Resolve the Stratum 0 servers of a repository and show where they came from.

    \b
    Format options:
        "pretty": Output all details in a nice colourful format.
        "json": Output in unformatted JSON.
        "json-pretty": Output in formatted JSON.
    """

    config = load_config(
        {
            "repository": repository,
            "servers": list(servers),
            "servers_file": servers_file,
        },
        format_function,
    )
    logger = Logger(config)

    explicit = eessimon.lib.monitor.get_explicit_servers(config, logger)
    server_list = eessimon.lib.discovery.discover_servers(
        config, logger, explicit=explicit
    )

    logger.terminate()
    data = {"repository": config["repository"]}
    data.update(server_list.to_dict())
    finish(True, data, format_function)


###############################################################################
# > eessi-monitor manifest
###############################################################################
@click.command(
    name="manifest",
    short_help="Show the fields of a published manifest.",
)
@click.argument("source")
@repository_opt
@format_opt(
    {
        "pretty": cli_manifest_format_pretty,
        "json": cli_format_json,
        "json-pretty": cli_format_json_pretty,
    }
)
def cli_manifest(
    source,
    repository,
    format_function,
):
    """
    Parse and show the revision, root catalog hash and publish time of the published manifest
    at SOURCE.

    SOURCE may be a manifest file, a repository directory containing one, or a server hostname
    or URL from which the manifest of the repository is fetched.

    \b
    Format options:
        "pretty": Output all details in a nice colourful format.
        "json": Output in unformatted JSON.
        "json-pretty": Output in formatted JSON.
    """

    config = load_config({"repository": repository}, format_function)

    if path.isdir(source):
        source = f"{source.rstrip('/')}/{MANIFEST_FILENAME}"
        if not path.isfile(source):
            finish(False, f"No published manifest found at {source}")

    if path.isfile(source):
        manifest = read_manifest_file(source)
    else:
        manifest = eessimon.lib.sync.fetch_manifest(config, source)
        if manifest is None:
            finish(
                False,
                f"Failed to fetch the manifest of {config['repository']} from {source}",
            )

    finish(True, manifest.to_dict(), format_function)


###############################################################################
# > eessi-monitor
###############################################################################
@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "-c",
    "--config",
    "_config_file",
    envvar="EESSI_MONITOR_CONFIG",
    default=None,
    help="Configuration file to use.",
)
@click.option(
    "-v",
    "--debug",
    "_debug",
    envvar="EESSI_MONITOR_DEBUG",
    is_flag=True,
    default=False,
    help="Additional debug details.",
)
@click.option(
    "-q",
    "--quiet",
    "_quiet",
    envvar="EESSI_MONITOR_QUIET",
    is_flag=True,
    default=False,
    help="Suppress progress messages.",
)
@click.option(
    "--colour",
    "--color",
    "_colour",
    envvar="EESSI_MONITOR_COLOUR",
    is_flag=True,
    default=False,
    help="Force colourized output.",
)
@click.option(
    "--version",
    is_flag=True,
    callback=version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
def cli(
    _config_file,
    _debug,
    _quiet,
    _colour,
):
    """
    EESSI Stratum 1 monitoring tool

    Environment variables:

      "EESSI_MONITOR_CONFIG": Set the configuration file instead of using --config/-c

      "EESSI_MONITOR_DEBUG": Enable additional debugging details instead of using --debug/-v

      "EESSI_MONITOR_QUIET": Suppress progress messages instead of using --quiet/-q

      "EESSI_MONITOR_COLOUR": Force colour on the output even if Click determines it is not a console

    If no configuration file is given, "/etc/eessi/monitor.yaml" is read if it exists; otherwise
    built-in defaults are used. Command-line options override configuration file values.
    """

    global CLI_CONFIG
    CLI_CONFIG = {
        "config_file": _config_file,
        "debug": _debug,
        "quiet": _quiet,
        "colour": _colour,
    }


###############################################################################
# Click command tree
###############################################################################

cli.add_command(cli_run)
cli.add_command(cli_sync)
cli.add_command(cli_discover)
cli.add_command(cli_manifest)
