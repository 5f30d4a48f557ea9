#!/usr/bin/env python3

# helpers.py - EESSI Stratum 1 monitor Click CLI helper function library
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

from click import echo as click_echo
from os import get_terminal_size

from eessimon.lib.config import get_configuration


VERSION = "0.3.0"

try:
    # Define the content width to be the maximum terminal size
    MAX_CONTENT_WIDTH = get_terminal_size().columns - 1
except OSError:
    # Fall back to 80 columns if "Inappropriate ioctl for device"
    MAX_CONTENT_WIDTH = 80


def echo(config, message, newline=True, stderr=False):
    """
    Output a message with click.echo respecting our configuration
    """

    if config.get("colour", False):
        colour = True
    else:
        colour = None

    if config.get("quiet", False) and stderr:
        pass
    else:
        click_echo(message=message, color=colour, nl=newline, err=stderr)


def get_monitor_config(cli_config, overrides=None, machine_output=False):
    """
    Load the monitoring configuration and apply the global CLI flags to it

    Raises MalformedConfigurationError on a bad configuration.
    """

    if overrides is None:
        overrides = dict()
    if cli_config.get("debug", False):
        overrides["debug"] = True

    config = get_configuration(cli_config.get("config_file"), overrides)

    # Progress messages would corrupt machine-readable output
    if cli_config.get("quiet", False) or machine_output:
        config["stdout_logging"] = False

    return config

