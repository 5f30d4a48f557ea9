#!/usr/bin/env python3

# log.py - EESSI Stratum 1 monitor logger functions
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

import sys

from datetime import datetime
from os import makedirs, path


class Logger(object):
    # Define a logger class for a monitoring pass
    # Keeps record of where to log, and is passed messages which are
    # formatted in various ways based off secondary characteristics.

    # ANSII colours for output
    fmt_red = "\033[91m"
    fmt_green = "\033[92m"
    fmt_yellow = "\033[93m"
    fmt_blue = "\033[94m"
    fmt_purple = "\033[95m"
    fmt_cyan = "\033[96m"
    fmt_white = "\033[97m"
    fmt_bold = "\033[1m"
    fmt_end = "\033[0m"

    last_colour = ""
    last_prompt = ""

    # Format maps
    format_map_colourized = {
        # Colourized formatting with chevron prompts (log_colours = True)
        "o": {"colour": fmt_green, "prompt": ">>> "},
        "e": {"colour": fmt_red, "prompt": ">>> "},
        "w": {"colour": fmt_yellow, "prompt": ">>> "},
        "t": {"colour": fmt_purple, "prompt": ">>> "},
        "i": {"colour": fmt_blue, "prompt": ">>> "},
        "s": {"colour": fmt_cyan, "prompt": ">>> "},
        "d": {"colour": fmt_white, "prompt": ">>> "},
        "x": {"colour": last_colour, "prompt": last_prompt},
    }
    format_map_textual = {
        # Uncolourized formatting with text prompts (log_colours = False)
        "o": {"colour": "", "prompt": "ok: "},
        "e": {"colour": "", "prompt": "failed: "},
        "w": {"colour": "", "prompt": "warning: "},
        "t": {"colour": "", "prompt": "tick: "},
        "i": {"colour": "", "prompt": "info: "},
        "s": {"colour": "", "prompt": "system: "},
        "d": {"colour": "", "prompt": "debug: "},
        "x": {"colour": "", "prompt": last_prompt},
    }

    # Initialization of instance
    def __init__(self, config):
        self.config = config

        self.writer = None
        if self.config.get("file_logging", False):
            self.logfile = f"{self.config['log_directory']}/eessi-monitor.log"
            try:
                if not path.isdir(self.config["log_directory"]):
                    makedirs(self.config["log_directory"])
                # The logfile stays open for the whole pass
                self.writer = open(self.logfile, "a", buffering=1)
            except OSError as e:
                self.writer = None
                print(f"WARNING: Cannot open log file {self.logfile}: {e}", file=sys.stderr)

        self.last_colour = ""
        self.last_prompt = ""

        # Warnings and errors seen during this session, for the report health table
        self.faults = list()

    # Provide a termination function so all messages are flushed before exiting
    def terminate(self):
        if self.writer is not None:
            self.writer.close()
            self.writer = None

    # Output function
    def out(self, message, state=None, prefix=""):
        if state == "d" and not self.config.get("debug", False):
            return

        now = datetime.now()

        # Get the date
        if self.config.get("log_dates", False):
            date = "{} ".format(now.strftime("%Y/%m/%d %H:%M:%S.%f"))
        else:
            date = ""

        # Get the format map
        if self.config.get("log_colours", False):
            format_map = self.format_map_colourized
            endc = Logger.fmt_end
        else:
            format_map = self.format_map_textual
            endc = ""

        # Define an undefined state as 'x'; no date in these prompts
        if not state:
            state = "x"
            date = ""

        # Get colour and prompt from the map
        colour = format_map[state]["colour"]
        prompt = format_map[state]["prompt"]

        # Append space and separator to prefix
        if prefix != "":
            prefix = prefix + " - "

        # Remember warnings and errors
        if state in ["w", "e"]:
            self.faults.append(
                {
                    "timestamp": now.strftime("%Y-%m-%d %H:%M:%S"),
                    "level": "error" if state == "e" else "warning",
                    "message": prefix + message,
                }
            )

        # Log to stdout
        if self.config.get("stdout_logging", True):
            print(colour + prompt + endc + date + prefix + message)

        # Log to file; always dated and never colourized
        if self.writer is not None:
            file_prompt = self.format_map_textual[state]["prompt"]
            file_date = "{} ".format(now.strftime("%Y/%m/%d %H:%M:%S.%f"))
            if state == "x":
                file_date = ""
            self.writer.write(file_prompt + file_date + prefix + message + "\n")

        # Set last message variables
        self.last_colour = colour
        self.last_prompt = prompt

    def header(self, title):
        """
        Output a section header, as the monitoring pass moves between checks
        """
        self.out("")
        if self.config.get("log_colours", False):
            self.out(f"{self.fmt_bold}=== {title} ==={self.fmt_end}", state="s")
        else:
            self.out(f"=== {title} ===", state="s")
