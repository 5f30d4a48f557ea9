#!/usr/bin/env python3

# common.py - EESSI Stratum 1 monitor common functions
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

import subprocess

from math import ceil
from os import SEEK_END
from shlex import split as shlex_split
from shutil import which


###############################################################################
# Global Variables
###############################################################################


# Textual stand-in for any value that could not be determined
UNKNOWN = "unknown"

# Block size used when reading log files backwards from the end
TAIL_BLOCK_SIZE = 65536


###############################################################################
# OS helpers
###############################################################################


#
# Run a local OS command
#
def run_os_command(command_string, environment=None, timeout=None):
    if not isinstance(command_string, list):
        command = shlex_split(command_string)
    else:
        command = command_string

    command_output = None
    try:
        command_output = subprocess.run(
            command,
            env=environment,
            timeout=timeout,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        retcode = command_output.returncode
    except subprocess.TimeoutExpired:
        retcode = 128
    except Exception:
        retcode = 255

    try:
        stdout = command_output.stdout.decode("utf-8", errors="replace")
    except Exception:
        stdout = ""
    try:
        stderr = command_output.stderr.decode("utf-8", errors="replace")
    except Exception:
        stderr = ""
    return retcode, stdout, stderr


def command_exists(command):
    return which(command) is not None


def read_tail_blocks(fh, lines, block_size=TAIL_BLOCK_SIZE):
    """
    Return the last {lines} lines of the binary file object {fh} as bytes

    The file is read backwards from the end in blocks of {block_size} bytes,
    stopping once enough newlines have been seen.
    """
    fh.seek(0, SEEK_END)
    position = fh.tell()
    data = b""
    while position > 0 and data.count(b"\n") <= lines:
        read_size = min(block_size, position)
        position -= read_size
        fh.seek(position)
        data = fh.read(read_size) + data

    if data.endswith(b"\n"):
        data = data[:-1]
    if not data:
        return list()
    return [line.rstrip(b"\r") for line in data.split(b"\n")[-lines:]]


def tail_file(filename, lines):
    """
    Return the last {lines} lines of a text file, without the trailing newlines
    """
    with open(filename, "rb") as fh:
        return [
            line.decode("utf-8", errors="replace")
            for line in read_tail_blocks(fh, lines)
        ]


###############################################################################
# Formatting helpers
###############################################################################


def format_bytes(size_bytes):
    if size_bytes is None:
        return UNKNOWN

    byte_unit_matrix = {
        "B": 1,
        "K": 1024,
        "M": 1024 * 1024,
        "G": 1024 * 1024 * 1024,
        "T": 1024 * 1024 * 1024 * 1024,
        "P": 1024 * 1024 * 1024 * 1024 * 1024,
    }
    human_bytes = "0B"
    for unit in sorted(byte_unit_matrix, key=byte_unit_matrix.get):
        formatted_bytes = int(ceil(size_bytes / byte_unit_matrix[unit]))
        if formatted_bytes < 10000:
            human_bytes = "{}{}".format(formatted_bytes, unit)
            break
    return human_bytes


def or_unknown(value):
    """
    Return {value} as text, or the unknown sentinel if it is None
    """
    if value is None:
        return UNKNOWN
    return str(value)
