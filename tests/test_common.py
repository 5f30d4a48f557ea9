#!/usr/bin/env python3

# test_common.py - Tests for the shared helper functions
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

from io import BytesIO

from eessimon.lib.common import (
    format_bytes,
    or_unknown,
    read_tail_blocks,
    run_os_command,
    tail_file,
)


class CountingReader(BytesIO):
    """
    An in-memory binary file which counts the bytes read from it
    """

    def __init__(self, data):
        super().__init__(data)
        self.bytes_read = 0

    def read(self, size=-1):
        data = super().read(size)
        self.bytes_read += len(data)
        return data


class TestTail:
    """Only the end of a log file is read."""

    def test_reads_only_the_tail_window(self):
        data = b"".join(
            b'10.0.0.%d - - "GET /cvmfs/software.eessi.io/data/%06d HTTP/1.1" 200 1\n'
            % (line % 250, line)
            for line in range(100000)
        )
        fh = CountingReader(data)
        lines = read_tail_blocks(fh, 10, block_size=4096)
        assert len(lines) == 10
        assert lines[-1].endswith(b"data/099999 HTTP/1.1\" 200 1")
        assert lines[0].endswith(b"data/099990 HTTP/1.1\" 200 1")
        assert fh.bytes_read <= 4096
        assert fh.bytes_read < len(data) / 100

    def test_short_file(self):
        assert read_tail_blocks(BytesIO(b"a\nb\n"), 10) == [b"a", b"b"]
        assert read_tail_blocks(BytesIO(b"a\nb"), 1) == [b"b"]
        assert read_tail_blocks(BytesIO(b""), 10) == []

    def test_lines_across_blocks(self):
        data = b"".join(b"line %d\n" % line for line in range(50))
        lines = read_tail_blocks(BytesIO(data), 20, block_size=7)
        assert lines == [b"line %d" % line for line in range(30, 50)]

    def test_tail_file(self, tmp_path):
        log_file = tmp_path / "access_log"
        log_file.write_bytes(b"first\r\nsecond\r\n\xff third\n")
        assert tail_file(str(log_file), 2) == ["second", "\ufffd third"]


class TestHelpers:
    def test_run_os_command_missing_binary(self):
        retcode, stdout, stderr = run_os_command(["eessi-monitor-no-such-command"])
        assert retcode == 255
        assert stdout == ""
        assert stderr == ""

    def test_format_bytes(self):
        assert format_bytes(None) == "unknown"
        assert format_bytes(512) == "512B"
        assert format_bytes(5000 * 1024) == "5000K"
        assert format_bytes(20 * 1024 * 1024) == "20M"

    def test_or_unknown(self):
        assert or_unknown(None) == "unknown"
        assert or_unknown(0) == "0"
