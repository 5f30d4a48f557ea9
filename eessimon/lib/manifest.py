#!/usr/bin/env python3

# manifest.py - EESSI Stratum 1 monitor published-manifest parser
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

"""
Best-effort parsing of CVMFS published manifests (".cvmfspublished").

A manifest is a short block of key-tagged lines, one per field, terminated by
a "--" line and followed by a binary signature, e.g.:

    C600230b0ba7620426f2e898f1e1f43c5466efe59
    D900
    S4711
    T1700000000
    Nsoftware.eessi.io
    --
    <signature bytes>

Only three fields are of interest here: the revision (S), the root catalog
hash (C) and the publish timestamp (T). Parsing never raises; any field that
cannot be found is left as None.
"""

import re

from collections import namedtuple
from datetime import datetime, timezone

from eessimon.lib.common import UNKNOWN


MANIFEST_FILENAME = ".cvmfspublished"

# Key-tagged header lines
_revision_line = re.compile(rb"^S([0-9]+)$")
_hash_line = re.compile(rb"^C([0-9a-f]{40})(?:-[a-z0-9]+)?$")
_timestamp_line = re.compile(rb"^T([0-9]{1,19})$")

# Tagged tokens anywhere in the blob, used when the header is garbled
_revision_token = re.compile(rb"S([0-9a-f]{8})(?![0-9a-f])")
_hash_token = re.compile(rb"C([0-9a-f]{40})(?![0-9a-f])")
_timestamp_token = re.compile(rb"T([0-9]{10})(?![0-9])")

# Scheme and authority of a server given as a hostname or URL
_server_base_re = re.compile(r"^(https?://)?([^/\s]+)")

# "cvmfs_server info" output lines
_info_line = re.compile(r"^\s*([A-Za-z][A-Za-z ]*[A-Za-z])\s*:\s*(.*?)\s*$")
_info_date_formats = [
    "%a %b %d %H:%M:%S %Z %Y",
    "%a %d %b %Y %H:%M:%S %Z",
    "%Y-%m-%d %H:%M:%S",
]


class RepositoryManifest(
    namedtuple(
        "RepositoryManifest", ["revision", "root_hash", "published_at", "source"]
    )
):
    """
    One published-catalog state of a repository, local or upstream
    """

    __slots__ = ()

    def __new__(cls, revision=None, root_hash=None, published_at=None, source=""):
        return super().__new__(cls, revision, root_hash, published_at, source)

    def is_empty(self):
        return (
            self.revision is None
            and self.root_hash is None
            and self.published_at is None
        )

    def is_complete(self):
        return (
            self.revision is not None
            and self.root_hash is not None
            and self.published_at is not None
        )

    def published_at_text(self):
        return format_timestamp(self.published_at)

    def to_dict(self):
        return {
            "revision": self.revision,
            "root_hash": self.root_hash,
            "published_at": self.published_at,
            "published": self.published_at_text(),
            "source": self.source,
        }


def format_timestamp(timestamp):
    if timestamp is None:
        return UNKNOWN
    try:
        return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).strftime(
            "%Y-%m-%d %H:%M:%S"
        )
    except (ValueError, OverflowError, OSError):
        return UNKNOWN


def manifest_url(server, repository):
    """
    Return the manifest URL of {repository} on {server}

    {server} may be a hostname or any URL on the server; only its scheme and
    authority are kept, so a CVMFS_SERVER_URL entry resolves to the same URL.
    """
    match = _server_base_re.match(server.strip())
    if match is None:
        return f"http://{server}/cvmfs/{repository}/{MANIFEST_FILENAME}"
    scheme = match.group(1) or "http://"
    return f"{scheme}{match.group(2)}/cvmfs/{repository}/{MANIFEST_FILENAME}"


def _scan_header(data):
    revision = None
    root_hash = None
    published_at = None

    for line in data.split(b"\n"):
        line = line.rstrip(b"\r")
        if line == b"--":
            # Everything after this is the signature
            break
        if revision is None:
            match = _revision_line.match(line)
            if match is not None:
                revision = int(match.group(1))
                continue
        if root_hash is None:
            match = _hash_line.match(line)
            if match is not None:
                root_hash = match.group(1).decode("ascii")
                continue
        if published_at is None:
            match = _timestamp_line.match(line)
            if match is not None:
                published_at = int(match.group(1))
                continue

    return revision, root_hash, published_at


def parse_manifest(data, source=""):
    """
    Parse the raw bytes of a published manifest into a RepositoryManifest

    The key-tagged header is read first; any field still missing afterwards is
    searched for as a tagged token anywhere in the blob (NUL bytes removed):
    "S" + 8 hex digits (hexadecimal revision), "C" + 40 hex digits, and
    "T" + 10 decimal digits. The first match of each wins.
    """
    if not data:
        return RepositoryManifest(source=source)

    if isinstance(data, str):
        data = data.encode("utf-8", errors="replace")

    revision, root_hash, published_at = _scan_header(data)

    if None in [revision, root_hash, published_at]:
        blob = data.replace(b"\x00", b"")
        if revision is None:
            match = _revision_token.search(blob)
            if match is not None:
                revision = int(match.group(1), 16)
        if root_hash is None:
            match = _hash_token.search(blob)
            if match is not None:
                root_hash = match.group(1).decode("ascii")
        if published_at is None:
            match = _timestamp_token.search(blob)
            if match is not None:
                published_at = int(match.group(1))

    return RepositoryManifest(revision, root_hash, published_at, source)


def read_manifest_file(filename):
    try:
        with open(filename, "rb") as fh:
            data = fh.read()
    except OSError:
        return RepositoryManifest(source=filename)
    return parse_manifest(data, source=filename)


def parse_info_date(text):
    """
    Convert a "Last modified" date from cvmfs_server info into epoch seconds
    """
    if not text:
        return None
    text = " ".join(text.split())
    for date_format in _info_date_formats:
        try:
            parsed = datetime.strptime(text, date_format)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp())
    return None


def parse_server_info(text):
    """
    Parse the output of "cvmfs_server info <repository>"

    Returns a dictionary with the revision, root_hash, published_at,
    catalog_size and catalog_files keys; absent values are None.
    """
    info = {
        "revision": None,
        "root_hash": None,
        "published_at": None,
        "last_modified": None,
        "catalog_size": None,
        "catalog_files": None,
    }
    if not text:
        return info

    for line in text.splitlines():
        match = _info_line.match(line)
        if match is None:
            continue
        key = match.group(1).strip().lower()
        value = match.group(2).strip()
        if not value:
            continue

        if key == "revision":
            if value.split()[0].isdigit():
                info["revision"] = int(value.split()[0])
        elif key == "root catalog hash":
            hash_match = re.match(r"^([0-9a-f]{40})", value)
            if hash_match is not None:
                info["root_hash"] = hash_match.group(1)
        elif key == "last modified":
            info["last_modified"] = value
            info["published_at"] = parse_info_date(value)
        elif key == "catalog size":
            info["catalog_size"] = value
        elif key == "total number of files":
            if value.split()[0].isdigit():
                info["catalog_files"] = int(value.split()[0])

    return info
