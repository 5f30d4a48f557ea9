#!/usr/bin/env python3

# test_sync.py - Tests for the Stratum 0 comparator
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

import itertools

import pytest
import requests

from eessimon.lib import sync
from eessimon.lib.discovery import ServerList
from eessimon.lib.manifest import RepositoryManifest
from eessimon.lib.sync import SyncStatus, classify, compare_servers, fetch_manifest

from tests.conftest import OTHER_HASH, ROOT_HASH


def manifest(revision=None, root_hash=None, published_at=None):
    return RepositoryManifest(revision, root_hash, published_at)


class TestExampleScenarios:
    """The reference scenarios of the comparator."""

    def test_synchronized(self):
        local = manifest(42, "abc", 1000)
        upstream = manifest(42, "abc", 1000)
        assert classify(local, upstream) == (SyncStatus.SYNCHRONIZED, None)

    def test_hash_mismatch(self):
        local = manifest(42, "abc")
        upstream = manifest(42, "xyz")
        assert classify(local, upstream)[0] == SyncStatus.HASH_MISMATCH

    def test_out_of_sync_with_lag(self):
        local = manifest(40, published_at=900)
        upstream = manifest(42, published_at=5400)
        status, lag_hours = classify(local, upstream)
        assert status == SyncStatus.OUT_OF_SYNC
        assert lag_hours == pytest.approx(1.25)

    def test_unreachable_continues(self, config, logger, local_manifest):
        def fetcher(config, server):
            if server == "down.example.org":
                return None
            return RepositoryManifest(4711, ROOT_HASH, 1700000000)

        summary = compare_servers(
            config,
            logger,
            local_manifest,
            ServerList(["down.example.org", "up.example.org"]),
            fetcher=fetcher,
        )
        assert [record.status for record in summary.records] == [
            SyncStatus.UNREACHABLE,
            SyncStatus.SYNCHRONIZED,
        ]
        assert summary.records[0].upstream_revision is None
        assert summary.counts == {"synchronized": 1, "out_of_sync": 0, "unreachable": 1}
        assert summary.overall == "Partially synchronized (1/2)"


MANIFESTS = [
    manifest(revision, root_hash, published_at)
    for revision, root_hash, published_at in itertools.product(
        [None, 41, 42], [None, ROOT_HASH, OTHER_HASH], [None, 1000, 9000]
    )
]


class TestClassificationProperties:
    """Properties which hold for every pair of manifests."""

    @pytest.mark.parametrize("local", MANIFESTS)
    def test_idempotent_and_never_raises(self, local):
        for upstream in MANIFESTS:
            first = classify(local, upstream)
            assert classify(local, upstream) == first
            assert isinstance(first[0], SyncStatus)

    @pytest.mark.parametrize("local", MANIFESTS)
    def test_hash_invariant(self, local):
        for upstream in MANIFESTS:
            if local.revision is None or local.revision != upstream.revision:
                continue
            status, _ = classify(local, upstream)
            if (
                local.root_hash is not None
                and upstream.root_hash is not None
                and local.root_hash != upstream.root_hash
            ):
                assert status == SyncStatus.HASH_MISMATCH
            else:
                assert status == SyncStatus.SYNCHRONIZED

    @pytest.mark.parametrize("local", MANIFESTS)
    def test_lag_sign(self, local):
        for upstream in MANIFESTS:
            if local.revision is not None and local.revision == upstream.revision:
                continue
            if local.published_at is None or upstream.published_at is None:
                continue
            status, lag_hours = classify(local, upstream)
            if upstream.published_at > local.published_at:
                assert status == SyncStatus.OUT_OF_SYNC
                assert lag_hours > 0
            elif upstream.published_at < local.published_at:
                assert status == SyncStatus.AHEAD_OF_UPSTREAM
                assert lag_hours < 0

    def test_unknown_revisions_never_equal(self):
        status, lag_hours = classify(manifest(), manifest())
        assert status == SyncStatus.OUT_OF_SYNC
        assert lag_hours is None

    def test_missing_timestamps_have_no_lag(self):
        assert classify(manifest(1), manifest(2, published_at=10)) == (
            SyncStatus.OUT_OF_SYNC,
            None,
        )

    def test_unreachable(self):
        assert classify(manifest(1), None) == (SyncStatus.UNREACHABLE, None)


class TestSummary:
    """Aggregation across servers and the latest-revision tracker."""

    def test_latest_revision_and_actions(self, config, logger):
        local = manifest(40, ROOT_HASH, 900)
        upstreams = {
            "old.example.org": manifest(39, OTHER_HASH, 500),
            "new.example.org": manifest(42, OTHER_HASH, 5400),
        }
        summary = compare_servers(
            config,
            logger,
            local,
            ServerList(list(upstreams)),
            fetcher=lambda config, server: upstreams[server],
        )
        assert summary.latest_server == "new.example.org"
        assert summary.latest_revision == 42
        assert summary.overall == "Not synchronized with any server"
        assert summary.status_counts["ahead_of_upstream"] == 1
        assert summary.counts["out_of_sync"] == 2
        assert any("new.example.org" in action for action in summary.suggested_actions)
        assert any(
            "cvmfs_server snapshot software.eessi.io" in action
            for action in summary.suggested_actions
        )

    def test_all_synchronized(self, config, logger, local_manifest):
        summary = compare_servers(
            config,
            logger,
            local_manifest,
            ServerList(["a.example.org", "b.example.org"]),
            fetcher=lambda config, server: local_manifest,
        )
        assert summary.overall == "Synchronized with all servers"
        assert summary.suggested_actions == []
        assert summary.latest_server is None

    def test_no_servers(self, config, logger, local_manifest):
        summary = compare_servers(config, logger, local_manifest, ServerList())
        assert summary.total == 0
        assert summary.overall == "Not checked"
        assert summary.to_dict()["records"] == []

    def test_record_dict(self, config, logger, local_manifest):
        summary = compare_servers(
            config,
            logger,
            local_manifest,
            ServerList(["down.example.org"]),
            fetcher=lambda config, server: None,
        )
        record = summary.to_dict()["records"][0]
        assert record["status"] == "unreachable"
        assert record["upstream_published"] == "unknown"
        assert record["local_published"] == "2023-11-14 22:13:20"


class FakeResponse:
    def __init__(self, status_code, content):
        self.status_code = status_code
        self.content = content

    @property
    def ok(self):
        return self.status_code < 400


class TestFetchManifest:
    """Remote manifests are fetched over HTTP with a timeout."""

    def test_fetch(self, config, monkeypatch, manifest_bytes):
        calls = list()

        def fake_get(url, timeout=None):
            calls.append((url, timeout))
            return FakeResponse(200, manifest_bytes())

        monkeypatch.setattr(sync.requests, "get", fake_get)
        upstream = fetch_manifest(config, "s0.example.org")
        assert upstream.revision == 4711
        assert calls == [
            (
                "http://s0.example.org/cvmfs/software.eessi.io/.cvmfspublished",
                config["fetch_timeout"],
            )
        ]

    def test_timeout(self, config, monkeypatch):
        def fake_get(url, timeout=None):
            raise requests.exceptions.ConnectTimeout("timed out")

        monkeypatch.setattr(sync.requests, "get", fake_get)
        assert fetch_manifest(config, "s0.example.org") is None

    @pytest.mark.parametrize("status_code, content", [(404, b"not found"), (200, b"")])
    def test_bad_response(self, config, monkeypatch, status_code, content):
        monkeypatch.setattr(
            sync.requests,
            "get",
            lambda url, timeout=None: FakeResponse(status_code, content),
        )
        assert fetch_manifest(config, "s0.example.org") is None
