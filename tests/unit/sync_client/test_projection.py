"""Unit tests for the Client Projection Cache and request generations.

Covers:
- Snapshots replace the cached order wholesale; applying one twice is
  the same as applying it once.
- Older versions never overwrite newer ones.
- Responses that lost the race to a newer request are dropped.
"""

from __future__ import annotations

import pytest

from sync_client.projection import ProjectionCache, RequestGenerations

pytestmark = pytest.mark.unit


def snapshot(version, **fields):
    return {"orderId": "abc", "version": version, "status": "Payment Pending", **fields}


class TestProjectionCache:
    def test_apply_and_get(self):
        cache = ProjectionCache()

        assert cache.apply_snapshot(snapshot(1))
        assert cache.get("abc")["version"] == 1
        assert cache.get("missing") is None

    def test_same_snapshot_twice_is_a_no_op(self):
        cache = ProjectionCache()
        seen = []
        cache.add_listener(seen.append)

        cache.apply_snapshot(snapshot(2))
        changed = cache.apply_snapshot(snapshot(2))

        assert changed is False
        assert seen == ["abc"]

    def test_older_version_is_ignored(self):
        cache = ProjectionCache()
        cache.apply_snapshot(snapshot(3, status="Confirmed"))

        assert cache.apply_snapshot(snapshot(2)) is False
        assert cache.get("abc")["status"] == "Confirmed"

    def test_snapshot_replaces_instead_of_merging(self):
        cache = ProjectionCache()
        cache.apply_snapshot(snapshot(1, awbCode="AWB1"))

        cache.apply_snapshot(snapshot(2))

        assert "awbCode" not in cache.get("abc")

    def test_returned_snapshot_is_a_copy(self):
        cache = ProjectionCache()
        cache.apply_snapshot(snapshot(1))

        cache.get("abc")["status"] = "Tampered"

        assert cache.get("abc")["status"] == "Payment Pending"

    def test_removed_listener_is_not_called(self):
        cache = ProjectionCache()
        seen = []
        cache.add_listener(seen.append)
        cache.remove_listener(seen.append)

        cache.apply_snapshot(snapshot(1))

        assert seen == []

    def test_lists(self):
        cache = ProjectionCache()
        body = {
            "count": 12,
            "results": [{"orderId": "abc"}],
            "pagination": {"currentPage": 2, "totalPages": 3, "totalOrders": 12},
        }

        page = cache.store_list("7", "buyer", body)

        assert (page.page, page.total_pages, page.total) == (2, 3, 12)
        assert cache.list_page("7", "seller") is None
        cache.invalidate_list("7", "buyer")
        assert cache.list_page("7", "buyer").stale


class TestRequestGenerations:
    def test_newer_response_wins(self):
        generations = RequestGenerations()
        first = generations.begin("order:abc")
        second = generations.begin("order:abc")

        assert generations.complete("order:abc", second)
        assert not generations.complete("order:abc", first)

    def test_in_order_responses_both_apply(self):
        generations = RequestGenerations()
        first = generations.begin("k")
        assert generations.complete("k", first)
        second = generations.begin("k")
        assert generations.complete("k", second)

    def test_in_flight(self):
        generations = RequestGenerations()
        generation = generations.begin("k")
        assert generations.in_flight("k")

        generations.abandon("k", generation)

        assert not generations.in_flight("k")

    def test_keys_are_independent(self):
        generations = RequestGenerations()
        a = generations.begin("a")
        generations.complete("b", generations.begin("b"))
        assert generations.complete("a", a)
