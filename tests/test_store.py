"""
Tests for the public Store API.
"""

import asyncio
import json
import os

import pytest

from treedb import (
    HookError,
    InvalidFilter,
    InvalidKey,
    IOFailure,
    ReentrantCallError,
    SchemaViolation,
    Store,
)


class TestBasicOperations:
    """Tests for set/get/has/delete."""

    async def test_set_then_get(self, store):
        value = {"name": "Alice", "tags": ["x", "y"], "score": 1.5, "ok": True, "none": None}
        assert await store.set("user", value) == value
        assert await store.get("user") == value

    async def test_nested_keys_create_intermediates(self, store):
        await store.set("a.b.c", 1)
        assert await store.get("a") == {"b": {"c": 1}}
        assert await store.get("a.b.c") == 1

    async def test_write_through_scalar_replaces_it(self, store):
        await store.set("a", 1)
        await store.set("a.b", 2)
        assert await store.get("a") == {"b": 2}

    async def test_get_missing(self, store):
        assert await store.get("missing") is None
        assert await store.get("missing.deeper") is None

    async def test_has_distinguishes_null(self, store):
        await store.set("nothing", None)
        assert await store.has("nothing") is True
        assert await store.get("nothing") is None
        assert await store.has("missing") is False

    async def test_delete(self, store):
        await store.set("a.b", 1)
        assert await store.delete("a.b") is True
        assert await store.get("a.b") is None
        assert await store.delete("a.b") is False

    async def test_list_index_keys(self, store):
        await store.set("items", ["a", "b"])
        assert await store.get("items.1") == "b"
        await store.set("items.0", "z")
        assert await store.get("items") == ["z", "b"]

    async def test_custom_separator(self, temp_dir):
        async with Store(directory=temp_dir, separator="/") as store:
            await store.set("a/b.c", 1)
            assert await store.all() == {"a": {"b.c": 1}}

    @pytest.mark.parametrize("key", ["", ".", None, 3])
    async def test_invalid_keys(self, store, key):
        with pytest.raises(InvalidKey):
            await store.set(key, 1)
        with pytest.raises(InvalidKey):
            await store.get(key)

    async def test_values_are_copied_in_and_out(self, store):
        value = {"list": [1]}
        await store.set("a", value)
        value["list"].append(2)
        fetched = await store.get("a")
        fetched["list"].append(3)
        assert await store.get("a") == {"list": [1]}

    async def test_all_and_delete_all(self, store):
        await store.set("a", 1)
        await store.set("b.c", 2)
        assert await store.all() == {"a": 1, "b": {"c": 2}}
        assert await store.delete_all() is True
        assert await store.all() == {}


class TestDerivedOperations:
    """Tests for list and numeric helpers."""

    async def test_push(self, store):
        assert await store.push("list", "a") == ["a"]
        assert await store.push("list", {"b": 1}) == ["a", {"b": 1}]
        assert await store.get("list") == ["a", {"b": 1}]

    async def test_push_replaces_non_list(self, store):
        await store.set("list", "scalar")
        assert await store.push("list", 1) == [1]

    async def test_pull_removes_all_equal_values(self, store):
        await store.set("list", [1, "1", 1, True, {"a": 1}])
        assert await store.pull("list", 1) == ["1", True, {"a": 1}]
        assert await store.pull("list", {"a": 1}) == ["1", True]

    async def test_pull_on_missing_does_not_create(self, store):
        assert await store.pull("missing", 1) == []
        assert await store.has("missing") is False

    async def test_numeric_operations(self, store):
        assert await store.add("n", 5) == 5
        assert await store.subtract("n", 2) == 3
        assert await store.increment("n") == 4
        assert await store.decrement("n") == 3
        assert await store.add("n", 0.5) == 3.5

    async def test_non_numeric_value_counts_as_zero(self, store):
        await store.set("n", "abc")
        assert await store.increment("n") == 1
        await store.set("flag", True)
        assert await store.add("flag", 2) == 2

    async def test_non_numeric_delta_rejected(self, store):
        with pytest.raises(TypeError):
            await store.add("n", "5")
        assert await store.has("n") is False


class TestListing:
    """Tests for keys/values/entries/find."""

    async def test_keys_values_entries(self, store, users):
        await store.set("users", users)
        assert await store.keys("users") == ["1", "2", "3"]
        assert [v["name"] for v in await store.values("users")] == ["Alice", "Bob", "Carol"]
        assert (await store.entries("users"))[0] == ("1", users["1"])

    async def test_root_listing(self, store):
        await store.set("a", 1)
        await store.set("b", 2)
        assert await store.keys() == ["a", "b"]

    async def test_listing_non_container(self, store):
        await store.set("a", 1)
        assert await store.keys("a") == []
        assert await store.values("missing") == []

    async def test_find(self, store, users):
        await store.set("users", users)
        found = await store.find("users", lambda value, key: value["age"] > 26)
        assert [k for k, _ in found] == ["2", "3"]


class TestQueryAndSearch:
    """Tests for query() and search() through the store."""

    async def test_query(self, store):
        await store.set("users.1", {"name": "Alice", "age": 25})
        await store.set("users.2", {"name": "Bob", "age": 30})

        results = await store.query("users", {"age": {"$gte": 26}})
        assert results == [{"key": "2", "value": {"name": "Bob", "age": 30}}]

        results = await store.query("users", {"age": {"$gte": 0}}, {"sort": {"age": -1}})
        assert [r["key"] for r in results] == ["2", "1"]

    async def test_query_options(self, store, users):
        await store.set("users", users)
        results = await store.query("users", {}, {"sort": {"age": 1}, "skip": 1, "limit": 1})
        assert [r["key"] for r in results] == ["2"]

    async def test_query_unknown_option(self, store):
        with pytest.raises(InvalidFilter):
            await store.query("", {}, {"order": 1})

    async def test_query_missing_container(self, store):
        assert await store.query("nothing", {}) == []

    async def test_search(self, store):
        await store.set("docs.1", {"title": "Node Guide"})
        await store.set("docs.2", {"title": "JS Intro"})
        assert await store.search("Node") == ["docs.1"]
        assert await store.search("zzz") == []
        assert await store.search("") == []

    async def test_search_description_field(self, store):
        await store.set("docs.1", {"title": "One", "description": "shared words"})
        await store.set("docs.2", {"title": "Two", "description": "shared"})
        assert await store.search("shared") == ["docs.1", "docs.2"]
        assert await store.search("shared words") == ["docs.1"]

    async def test_search_tracks_updates_and_deletes(self, store):
        await store.set("docs.1", {"title": "Node Guide"})
        await store.set("docs.1.title", "Python Guide")
        assert await store.search("node") == []
        assert await store.search("python") == ["docs.1"]

        await store.delete("docs.1")
        assert await store.search("guide") == []

    async def test_search_forgets_field_turned_into_map(self, store):
        await store.set("doc", {"title": "Node Guide"})
        await store.set("doc.title.sub", 1)
        assert await store.search("node") == []

    async def test_custom_index_fields(self, temp_dir):
        async with Store(directory=temp_dir, index_fields=["body"]) as store:
            await store.set("a", {"title": "ignored", "body": "indexed text"})
            assert await store.search("ignored") == []
            assert await store.search("indexed") == ["a"]

    async def test_search_requires_text(self, store):
        with pytest.raises(TypeError):
            await store.search(5)


class TestTTL:
    """Tests for expiry."""

    async def test_key_expires(self, timed_store, clock):
        await timed_store.set("k", "v", ttl_ms=1000)
        assert await timed_store.ttl("k") == 1000
        clock.advance(999)
        assert await timed_store.get("k") == "v"
        clock.advance(1)
        assert await timed_store.get("k") is None
        assert "k" not in await timed_store.all()
        assert await timed_store.ttl("k") == -1

    async def test_expired_key_hidden_from_bulk_reads(self, timed_store, clock):
        await timed_store.set("users.1", {"title": "temp user"}, ttl_ms=10)
        await timed_store.set("users.2", {"title": "kept user"})
        clock.advance(10)
        assert await timed_store.keys("users") == ["2"]
        assert await timed_store.search("user") == ["users.2"]
        assert [r["key"] for r in await timed_store.query("users", {})] == ["2"]

    async def test_expired_ancestor_hides_descendants(self, timed_store, clock):
        await timed_store.set("session", {"user": {"id": 1}}, ttl_ms=5)
        clock.advance(5)
        assert await timed_store.get("session.user.id") is None

    async def test_set_without_ttl_clears_ttl(self, timed_store, clock):
        await timed_store.set("k", 1, ttl_ms=100)
        await timed_store.set("k", 2)
        assert await timed_store.ttl("k") == -1
        clock.advance(1000)
        assert await timed_store.get("k") == 2

    async def test_expire_and_clear(self, timed_store, clock):
        await timed_store.set("k", 1)
        assert await timed_store.expire("k", 50) is True
        assert await timed_store.ttl("k") == 50
        await timed_store.expire("k", 0)
        assert await timed_store.ttl("k") == -1

    async def test_expiry_emits_delete_event(self, timed_store, clock):
        seen = []
        timed_store.on("delete", seen.append)
        await timed_store.set("k", 1, ttl_ms=10)
        clock.advance(10)
        await timed_store.get("k")
        assert seen == [{"key": "k", "reason": "expired"}]

    async def test_ttl_follows_list_element_after_delete(self, timed_store, clock):
        await timed_store.set("tags", ["a", "b", "c"])
        await timed_store.expire("tags.1", 1000)
        await timed_store.delete("tags.0")
        assert await timed_store.ttl("tags.0") == 1000
        assert await timed_store.ttl("tags.1") == -1

        clock.advance(1001)
        assert await timed_store.get("tags") == ["c"]

    async def test_adjacent_list_elements_expire_together(self, timed_store, clock):
        await timed_store.set("tags", ["a", "b", "c"])
        await timed_store.expire("tags.0", 1000)
        await timed_store.expire("tags.1", 1000)

        clock.advance(1001)
        assert await timed_store.get("tags") == ["c"]

    async def test_expiry_of_unset_key_emits_nothing(self, timed_store, clock):
        seen = []
        timed_store.on("delete", seen.append)
        await timed_store.expire("ghost", 10)
        clock.advance(10)
        assert await timed_store.get("ghost") is None
        assert seen == []

    async def test_scalar_ttl_does_not_outlive_replacement(self, timed_store, clock):
        await timed_store.set("a", 1, ttl_ms=100)
        await timed_store.set("a.b", 2)
        clock.advance(200)
        assert await timed_store.get("a") == {"b": 2}

    async def test_real_time_expiry(self, store):
        await store.set("k", "v", ttl_ms=50)
        await asyncio.sleep(0.1)
        assert await store.get("k") is None
        assert "k" not in await store.all()


class TestSchema:
    """Tests for schema validation."""

    async def test_schema_violation(self, temp_dir):
        async with Store(directory=temp_dir, schema={"age": int, "name": str, "admin": bool}) as store:
            await store.set("u1", {"age": 3, "name": "x", "admin": False})
            await store.set("u2", {"age": 2.5})

            with pytest.raises(SchemaViolation) as exc_info:
                await store.set("u3", {"age": "old"})
            assert exc_info.value.field == "age"

            with pytest.raises(SchemaViolation):
                await store.set("u3", {"age": True})
            with pytest.raises(SchemaViolation):
                await store.set("u3", {"admin": 1})
            assert await store.has("u3") is False

    async def test_schema_ignores_non_maps(self, temp_dir):
        async with Store(directory=temp_dir, schema={"age": int}) as store:
            await store.set("age", "not checked")
            assert await store.get("age") == "not checked"

    def test_invalid_schema_type(self, temp_dir):
        with pytest.raises(ValueError):
            Store(directory=temp_dir, schema={"age": list})

    @pytest.mark.parametrize(
        "kwargs", [{"name": ""}, {"debounce_ms": -1}, {"separator": ""}, {"index_fields": "title"}]
    )
    def test_invalid_arguments(self, temp_dir, kwargs):
        with pytest.raises(ValueError):
            Store(directory=temp_dir, **kwargs)


class TestHooksAndEvents:
    """Tests for pre/post hooks and event notifications."""

    async def test_pre_hook_failure_aborts(self, store):
        def reject(payload):
            raise PermissionError("read only")

        store.pre("set", reject)
        with pytest.raises(HookError) as exc_info:
            await store.set("a", 1)
        assert isinstance(exc_info.value.__cause__, PermissionError)
        assert await store.get("a") is None

    async def test_hooks_receive_payload(self, store):
        calls = []

        async def post_set(payload):
            calls.append(("post", payload))

        store.pre("set", lambda payload: calls.append(("pre", payload)))
        store.post("set", post_set)
        store.pre("delete", lambda payload: calls.append(("pre-delete", payload)))

        await store.set("a..b", 1)
        await store.delete("a.b")
        assert calls == [
            ("pre", {"key": "a.b", "value": 1}),
            ("post", {"key": "a.b", "value": 1}),
            ("pre-delete", {"key": "a.b"}),
        ]

    async def test_events_fire_after_post_hooks(self, store):
        order = []
        store.post("set", lambda payload: order.append("post"))
        store.on("set", lambda payload: order.append("event"))
        await store.set("a", 1)
        assert order == ["post", "event"]

    async def test_post_hook_failure_keeps_mutation(self, store):
        seen = []
        store.on("set", seen.append)

        def fail(payload):
            raise RuntimeError("post failed")

        store.post("set", fail)
        with pytest.raises(HookError):
            await store.set("a", 1)
        assert await store.get("a") == 1
        assert seen == []

    async def test_change_events(self, store):
        seen = []
        store.on("change", seen.append)
        await store.set("a", 1)
        await store.delete("a")
        await store.delete("a")
        await store.delete_all()
        assert seen == [
            {"type": "set", "key": "a", "value": 1},
            {"type": "delete", "key": "a"},
            {"type": "reset", "reason": "delete_all"},
        ]

    async def test_off(self, store):
        seen = []
        store.on("set", seen.append)
        store.off("set", seen.append)
        await store.set("a", 1)
        assert seen == []

    async def test_failing_listener_does_not_fail_operation(self, store):
        def bad(payload):
            raise RuntimeError("listener")

        store.on("set", bad)
        assert await store.set("a", 1) == 1

    async def test_derived_operation_hooks(self, store):
        actions = []
        for action in ("push", "pull", "add", "subtract"):
            store.pre(action, lambda payload, action=action: actions.append(action))
        await store.push("l", 1)
        await store.pull("l", 1)
        await store.increment("n")
        await store.decrement("n")
        assert actions == ["push", "pull", "add", "subtract"]

    async def test_hook_calling_store_fails_fast(self, store):
        async def nested(payload):
            await store.get("other")

        store.pre("set", nested)
        with pytest.raises(HookError) as exc_info:
            await asyncio.wait_for(store.set("a", 1), timeout=1.0)
        assert isinstance(exc_info.value.__cause__, ReentrantCallError)


class TestSnapshots:
    """Tests for backup/restore and export/import."""

    async def test_backup_and_restore(self, store, temp_dir):
        await store.set("docs.1", {"title": "Backup Me"})
        await store.set("session", "s", ttl_ms=60_000)
        dest = os.path.join(temp_dir, "backup.json")
        assert await store.backup(dest) == dest

        with open(dest, encoding="utf-8") as f:
            snapshot = json.load(f)
        assert snapshot["version"] == 1
        assert snapshot["data"]["docs"] == {"1": {"title": "Backup Me"}}
        assert "session" in snapshot["expires"]
        assert "createdAt" in snapshot

        await store.delete_all()
        assert await store.search("backup") == []

        resets = []
        store.on("reset", resets.append)
        assert await store.restore(dest) is True
        assert await store.get("docs.1.title") == "Backup Me"
        assert await store.search("backup") == ["docs.1"]
        assert await store.ttl("session") > 0
        assert resets == [{"reason": "restore"}]

    async def test_restore_missing_file(self, store, temp_dir):
        with pytest.raises(IOFailure):
            await store.restore(os.path.join(temp_dir, "nope.json"))

    async def test_restore_invalid_file(self, store, temp_dir):
        path = os.path.join(temp_dir, "bad.json")
        with open(path, "w", encoding="utf-8") as f:
            f.write("[1, 2]")
        with pytest.raises(IOFailure):
            await store.restore(path)

    async def test_backup_unwritable_destination(self, store, temp_dir):
        with pytest.raises(IOFailure):
            await store.backup(os.path.join(temp_dir, "missing-dir", "backup.json"))

    async def test_export_is_a_copy(self, store):
        await store.set("a", {"b": 1})
        exported = await store.export()
        exported["a"]["b"] = 2
        assert await store.get("a.b") == 1

    async def test_import_replaces_tree_and_clears_ttls(self, store):
        await store.set("old", 1, ttl_ms=60_000)
        data = {"x": {"title": "hello world"}}
        assert await store.import_data(data) is True
        data["x"]["title"] = "mutated"

        assert await store.all() == {"x": {"title": "hello world"}}
        assert await store.search("hello") == ["x"]
        assert await store.ttl("old") == -1

    async def test_import_requires_dict(self, store):
        with pytest.raises(TypeError):
            await store.import_data(["not", "a", "dict"])
