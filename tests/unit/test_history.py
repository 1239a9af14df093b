"""
Unit tests for history.py - Bounded, deduplicated clipboard history
"""
import json
import threading

import pytest

from clipsync.common.history import ClipboardEntry, HistoryStore, IMAGE, TEXT


def text(content: str, source: str = 'local') -> ClipboardEntry:
    return ClipboardEntry(content=content, type=TEXT, source=source)


class TestAdd:
    def test_assigns_unique_ids(self, history):
        first = history.add(text("a"))
        second = history.add(text("b"))
        assert first.id and second.id
        assert first.id != second.id

    def test_assigns_timestamp_when_missing(self, history):
        assert history.add(text("a")).timestamp > 0

    def test_keeps_given_timestamp(self, history):
        entry = ClipboardEntry(content="a", timestamp=123.0)
        assert history.add(entry).timestamp == 123.0

    def test_newest_first(self, history):
        history.add(text("a"))
        history.add(text("b"))
        assert [e.content for e in history.get_all()] == ["b", "a"]

    def test_duplicate_moves_to_front(self, history):
        history.add(text("a"))
        history.add(text("b"))
        history.add(text("a"))
        assert [e.content for e in history.get_all()] == ["a", "b"]
        assert history.size() == 2

    def test_same_content_different_type_kept(self, history):
        history.add(ClipboardEntry(content="[Image 1x1]", type=TEXT))
        history.add(ClipboardEntry(content="[Image 1x1]", type=IMAGE))
        assert history.size() == 2

    def test_full_history_evicts_oldest(self):
        store = HistoryStore(max_size=3)
        for content in ("a", "b", "c", "d"):
            store.add(text(content))
        assert [e.content for e in store.get_all()] == ["d", "c", "b"]

    def test_size_never_exceeds_capacity(self):
        store = HistoryStore(max_size=10)
        for i in range(50):
            store.add(text(f"item {i}"))
            assert len(store) <= 10
        assert len(store) == 10

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            HistoryStore(max_size=0)


class TestLookup:
    def test_get_by_id(self, history):
        stored = history.add(text("a"))
        assert history.get_by_id(stored.id) == stored
        assert history.get_by_id("missing") is None

    def test_get_latest(self, history):
        assert history.get_latest() is None
        history.add(text("a"))
        history.add(text("b"))
        assert history.get_latest().content == "b"

    def test_get_all_is_snapshot(self, history):
        history.add(text("a"))
        snapshot = history.get_all()
        history.add(text("b"))
        assert len(snapshot) == 1

    def test_remove(self, history):
        stored = history.add(text("a"))
        assert history.remove(stored.id) is True
        assert history.remove(stored.id) is False
        assert history.size() == 0

    def test_clear(self, history):
        history.add(text("a"))
        history.clear()
        assert history.get_all() == []


class TestExportImport:
    def test_roundtrip(self, history):
        history.add(text("a", source="laptop"))
        history.add(ClipboardEntry(content="[Image 2x2]", type=IMAGE, file_path="/tmp/x.png"))

        other = HistoryStore()
        other.import_json(history.export_json())
        assert other.get_all() == history.get_all()

    def test_import_truncates_to_capacity(self, history):
        for i in range(10):
            history.add(text(str(i)))
        small = HistoryStore(max_size=3)
        small.import_json(history.export_json())
        assert [e.content for e in small.get_all()] == ["9", "8", "7"]

    def test_import_drops_duplicates_and_fixes_ids(self, history):
        data = json.dumps([
            {'content': "a", 'type': TEXT, 'id': "same"},
            {'content': "b", 'type': TEXT, 'id': "same"},
            {'content': "a", 'type': TEXT, 'id': "other"},
            {'content': "a", 'type': IMAGE},
        ])
        history.import_json(data)

        entries = history.get_all()
        assert [(e.content, e.type) for e in entries] == [("a", TEXT), ("b", TEXT), ("a", IMAGE)]
        assert entries[0].id == "same"
        ids = [e.id for e in entries]
        assert all(ids) and len(set(ids)) == 3

    @pytest.mark.parametrize("data", ["not json", '{"a": 1}', '[{"type": "text"}]', '[1, 2]'])
    def test_import_malformed(self, history, data):
        with pytest.raises(ValueError):
            history.import_json(data)

    def test_export_is_json_array(self, history):
        history.add(text("a"))
        data = json.loads(history.export_json())
        assert data[0]['content'] == "a"


class TestConcurrency:
    def test_parallel_adds_respect_capacity(self):
        store = HistoryStore(max_size=10)

        def worker(n):
            for i in range(100):
                store.add(text(f"{n}-{i}"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        entries = store.get_all()
        assert len(entries) == 10
        assert len({(e.content, e.type) for e in entries}) == 10
