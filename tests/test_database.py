from datetime import datetime

import pytest

import database


def test_paginate_keeps_documents_without_sort_value(db):
    db["widgets"].insert_many([
        {"name": "dated", "seen_at": datetime(2026, 10, 1)},
        {"name": "undated-1", "seen_at": None},
        {"name": "undated-2"},
    ])
    names, cursor = [], None
    for _ in range(5):
        page = database.paginate("widgets", {}, "seen_at", page_size=1, cursor=cursor)
        names += [d["name"] for d in page["data"]]
        cursor = page["cursor"]
        if cursor is None:
            break
    assert names[0] == "dated"
    assert sorted(names) == ["dated", "undated-1", "undated-2"]


def test_paginate_rejects_unknown_cursor(db):
    with pytest.raises(database.InvalidCursor):
        database.paginate("widgets", {}, "created_at", cursor="0" * 24)


def test_serialize_drops_secrets():
    doc = database.serialize({"_id": "abc", "name": "x", "password_hash": "h"})
    assert doc == {"id": "abc", "name": "x"}
