import threading


def test_entry_round_trip_and_overwrite(fresh_db):
    db = fresh_db
    db.init_db()

    assert db.read_entry("data", "books", "1") == (False, None)

    db.write_entry("data", "books", "1", {"title": "Dune", "shelves": ["sci-fi"]})
    db.write_entry("data", "books", "1", {"title": "Dune Messiah", "shelves": []})

    found, value = db.read_entry("data", "books", "1")
    assert found is True
    assert value == {"title": "Dune Messiah", "shelves": []}


def test_null_values_are_distinguished_from_missing(fresh_db):
    db = fresh_db
    db.init_db()

    db.write_entry("response", "reviews", "9", None)

    assert db.read_entry("response", "reviews", "9") == (True, None)


def test_caches_and_namespaces_are_isolated(fresh_db):
    db = fresh_db
    db.init_db()

    db.write_entry("data", "books", "2", "b")
    db.write_entry("data", "books", "1", "a")
    db.write_entry("data", "read-books", "u1", [])
    db.write_entry("response", "books", "1", "raw")

    assert db.list_entries("data", "books") == ["a", "b"]
    assert db.count_entries("data") == {"books": 2, "read-books": 1}
    assert db.count_entries("response") == {"books": 1}


def test_clear_entries_by_namespace_and_cache(fresh_db):
    db = fresh_db
    db.init_db()

    db.write_entry("data", "books", "1", "a")
    db.write_entry("data", "read-books", "u1", [])
    db.write_entry("response", "books", "1", "raw")

    assert db.clear_entries("data", ["read-books"]) == 1
    assert db.count_entries("data") == {"books": 1}

    assert db.clear_entries("data") == 1
    assert db.count_entries("data") == {}
    assert db.count_entries("response") == {"books": 1}


def test_nested_get_db_commits_once(fresh_db):
    db = fresh_db
    db.init_db()

    with db.get_db() as outer:
        db.write_entry("data", "books", "1", "inner")
        outer.execute(
            "UPDATE cache_entries SET value = ? WHERE key = ?",
            ('"outer"', "1"),
        )

    assert db.read_entry("data", "books", "1") == (True, "outer")


def test_rollback_on_error(fresh_db):
    db = fresh_db
    db.init_db()

    try:
        with db.get_db():
            db.write_entry("data", "books", "1", "pending")
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    assert db.read_entry("data", "books", "1") == (False, None)


def test_connections_are_per_thread(fresh_db):
    db = fresh_db
    db.init_db()
    db.write_entry("data", "books", "1", "shared")

    results = []

    def worker():
        results.append(db.read_entry("data", "books", "1"))

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join()

    assert results == [(True, "shared")]
