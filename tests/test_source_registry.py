import threading

from animenegus_app.config import DEFAULT_STREAMING_BACKENDS
from sources import SourceEntry, SourcePriorityRegistry


def test_ordered_names_skip_disabled_entries():
    registry = SourcePriorityRegistry(DEFAULT_STREAMING_BACKENDS)

    assert registry.ordered_names() == ["gogoanime", "zoro", "animepahe", "9anime"]
    assert [e.name for e in registry.entries()][-1] == "crunchyroll"


def test_report_failure_moves_backend_to_end():
    registry = SourcePriorityRegistry([("gogoanime", 1), ("zoro", 2), ("animepahe", 3)])

    registry.report_failure("gogoanime")

    assert registry.entries() == [
        SourceEntry("zoro", 2),
        SourceEntry("animepahe", 3),
        SourceEntry("gogoanime", 4),
    ]
    assert registry.ordered_names() == ["zoro", "animepahe", "gogoanime"]


def test_report_failure_goes_past_disabled_priorities():
    registry = SourcePriorityRegistry(DEFAULT_STREAMING_BACKENDS)

    registry.report_failure("zoro")

    priorities = {e.name: e.priority for e in registry.entries()}
    assert priorities["zoro"] == 6
    assert all(priorities["zoro"] > p for name, p in priorities.items() if name != "zoro")
    assert registry.ordered_names()[-1] == "zoro"


def test_failed_backend_is_never_disabled():
    registry = SourcePriorityRegistry([("a", 1), ("b", 2)])

    for _ in range(5):
        registry.report_failure("a")

    assert "a" in registry.ordered_names()


def test_preferred_backend_goes_first_without_changing_priorities():
    registry = SourcePriorityRegistry(DEFAULT_STREAMING_BACKENDS)

    assert registry.ordered_names("animepahe") == ["animepahe", "gogoanime", "zoro", "9anime"]
    assert registry.ordered_names() == ["gogoanime", "zoro", "animepahe", "9anime"]


def test_disabled_or_unknown_preferred_backend_is_ignored():
    registry = SourcePriorityRegistry(DEFAULT_STREAMING_BACKENDS)

    assert registry.ordered_names("crunchyroll")[0] == "gogoanime"
    assert registry.ordered_names("nope")[0] == "gogoanime"


def test_unknown_failure_report_changes_nothing():
    registry = SourcePriorityRegistry([("a", 1), ("b", 2)])

    registry.report_failure("missing")

    assert registry.entries() == [SourceEntry("a", 1), SourceEntry("b", 2)]


def test_concurrent_failure_reports_keep_priorities_distinct():
    names = ["a", "b", "c", "d"]
    registry = SourcePriorityRegistry.from_names(names)

    threads = [
        threading.Thread(target=registry.report_failure, args=(names[i % len(names)],))
        for i in range(40)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    priorities = [e.priority for e in registry.entries()]
    assert len(set(priorities)) == len(names)
    assert priorities == sorted(priorities)
    assert max(priorities) == 4 + 40
