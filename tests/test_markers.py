from conftest import InMemoryStore, make_episode
from creditsdetect.markers import (
    CREDITS_KIND,
    UNSUPPORTED,
    ChapterMarkerService,
    MarkerKindAdapter,
)
from creditsdetect.models import Marker, seconds_to_ticks


def _marker(name, seconds, kind=None):
    return Marker(name, seconds_to_ticks(seconds), kind)


def test_save_replaces_existing_credits_markers():
    episode = make_episode(1, duration=1500.0)
    store = InMemoryStore(episodes=[episode])
    store.chapters[episode.id] = [
        _marker("Intro", 0),
        _marker("Act 1", 120),
        _marker("Chapter 9", 1280, kind="CreditsStart"),
        _marker("End Titles", 1310),
    ]
    service = ChapterMarkerService(store)

    saved = service.save_credits_marker(episode, 1300.0)

    names = [m.name for m in store.chapters[episode.id]]
    assert names == ["Intro", "Act 1", "Credits"]
    assert saved.kind == CREDITS_KIND
    assert saved.start_ticks == 13_000_000_000


def test_short_late_marker_is_treated_as_credits():
    episode = make_episode(1, duration=1000.0)
    store = InMemoryStore(episodes=[episode])
    store.chapters[episode.id] = [_marker("03", 200), _marker("07", 900)]
    service = ChapterMarkerService(store)

    service.save_credits_marker(episode, 950.0, duration=1000.0)

    names = [m.name for m in store.chapters[episode.id]]
    assert names == ["03", "Credits"]


def test_store_without_marker_kinds():
    episode = make_episode(1)
    store = InMemoryStore(episodes=[episode], supports_marker_kind=False)
    service = ChapterMarkerService(store)

    saved = service.save_credits_marker(episode, 1300.0)

    assert saved.kind is None
    assert service.kind_adapter.try_get_marker_kind(saved) is UNSUPPORTED
    assert service.has_credits_marker(episode)


def test_kind_ignored_when_unsupported():
    adapter = MarkerKindAdapter(False)
    service = ChapterMarkerService(InMemoryStore(), adapter)
    assert not service.is_credits_marker(_marker("Chapter 5", 100, kind="CreditsStart"))


def test_remove_credits_marker():
    episode = make_episode(1)
    store = InMemoryStore(episodes=[episode])
    service = ChapterMarkerService(store)
    assert service.remove_credits_marker(episode) is False

    service.save_credits_marker(episode, 1300.0)
    assert service.remove_credits_marker(episode) is True
    assert store.chapters[episode.id] == []


def test_series_markers_listing():
    episodes = [make_episode(1), make_episode(2)]
    store = InMemoryStore(episodes=episodes)
    service = ChapterMarkerService(store)
    service.save_credits_marker(episodes[0], 1300.0)

    entries = {e["episode_id"]: e for e in service.get_series_markers("s1")}

    assert entries[episodes[0].id]["credits_start_seconds"] == 1300.0
    assert entries[episodes[1].id]["credits_start_ticks"] is None
