"""
Tests for persisted reader state.
"""
import pytest

from wikifeed.core.article import InteractionType
from wikifeed.core.storage import MemoryStore, write_versioned
from wikifeed.core.user_store import DAY, NAMESPACE, UserStore

from tests.conftest import make_article, make_interaction


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def user_store(store, clock):
    return UserStore(store, clock=clock)


class TestInteractions:
    """Live history and long-term log."""

    def test_history_keeps_newest_entries(self, user_store, clock):
        for i in range(60):
            user_store.store_interaction(make_interaction(str(i), timestamp=clock()))
            clock.advance(1000)

        history = user_store.get_interactions()
        assert len(history) == 50
        assert history[0].article_id == "10"
        assert history[-1].article_id == "59"
        assert len(user_store.get_interaction_log()) == 60

    def test_history_drops_entries_older_than_window(self, user_store, clock):
        user_store.store_interaction(make_interaction("old", timestamp=clock()))
        clock.advance(16 * DAY)
        user_store.store_interaction(make_interaction("new", timestamp=clock()))

        assert [i.article_id for i in user_store.get_interactions()] == ["new"]
        assert [i.article_id for i in user_store.get_interaction_log()] == ["old", "new"]

    def test_log_is_capped(self, store, clock):
        user_store = UserStore(store, clock=clock, log_size=5)
        for i in range(8):
            user_store.store_interaction(make_interaction(str(i), timestamp=clock()))
        assert [i.article_id for i in user_store.get_interaction_log()] == ["3", "4", "5", "6", "7"]

    def test_cleanup_old_data(self, user_store, clock):
        user_store.store_interaction(make_interaction("old", timestamp=clock()))
        user_store.store_feedback({"articleId": "old", "timestamp": clock()})
        clock.advance(31 * DAY)
        user_store.cleanup_old_data()

        assert user_store.get_interaction_log() == []
        assert user_store.get_feedback_history() == []

    def test_cleanup_storage_runs_weekly(self, user_store, clock):
        assert user_store.cleanup_storage() is True
        assert user_store.cleanup_storage() is False
        clock.advance(7 * DAY)
        assert user_store.cleanup_storage() is True

    def test_interaction_type_roundtrip(self, user_store, clock):
        user_store.store_interaction(make_interaction("1", InteractionType.LIKE, timestamp=clock()))
        assert user_store.get_interactions()[0].type == InteractionType.LIKE


class TestLikes:
    """Liked articles and their migration from older layouts."""

    def test_toggle_like(self, user_store):
        article = make_article("1", "Photosynthesis")
        assert user_store.toggle_like(article) is True
        assert user_store.is_liked("1") is True
        assert user_store.get_liked_articles_data()[0].title == "Photosynthesis"

        assert user_store.toggle_like(article) is False
        assert user_store.liked_ids() == set()

    def test_like_twice_keeps_one_record(self, user_store):
        article = make_article("1")
        user_store.store_liked_article(article)
        user_store.store_liked_article(article)
        assert len(user_store.get_liked_articles()) == 1

    def test_migrates_bare_article_list(self, store, user_store, clock):
        store.put_cache(NAMESPACE, "liked_articles", [
            {"id": "1", "title": "Photosynthesis", "language": "en", "imageUrl": "a.jpg"},
            {"pageid": 2, "title": "Chlorophyll"},
        ])
        records = user_store.get_liked_articles()
        assert [r.id for r in records] == ["1", "2"]
        assert records[0].article.image_url == "a.jpg"
        assert records[1].timestamp == clock()

    def test_reads_wrapped_records(self, store, user_store):
        write_versioned(store, NAMESPACE, "liked_articles", [
            {"id": "1", "timestamp": 5, "article": make_article("1").to_dict()},
        ])
        records = user_store.get_liked_articles()
        assert records[0].timestamp == 5
        assert records[0].article.id == "1"

    def test_unknown_layout_starts_empty(self, store, user_store):
        store.put_cache(NAMESPACE, "liked_articles", {"unexpected": True})
        assert user_store.get_liked_articles() == []

    def test_unreadable_records_are_skipped(self, store, user_store):
        store.put_cache(NAMESPACE, "liked_articles", [{"title": "No id"}, "junk", {"id": "1", "title": "Ok"}])
        assert [r.id for r in user_store.get_liked_articles()] == ["1"]

    def test_liked_ids_are_reconciled(self, store, user_store):
        user_store.store_liked_article(make_article("1"))
        write_versioned(store, NAMESPACE, "liked_ids", ["1", "ghost"])
        assert user_store.liked_ids() == {"1"}
        assert store.get_cache(NAMESPACE, "liked_ids")["data"] == ["1"]


class TestPreferences:
    """Language, feedback and offline articles."""

    def test_language_roundtrip(self, user_store):
        assert user_store.get_stored_language() is None
        user_store.set_stored_language('fr')
        assert user_store.get_stored_language() == 'fr'

    def test_unsupported_language_is_rejected(self, user_store):
        with pytest.raises(ValueError):
            user_store.set_stored_language('xx')

    def test_feedback_is_capped(self, user_store, clock):
        for i in range(105):
            user_store.store_feedback({"articleId": str(i), "timestamp": clock()})
        history = user_store.get_feedback_history()
        assert len(history) == 100
        assert history[0]["articleId"] == "5"

    def test_offline_articles(self, user_store):
        assert user_store.has_offline_content() is False
        user_store.store_offline_article(make_article("1"))
        user_store.store_offline_article(make_article("1", "Updated"))
        articles = user_store.get_offline_articles()
        assert [a.title for a in articles] == ["Updated"]
        assert user_store.has_offline_content() is True
