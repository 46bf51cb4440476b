# tests/test_feeds.py
from datetime import datetime, timedelta, timezone

import pytest

from pensive.errors import FeedFetchError, NotFoundError
from pensive.feeds import FeedEntry, FeedResponse, parse_duration, parse_feed
from pensive.models import JobStatus, JobType, as_utc

FEED_URL = "https://blog.example.com/rss"
T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel>
  <title>Example Blog</title>
  <item>
    <title>First post</title>
    <link>https://blog.example.com/first</link>
    <description>&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt;&lt;/p&gt;</description>
    <pubDate>Sun, 01 Jun 2025 09:00:00 GMT</pubDate>
  </item>
  <item>
    <title>No link</title>
  </item>
</channel></rss>"""

def _entries(n, start=T0):
    return [
        FeedEntry(title=f"Post {i}", link=f"https://blog.example.com/{i}", text=f"body {i}",
                  published=start - timedelta(hours=i))
        for i in range(n)
    ]

def test_parse_feed_extracts_entries():
    resp = parse_feed(RSS)
    assert resp.title == "Example Blog"
    assert resp.is_podcast is False
    assert len(resp.entries) == 1
    e = resp.entries[0]
    assert e.link == "https://blog.example.com/first"
    assert e.text == "Hello world"
    assert e.published == datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)

def test_subscribe_is_unique_per_user(services, feed_fetcher):
    feed_fetcher.responses[FEED_URL] = FeedResponse(title="Example Blog")
    feed, created = services.feeds.subscribe("u1", FEED_URL)
    again, created_again = services.feeds.subscribe("u1", FEED_URL, title="Other")

    assert created and not created_again
    assert again.id == feed.id
    assert feed.title == "Example Blog"
    assert len(services.feeds.list_feeds("u1")) == 1

def test_subscribe_keeps_going_when_preview_fails(services):
    feed, created = services.feeds.subscribe("u1", FEED_URL)
    assert created
    assert feed.title == FEED_URL

def test_poll_stores_newest_ten_and_queues_analysis(services, feed_fetcher):
    feed, _ = services.feeds.subscribe("u1", FEED_URL, title="Blog")
    feed_fetcher.responses[FEED_URL] = FeedResponse(title="Blog", entries=_entries(12), etag='"v1"', last_modified="Sun, 01 Jun 2025 12:00:00 GMT")

    result = services.feeds.poll_feed(feed, now=T0)

    assert result == {"feedId": feed.id, "status": "success", "items": 10}
    page = services.content.get_user_content("u1", limit=100)
    assert page.total == 10
    assert {e.item.source for e in page.items} == {"rss"}
    assert "Post 11" not in {e.item.title for e in page.items}
    assert services.queue.stats()["pending"] == 10

    stored = services.feeds.get_feed("u1", feed.id)
    assert stored.etag == '"v1"'
    assert stored.item_count == 10
    assert as_utc(stored.last_item_seen_at) == T0
    assert as_utc(stored.last_fetched_at) == T0

def test_second_poll_is_conditional_and_skips_seen_items(services, feed_fetcher):
    feed, _ = services.feeds.subscribe("u1", FEED_URL, title="Blog")
    feed_fetcher.responses[FEED_URL] = FeedResponse(entries=_entries(2), etag='"v1"')
    services.feeds.poll_feed(feed, now=T0)

    newer = FeedEntry(title="Fresh", link="https://blog.example.com/fresh", text="fresh", published=T0 + timedelta(hours=1))
    feed_fetcher.responses[FEED_URL] = FeedResponse(entries=[newer] + _entries(2), etag='"v2"')
    result = services.feeds.poll_feed_by_id(feed.id, now=T0 + timedelta(hours=2))

    assert result["items"] == 1
    assert feed_fetcher.calls[-1] == (FEED_URL, '"v1"', None)

def test_not_modified(services, feed_fetcher):
    feed, _ = services.feeds.subscribe("u1", FEED_URL, title="Blog")
    feed_fetcher.responses[FEED_URL] = FeedResponse(not_modified=True)
    assert services.feeds.poll_feed(feed, now=T0)["status"] == "not_modified"
    assert services.queue.stats()["pending"] == 0

def test_repeated_failures_deactivate_the_feed(services, feed_fetcher):
    feed, _ = services.feeds.subscribe("u1", FEED_URL, title="Blog")
    feed_fetcher.responses[FEED_URL] = FeedFetchError(FEED_URL, "HTTP 500")

    statuses = [services.feeds.poll_feed_by_id(feed.id, now=T0)["status"] for _ in range(5)]

    assert statuses == ["error"] * 4 + ["deactivated"]
    stored = services.feeds.get_feed("u1", feed.id)
    assert stored.is_active is False
    assert stored.error_count == 5
    assert stored.last_error == "HTTP 500"
    assert services.feeds.due_feeds(now=T0 + timedelta(days=1)) == []

def test_success_resets_error_count(services, feed_fetcher):
    feed, _ = services.feeds.subscribe("u1", FEED_URL, title="Blog")
    feed_fetcher.responses[FEED_URL] = FeedFetchError(FEED_URL, "timeout")
    services.feeds.poll_feed_by_id(feed.id, now=T0)
    feed_fetcher.responses[FEED_URL] = FeedResponse(entries=[])
    services.feeds.poll_feed_by_id(feed.id, now=T0)
    assert services.feeds.get_feed("u1", feed.id).error_count == 0

def test_due_feeds_follow_the_interval(services, feed_fetcher):
    feed, _ = services.feeds.subscribe("u1", FEED_URL, title="Blog")
    assert [f.id for f in services.feeds.due_feeds(now=T0)] == [feed.id]

    feed_fetcher.responses[FEED_URL] = FeedResponse(entries=[])
    services.feeds.poll_due_feeds(now=T0)
    assert services.feeds.due_feeds(now=T0 + timedelta(minutes=59)) == []
    assert len(services.feeds.due_feeds(now=T0 + timedelta(hours=1))) == 1

def test_update_and_unsubscribe(services):
    feed, _ = services.feeds.subscribe("u1", FEED_URL, title="Blog")
    updated = services.feeds.update_feed("u1", feed.id, title="Renamed", fetch_interval_seconds=900)
    assert (updated.title, updated.fetch_interval_seconds) == ("Renamed", 900)
    with pytest.raises(ValueError):
        services.feeds.update_feed("u1", feed.id, fetch_interval_seconds=60)
    with pytest.raises(NotFoundError):
        services.feeds.update_feed("u2", feed.id, title="x")

    services.feeds.unsubscribe("u1", feed.id)
    assert services.feeds.list_feeds("u1") == []

def test_fetch_rss_job_runs_through_worker(services, feed_fetcher):
    feed, _ = services.feeds.subscribe("u1", FEED_URL, title="Blog")
    feed_fetcher.responses[FEED_URL] = FeedResponse(entries=_entries(1))
    job = services.queue.enqueue(JobType.FETCH_RSS, {"feedId": feed.id}, user_id="u1")

    summary = services.worker.run(max_jobs=5)

    # the FETCH_RSS job plus the ANALYZE_CONTENT job it produced
    assert summary["processed"] == 2
    assert services.queue.get(job.id).status == JobStatus.COMPLETED
    item = services.content.get_user_content("u1").items[0]
    assert item.analysis is not None
    assert item.analysis.mode == "mock"

def test_failed_fetch_job_counts_one_error_and_completes(services, feed_fetcher):
    feed, _ = services.feeds.subscribe("u1", FEED_URL, title="Blog")
    feed_fetcher.responses[FEED_URL] = FeedFetchError(FEED_URL, "HTTP 503")
    services.worker.retry_delay = 0
    job = services.queue.enqueue(JobType.FETCH_RSS, {"feedId": feed.id}, user_id="u1")

    services.worker.run()
    services.worker.run()

    assert services.queue.get(job.id).status == JobStatus.COMPLETED
    stored = services.feeds.get_feed("u1", feed.id)
    assert stored.error_count == 1
    assert stored.last_error == "HTTP 503"
    assert stored.is_active is True

def test_fetch_job_for_a_deleted_feed_completes(services):
    job = services.queue.enqueue(JobType.FETCH_RSS, {"feedId": "gone"}, user_id="u1")
    assert services.worker.run()["failed"] == 0
    assert services.queue.get(job.id).status == JobStatus.COMPLETED

PODCAST_RSS = """<?xml version="1.0"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd"><channel>
  <title>Deep Talks</title>
  <description>Long conversations</description>
  <itunes:image href="https://cdn.example.com/cover.jpg"/>
  <item>
    <title>Episode 2</title>
    <guid isPermaLink="false">ep-2</guid>
    <description>Second episode notes</description>
    <pubDate>Sun, 01 Jun 2025 09:00:00 GMT</pubDate>
    <enclosure url="https://cdn.example.com/ep2.mp3" type="audio/mpeg" length="1234"/>
    <itunes:duration>1:02:03</itunes:duration>
  </item>
  <item>
    <title>Episode 1</title>
    <guid isPermaLink="false">ep-1</guid>
    <link>https://talks.example.com/ep1</link>
    <description>First episode notes</description>
    <pubDate>Sun, 25 May 2025 09:00:00 GMT</pubDate>
    <enclosure url="https://cdn.example.com/ep1.mp3" type="audio/mpeg" length="999"/>
    <itunes:duration>3600</itunes:duration>
  </item>
</channel></rss>"""

def test_parse_podcast_feed():
    resp = parse_feed(PODCAST_RSS)
    assert resp.is_podcast is True
    assert resp.title == "Deep Talks"
    ep2, ep1 = resp.entries
    # no <link>: the audio file stands in
    assert ep2.link == "https://cdn.example.com/ep2.mp3"
    assert ep2.audio_url == "https://cdn.example.com/ep2.mp3"
    assert ep2.duration_seconds == 3723
    assert ep2.guid == "ep-2"
    assert ep1.link == "https://talks.example.com/ep1"
    assert ep1.duration_seconds == 3600

def test_parse_duration():
    assert parse_duration("45") == 45
    assert parse_duration("02:30") == 150
    assert parse_duration("1:00:00") == 3600
    assert parse_duration("") is None
    assert parse_duration("soon") is None

def test_polling_a_podcast_feed_stores_episodes(services, feed_fetcher):
    feed_url = "https://talks.example.com/feed.xml"
    feed_fetcher.responses[feed_url] = parse_feed(PODCAST_RSS)
    feed, _ = services.feeds.subscribe("u1", feed_url)
    assert (feed.title, feed.kind) == ("Deep Talks", "podcast")

    result = services.feeds.poll_feed(feed, now=T0)

    assert result["items"] == 2
    items = services.content.get_user_content("u1").items
    assert {e.item.source for e in items} == {"podcast"}
    ep2 = next(e.item for e in items if e.item.title == "Episode 2")
    assert ep2.media["showTitle"] == "Deep Talks"
    assert ep2.media["audioUrl"] == "https://cdn.example.com/ep2.mp3"
    assert ep2.media["durationSeconds"] == 3723
    assert ep2.media["episodeId"] == "ep-2"
    assert ep2.media["publishedAt"].startswith("2025-06-01T09:00:00")

def test_plain_feed_turns_podcast_when_enclosures_show_up(services, feed_fetcher):
    feed, _ = services.feeds.subscribe("u1", FEED_URL, title="Blog")
    assert feed.kind == "rss"
    feed_fetcher.responses[FEED_URL] = parse_feed(PODCAST_RSS)
    services.feeds.poll_feed(feed, now=T0)
    assert services.feeds.get_feed("u1", feed.id).kind == "podcast"
