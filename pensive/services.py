# pensive/services.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from openai import OpenAI
from sqlalchemy.engine import Engine

from .analyzer import Analyzer
from .cache import Cache, build_cache
from .concepts import ConceptGraph
from .config import make_llm_client
from .content_store import ContentStore
from .digest import DigestAggregator
from .emailer import send_email
from .extraction import extract_page
from .feeds import FeedService
from .jobs import JobQueue
from .pipeline import ContentPipeline
from .podcasts import PodcastResolver
from .store import SessionFactory, init_db, make_engine, session_factory
from .users import UserStore
from .worker import JobWorker


@dataclass
class Services:
    engine: Engine
    get_session: SessionFactory
    cache: Cache
    users: UserStore
    content: ContentStore
    analyzer: Analyzer
    concepts: ConceptGraph
    digests: DigestAggregator
    queue: JobQueue
    feeds: FeedService
    pipeline: ContentPipeline
    podcasts: PodcastResolver
    worker: JobWorker


def build_services(
    db_url: Optional[str] = None,
    cache: Optional[Cache] = None,
    llm_client: Optional[OpenAI] = None,
    feed_fetcher=None,
    extractor=extract_page,
    mailer=send_email,
    podcast_client=None,
) -> Services:
    """
    Wire every component once. With no arguments everything comes from config
    (DB_URL, CACHE_BACKEND, LLM key); tests pass an in-memory URL, a MemoryCache
    and fakes for the outbound collaborators.
    """
    engine = make_engine(db_url)
    init_db(engine)
    get_session = session_factory(engine)
    cache = cache if cache is not None else build_cache()

    users = UserStore(get_session)
    content = ContentStore(get_session)
    analyzer = Analyzer(llm_client if llm_client is not None else make_llm_client(), cache)
    concepts = ConceptGraph(get_session, cache)
    digests = DigestAggregator(get_session, content, cache)
    queue = JobQueue(get_session)
    feeds = FeedService(get_session, content, queue, cache, fetcher=feed_fetcher)
    pipeline = ContentPipeline(content, analyzer, concepts, extractor=extractor)
    podcasts = PodcastResolver(cache, client=podcast_client)
    worker = JobWorker(queue, pipeline, feeds, digests, users, mailer=mailer)

    return Services(
        engine=engine,
        get_session=get_session,
        cache=cache,
        users=users,
        content=content,
        analyzer=analyzer,
        concepts=concepts,
        digests=digests,
        queue=queue,
        feeds=feeds,
        pipeline=pipeline,
        podcasts=podcasts,
        worker=worker,
    )
