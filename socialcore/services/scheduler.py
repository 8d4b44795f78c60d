"""
Monitor Scheduler.

Runs due monitors on a timer in the leader process. Each run fetches search
results, keeps the ones newer than the previous run that were never surfaced
before, and posts them as a reply to the monitored post. The first run of a
monitor only records what is already out there.
"""

import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from ..models.core import ACTOR_AGENT, MonitorItem, MonitorProducedPost, RunOutcome
from ..models.orm import Agent, Monitor
from ..utils.config import SchedulerConfig
from ..utils.database import Database
from ..utils.json_utils import clean_text_response
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import from_millis, to_millis, utc_now
from .dedup import DedupStore
from .events import EventDispatcher
from .freshness import freshest, is_fresh_by_time, normalize_items
from .monitors import MonitorRegistry
from .notifications import NotificationEmitter, post_event

logger = get_logger(__name__)

SHUTDOWN_TIMEOUT_SEC = 30.0

# Bias engines toward recent results; monitor params override these
ENGINE_DEFAULT_PARAMS = {
    'google': {'tbs': 'qdr:d'},
    'google_news': {'so': '1'},
}

PREFACE_TITLES = 3

PREFACE_PROMPT = """You found {count} new result(s) while monitoring "{query}".

Top results:
{titles}

Write one or two sentences introducing these findings to the person who asked you to keep an eye on this topic.
Stay in character. Do not list the results, they are appended below your text."""


def engine_params(engine: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    merged = dict(ENGINE_DEFAULT_PARAMS.get(engine, {}))
    merged.update(params or {})
    return merged


def format_items(items: List[MonitorItem]) -> str:
    """Render items as a markdown list."""
    lines = []
    for item in items:
        line = f'- [{item.title}]({item.link})' if item.link else f'- {item.title}'
        details = []
        if item.source:
            details.append(item.source)
        if item.timestamp_ms is not None:
            details.append(from_millis(item.timestamp_ms).strftime('%Y-%m-%d %H:%M UTC'))
        if details:
            line += f" ({', '.join(details)})"
        lines.append(line)
    return '\n'.join(lines)


def templated_preface(count: int, query: str) -> str:
    noun = 'update' if count == 1 else 'updates'
    return f'Here {"is" if count == 1 else "are"} {count} new {noun} on "{query}".'


class MonitorScheduler:
    """Timer-driven runner for due monitors.

    Only the leader process runs the loop. ``run_tick`` can be called directly,
    which is how tests drive the scheduler without a clock.
    """

    def __init__(self,
                 database: Database,
                 registry: MonitorRegistry,
                 dedup: DedupStore,
                 notifications: NotificationEmitter,
                 dispatcher: EventDispatcher,
                 search,
                 llm,
                 config: SchedulerConfig,
                 is_leader: Union[bool, Callable[[], bool]] = False):
        """
        Initialize the scheduler.

        Args:
            database: Relational store
            registry: Monitor registry used to select and advance monitors
            dedup: Fingerprints already surfaced per monitor
            notifications: Publishes the resulting feed posts
            dispatcher: Receives MonitorProducedPost events
            search: Object with ``run(engine, query, params) -> SearchResult``
            llm: Object with ``complete(messages, system_prompt=...) -> str``, or None
            config: SchedulerConfig instance
            is_leader: Leader flag, or a callable evaluated on start
        """
        self.database = database
        self.registry = registry
        self.dedup = dedup
        self.notifications = notifications
        self.dispatcher = dispatcher
        self.search = search
        self.llm = llm
        self.config = config
        self._is_leader = is_leader if callable(is_leader) else (lambda: bool(is_leader))

        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def is_leader(self) -> bool:
        return bool(self._is_leader())

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the tick loop in a background thread; a non-leader does nothing.

        Returns:
            True if the loop is running after the call
        """
        if not self.is_leader():
            logger.info('Not the leader process, monitor scheduler stays idle')
            return False
        if self.running:
            return True

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name='MonitorScheduler')
        self._thread.start()
        logger.info(f'Monitor scheduler started (interval={self.config.tick_interval_seconds}s, '
                    f'batch={self.config.batch_size})')
        return True

    def stop(self, timeout: float = SHUTDOWN_TIMEOUT_SEC) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning('Monitor scheduler did not stop cleanly')
            self._thread = None
        logger.info('Monitor scheduler stopped')

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_tick()
            except Exception as e:
                logger.exception(f'Monitor tick failed: {e}')

            self._stop_event.wait(timeout=self.config.tick_interval_seconds)

    def run_tick(self, now: Optional[datetime] = None) -> List[RunOutcome]:
        """
        Run up to ``batch_size`` due monitors, one after another.

        A tick that starts while another is still running is skipped.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            One RunOutcome per monitor run
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.info('Previous monitor tick still running, skipping')
            return []

        try:
            now = now or utc_now()
            try:
                due = [m.id for m in self.registry.list_due(now=now, limit=self.config.batch_size)]
            except SQLAlchemyError as e:
                logger.error(f'Could not select due monitors: {e}')
                return []

            if due:
                logger.info(f'Running {len(due)} due monitor(s)')
            return [self.run_monitor(monitor_id, now) for monitor_id in due]
        finally:
            self._tick_lock.release()

    def run_monitor(self, monitor_id: str, now: datetime) -> RunOutcome:
        """Run one monitor; errors are recorded on the outcome and the schedule always advances."""
        outcome = RunOutcome(monitor_id=monitor_id)
        try:
            self._run(monitor_id, now, outcome)
        except Exception as e:
            logger.exception(f'Monitor {monitor_id} run failed: {e}')
            outcome.error = str(e)

        try:
            self.registry.record_run(monitor_id, now, failed=outcome.error is not None)
        except Exception as e:
            logger.error(f'Could not advance schedule of monitor {monitor_id}: {e}')
            outcome.error = outcome.error or str(e)
        return outcome

    def _run(self, monitor_id: str, now: datetime, outcome: RunOutcome) -> None:
        with self.database.session() as session:
            monitor = session.get(Monitor, monitor_id)
            if monitor is None or not monitor.enabled:
                logger.debug(f'Monitor {monitor_id} vanished or was disabled before running')
                return
            agent = session.get(Agent, monitor.agent_id)

        now_ms = to_millis(now)
        threshold_ms = to_millis(monitor.last_run_at or monitor.created_at)
        candidates = normalize_items(monitor.engine, self._fetch(monitor), now_ms)
        outcome.candidate_count = len(candidates)

        if monitor.last_run_at is None:
            with self.database.session() as session:
                added = self.dedup.mark_all_seen_in(session, monitor.id, [c.key for c in candidates])
            outcome.baseline = True
            logger.info(f'Monitor {monitor.id} baseline: {added} of {len(candidates)} item(s) recorded, nothing posted')
            return

        recent = [c for c in candidates if is_fresh_by_time(c, threshold_ms)]
        seen = self.dedup.seen_keys(monitor.id, [c.key for c in recent])
        fresh = freshest([c for c in recent if c.key not in seen], self.config.max_items_per_post)
        outcome.fresh_count = len(fresh)
        logger.info(f'Monitor {monitor.id}: {len(candidates)} candidate(s), {len(recent)} recent, '
                    f'{len(fresh)} fresh')
        if not fresh:
            return

        agent_name = agent.name if agent is not None else 'Your agent'
        preface = self._preface(agent, monitor, fresh)
        text = f'{preface}\n\n{format_items(fresh)}'

        # Post and seen-marks commit together
        with self.database.session() as session:
            post = self.notifications.create_post_in(session, ACTOR_AGENT, monitor.agent_id, text,
                                                     monitor.source_post_id)
            self.dedup.mark_all_seen_in(session, monitor.id, [item.key for item in fresh])
        outcome.posted_post_id = post.id
        self.notifications.broadcast(post_event(post))

        count = len(fresh)
        title = f'{agent_name} found {count} new update{"" if count == 1 else "s"} for "{monitor.query}"'
        self.dispatcher.dispatch(MonitorProducedPost(monitor_id=monitor.id,
                                                     agent_id=monitor.agent_id,
                                                     feed_post_id=post.id,
                                                     source_post_id=monitor.source_post_id,
                                                     title=title,
                                                     body=preface))
        logger.info(f'Monitor {monitor.id} posted {count} item(s) as {post.id}')

    def _fetch(self, monitor: Monitor) -> List[Dict[str, Any]]:
        """Search for the monitor's query; a failing search yields no items."""
        try:
            result = self.search.run(monitor.engine, monitor.query, engine_params(monitor.engine, monitor.params))
            return list(result.items or [])
        except Exception as e:
            logger.warning(f'Search failed for monitor {monitor.id} ({monitor.engine} "{monitor.query}"): {e}')
            return []

    def _preface(self, agent: Optional[Agent], monitor: Monitor, items: List[MonitorItem]) -> str:
        fallback = templated_preface(len(items), monitor.query)
        if self.llm is None or agent is None:
            return fallback

        system_prompt = (agent.instructions or '').strip() or f'You are {agent.name}, a helpful assistant.'
        prompt = PREFACE_PROMPT.format(count=len(items),
                                       query=monitor.query,
                                       titles='\n'.join(f'- {item.title}' for item in items[:PREFACE_TITLES]))
        try:
            text = self.llm.complete(messages=[{'role': 'user', 'content': prompt}], system_prompt=system_prompt)
        except Exception as e:
            logger.warning(f'Preface generation failed for monitor {monitor.id}, using template: {e}')
            return fallback
        return clean_text_response(text) or fallback
