"""Search → curate run coordination with a per-topic single-flight guard."""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable

from curation import curate
from models import FetchStatus, Paper
from perplexity_client import search_papers
from repository import PaperRepository

ERROR_RESET_SECONDS = float(os.getenv("ERROR_RESET_SECONDS", "5"))

SearchFn = Callable[[str], str]
CurateFn = Callable[[str, str], list[Paper]]

LOGGER = logging.getLogger(__name__)

_IN_FLIGHT: frozenset[FetchStatus] = frozenset({FetchStatus.SEARCHING, FetchStatus.ANALYZING})

ERROR_MESSAGE = "Update failed. Retrying later."
ANALYZING_MESSAGE = "Analyzing relevance & impact..."


class PipelineRunner:
    """State machine for repeated curation runs of one topic.

    idle → searching → analyzing → complete, with error reachable from
    searching/analyzing. An error reads as idle again once ``reset_after``
    seconds have passed on ``clock``. A run requested while searching or
    analyzing is ignored.
    """

    def __init__(
        self,
        topic_id: str,
        repository: PaperRepository,
        search: SearchFn | None = None,
        curate_fn: CurateFn | None = None,
        clock: Callable[[], float] = time.monotonic,
        reset_after: float | None = None,
    ) -> None:
        self.topic_id = topic_id
        self._repository = repository
        self._search = search or search_papers
        self._curate = curate_fn or curate
        self._clock = clock
        self._reset_after = ERROR_RESET_SECONDS if reset_after is None else reset_after
        self._lock = threading.Lock()
        self._state = FetchStatus.IDLE
        self._message = ""
        self._errored_at: float | None = None

    @property
    def state(self) -> FetchStatus:
        with self._lock:
            self._expire_error()
            return self._state

    @property
    def message(self) -> str:
        with self._lock:
            self._expire_error()
            return self._message

    @property
    def in_flight(self) -> bool:
        return self.state in _IN_FLIGHT

    def run(self) -> FetchStatus:
        """Execute one search → curate → merge cycle; returns the final state."""
        with self._lock:
            self._expire_error()
            if self._state in _IN_FLIGHT:
                LOGGER.info("Run already in flight for topic_id=%s (%s); ignoring", self.topic_id, self._state.value)
                return self._state

            topic = self._repository.get_topic(self.topic_id)
            if topic is None:
                LOGGER.warning("Refresh requested for unknown topic_id=%s", self.topic_id)
                return self._state

            self._set(FetchStatus.SEARCHING, f'Scanning latest papers for "{topic.title}"...')

        try:
            report = self._search(topic.search_prompt)

            with self._lock:
                self._set(FetchStatus.ANALYZING, ANALYZING_MESSAGE)

            candidates = self._curate(topic.id, report)
            if not candidates:
                LOGGER.info("No new candidates for topic_id=%s", topic.id)
                return self._finish("No new papers found")

            accepted = self._repository.merge_and_persist(candidates)
            if accepted:
                self._touch(topic.id)
            else:
                LOGGER.warning(
                    "Topic topic_id=%s was deleted during the run; discarded %s candidates",
                    topic.id,
                    len(candidates),
                )
            return self._finish(f"Updated {accepted} papers")
        except Exception as exc:  # broad by design: any stage failure backs off
            LOGGER.exception("Curation run failed for topic_id=%s: %s", topic.id, exc)
            with self._lock:
                self._set(FetchStatus.ERROR, ERROR_MESSAGE)
                self._errored_at = self._clock()
                return self._state

    def _finish(self, message: str = "") -> FetchStatus:
        with self._lock:
            self._set(FetchStatus.COMPLETE, message)
            return self._state

    def _touch(self, topic_id: str) -> None:
        try:
            self._repository.touch_topic(topic_id)
        except Exception as exc:
            LOGGER.warning("Could not stamp last_updated for topic_id=%s (non-fatal): %s", topic_id, exc)

    def _set(self, state: FetchStatus, message: str) -> None:
        LOGGER.debug("topic_id=%s %s -> %s", self.topic_id, self._state.value, state.value)
        self._state = state
        self._message = message
        if state is not FetchStatus.ERROR:
            self._errored_at = None

    def _expire_error(self) -> None:
        if self._state is not FetchStatus.ERROR or self._errored_at is None:
            return
        if self._clock() - self._errored_at >= self._reset_after:
            LOGGER.info("Error backoff elapsed for topic_id=%s; back to idle", self.topic_id)
            self._set(FetchStatus.IDLE, "")


class PipelineCoordinator:
    """One PipelineRunner per topic, so topics never block each other."""

    def __init__(
        self,
        repository: PaperRepository,
        search: SearchFn | None = None,
        curate_fn: CurateFn | None = None,
        clock: Callable[[], float] = time.monotonic,
        reset_after: float | None = None,
    ) -> None:
        self._repository = repository
        self._search = search
        self._curate = curate_fn
        self._clock = clock
        self._reset_after = reset_after
        self._runners: dict[str, PipelineRunner] = {}
        self._lock = threading.Lock()

    def runner(self, topic_id: str) -> PipelineRunner:
        with self._lock:
            runner = self._runners.get(topic_id)
            if runner is None:
                runner = PipelineRunner(
                    topic_id,
                    self._repository,
                    search=self._search,
                    curate_fn=self._curate,
                    clock=self._clock,
                    reset_after=self._reset_after,
                )
                self._runners[topic_id] = runner
            return runner

    def refresh(self, topic_id: str) -> FetchStatus:
        return self.runner(topic_id).run()

    def refresh_all(self, workers: int = 4) -> dict[str, FetchStatus]:
        """Refresh every topic concurrently; returns the final state per topic."""
        topic_ids = [topic.id for topic in self._repository.topics()]
        results: dict[str, FetchStatus] = {}
        if not topic_ids:
            return results

        with ThreadPoolExecutor(max_workers=max(1, workers)) as ex:
            future_to_topic = {ex.submit(self.refresh, topic_id): topic_id for topic_id in topic_ids}
            for fut in as_completed(future_to_topic):
                results[future_to_topic[fut]] = fut.result()
        return results

    def status(self, topic_id: str) -> tuple[FetchStatus, str]:
        runner = self.runner(topic_id)
        return runner.state, runner.message

    def forget(self, topic_id: str) -> None:
        """Drop the runner of a deleted topic unless a run is still in flight."""
        with self._lock:
            runner = self._runners.get(topic_id)
            if runner is not None and not runner.in_flight:
                del self._runners[topic_id]
