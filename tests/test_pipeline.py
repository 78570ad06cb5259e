"""Tests for the per-topic curation state machine (pipeline.PipelineRunner)."""

from __future__ import annotations

import threading
from datetime import date
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from csv_store import paper_store, topic_store
from models import FetchStatus, Paper, Topic
from pipeline import ERROR_MESSAGE, PipelineCoordinator, PipelineRunner
from repository import PaperRepository

_TOPIC = Topic(id="topic-1", title="Efficient attention", search_prompt="fast transformer attention")
_OTHER = Topic(id="topic-2", title="Offline RL", search_prompt="offline reinforcement learning")


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _paper(paper_id: str, topic_id: str = "topic-1", published: str = "2024-01-01") -> Paper:
    return Paper(
        id=paper_id,
        topic_id=topic_id,
        title=f"Paper {paper_id}",
        authors=("Ada Lovelace",),
        published_date=date.fromisoformat(published),
        url=f"https://arxiv.org/abs/{paper_id}",
        summary="summary",
        abstract="abstract",
        engagement_score=70,
    )


@pytest.fixture
def repository(tmp_path: Path) -> PaperRepository:
    repo = PaperRepository(topic_store(tmp_path), paper_store(tmp_path))
    repo.save_topic(_TOPIC)
    repo.save_topic(_OTHER)
    return repo


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def _runner(repository, search, curate, clock, topic_id: str = "topic-1") -> PipelineRunner:
    return PipelineRunner(topic_id, repository, search=search, curate_fn=curate, clock=clock, reset_after=5)


def test_successful_run_merges_and_completes(repository, clock) -> None:
    search = MagicMock(return_value="report")
    curate = MagicMock(return_value=[_paper("a"), _paper("b", published="2024-02-01")])
    runner = _runner(repository, search, curate, clock)

    assert runner.state is FetchStatus.IDLE
    assert runner.run() is FetchStatus.COMPLETE

    search.assert_called_once_with("fast transformer attention")
    curate.assert_called_once_with("topic-1", "report")
    assert [p.id for p in repository.papers()] == ["b", "a"]
    assert repository.get_topic("topic-1").last_updated is not None


def test_states_observed_during_run(repository, clock) -> None:
    seen: list[tuple[FetchStatus, str]] = []
    runner: PipelineRunner

    def search(prompt: str) -> str:
        seen.append((runner.state, runner.message))
        return "report"

    def curate(topic_id: str, report: str) -> list[Paper]:
        seen.append((runner.state, runner.message))
        return [_paper("a")]

    runner = _runner(repository, search, curate, clock)
    runner.run()

    assert seen == [
        (FetchStatus.SEARCHING, 'Scanning latest papers for "Efficient attention"...'),
        (FetchStatus.ANALYZING, "Analyzing relevance & impact..."),
    ]


def test_second_run_while_searching_is_ignored(repository, clock) -> None:
    calls = []
    nested = []
    runner: PipelineRunner

    def search(prompt: str) -> str:
        calls.append(prompt)
        nested.append(runner.run())
        return "report"

    runner = _runner(repository, search, MagicMock(return_value=[]), clock)

    assert runner.run() is FetchStatus.COMPLETE
    assert nested == [FetchStatus.SEARCHING]
    assert len(calls) == 1


def test_second_run_while_analyzing_is_ignored(repository, clock) -> None:
    search = MagicMock(return_value="report")
    nested = []
    runner: PipelineRunner

    def curate(topic_id: str, report: str) -> list[Paper]:
        nested.append(runner.run())
        return []

    runner = _runner(repository, search, curate, clock)

    assert runner.run() is FetchStatus.COMPLETE
    assert nested == [FetchStatus.ANALYZING]

    search.assert_called_once()


def test_single_flight_across_threads(repository, clock) -> None:
    entered = threading.Event()
    release = threading.Event()
    search = MagicMock(side_effect=lambda prompt: (entered.set(), release.wait(5), "report")[-1])
    runner = _runner(repository, search, MagicMock(return_value=[]), clock)

    worker = threading.Thread(target=runner.run)
    worker.start()
    assert entered.wait(5)

    assert runner.run() is FetchStatus.SEARCHING
    release.set()
    worker.join(5)

    assert search.call_count == 1
    assert runner.state is FetchStatus.COMPLETE


def test_zero_candidates_completes_without_changes(repository, clock) -> None:
    repository.merge_and_persist([_paper("existing")])
    before = repository.papers()

    with patch.object(repository, "merge_and_persist") as mock_merge:
        runner = _runner(repository, MagicMock(return_value="report"), MagicMock(return_value=[]), clock)
        assert runner.run() is FetchStatus.COMPLETE

    mock_merge.assert_not_called()
    assert repository.papers() == before
    assert repository.get_topic("topic-1").last_updated is None


@pytest.mark.parametrize("failing_stage", ["search", "curate"])
def test_failure_enters_error_then_auto_resets(repository, clock, failing_stage: str) -> None:
    search = MagicMock(return_value="report")
    curate = MagicMock(return_value=[_paper("a")])
    if failing_stage == "search":
        search.side_effect = RuntimeError("Perplexity search failed: 401")
    else:
        curate.side_effect = RuntimeError("OpenAI extraction failed: timeout")
    runner = _runner(repository, search, curate, clock)

    assert runner.run() is FetchStatus.ERROR
    assert runner.message == ERROR_MESSAGE
    assert repository.papers() == []

    clock.advance(4.9)
    assert runner.state is FetchStatus.ERROR

    clock.advance(0.2)
    assert runner.state is FetchStatus.IDLE
    assert runner.message == ""
    assert repository.papers() == []


def test_run_allowed_again_from_error(repository, clock) -> None:
    search = MagicMock(side_effect=[RuntimeError("boom"), "report"])
    runner = _runner(repository, search, MagicMock(return_value=[_paper("a")]), clock)

    assert runner.run() is FetchStatus.ERROR
    assert runner.run() is FetchStatus.COMPLETE
    assert [p.id for p in repository.papers()] == ["a"]


def test_run_allowed_again_from_complete(repository, clock) -> None:
    search = MagicMock(return_value="report")
    runner = _runner(repository, search, MagicMock(return_value=[]), clock)

    runner.run()
    runner.run()

    assert search.call_count == 2


def test_persistence_failure_is_fatal_to_run(repository, clock) -> None:
    runner = _runner(repository, MagicMock(return_value="report"), MagicMock(return_value=[_paper("a")]), clock)

    with patch.object(repository._paper_store, "put_many", side_effect=OSError("disk full")):
        assert runner.run() is FetchStatus.ERROR

    assert repository.papers() == []


def test_run_for_topic_deleted_midflight_does_not_resurrect(repository, clock) -> None:
    def search(prompt: str) -> str:
        repository.delete_topic("topic-1")
        return "report"

    runner = _runner(repository, search, MagicMock(return_value=[_paper("a")]), clock)

    assert runner.run() is FetchStatus.COMPLETE
    assert repository.papers() == []
    assert repository.get_topic("topic-1") is None


def test_run_for_unknown_topic_is_noop(repository, clock) -> None:
    search = MagicMock()
    runner = _runner(repository, search, MagicMock(), clock, topic_id="missing")

    assert runner.run() is FetchStatus.IDLE
    search.assert_not_called()


def test_touch_failure_does_not_fail_run(repository, clock) -> None:
    runner = _runner(repository, MagicMock(return_value="report"), MagicMock(return_value=[_paper("a")]), clock)

    with patch.object(repository, "touch_topic", side_effect=OSError("read-only")):
        assert runner.run() is FetchStatus.COMPLETE

    assert [p.id for p in repository.papers()] == ["a"]


def test_coordinator_keeps_one_runner_per_topic(repository, clock) -> None:
    coordinator = PipelineCoordinator(repository, search=MagicMock(), curate_fn=MagicMock(), clock=clock)

    assert coordinator.runner("topic-1") is coordinator.runner("topic-1")
    assert coordinator.runner("topic-1") is not coordinator.runner("topic-2")


def test_topics_do_not_share_the_guard(repository, clock) -> None:
    coordinator: PipelineCoordinator
    observed = {}

    def search(prompt: str) -> str:
        if prompt == _TOPIC.search_prompt:
            observed["other"] = coordinator.refresh("topic-2")
            observed["self"] = coordinator.refresh("topic-1")
        return prompt

    def curate(topic_id: str, report: str) -> list[Paper]:
        return [_paper(f"{topic_id}-paper", topic_id=topic_id)]

    coordinator = PipelineCoordinator(repository, search=search, curate_fn=curate, clock=clock, reset_after=5)

    assert coordinator.refresh("topic-1") is FetchStatus.COMPLETE
    assert observed == {"other": FetchStatus.COMPLETE, "self": FetchStatus.SEARCHING}
    assert {p.id for p in repository.papers()} == {"topic-1-paper", "topic-2-paper"}


def test_refresh_all_runs_every_topic(repository, clock) -> None:
    def curate(topic_id: str, report: str) -> list[Paper]:
        return [_paper(f"{topic_id}-{i}", topic_id=topic_id) for i in range(3)]

    search = MagicMock(side_effect=lambda prompt: prompt)
    coordinator = PipelineCoordinator(repository, search=search, curate_fn=curate, clock=clock)

    results = coordinator.refresh_all(workers=2)

    assert results == {"topic-1": FetchStatus.COMPLETE, "topic-2": FetchStatus.COMPLETE}
    assert len(repository.papers()) == 6
    assert len(repository.papers_for("topic-1")) == 3


def test_refresh_all_reports_failures_per_topic(repository, clock) -> None:
    def search(prompt: str) -> str:
        if prompt == _OTHER.search_prompt:
            raise RuntimeError("rate limited")
        return prompt

    coordinator = PipelineCoordinator(
        repository, search=search, curate_fn=MagicMock(return_value=[]), clock=clock
    )

    results = coordinator.refresh_all(workers=2)

    assert results == {"topic-1": FetchStatus.COMPLETE, "topic-2": FetchStatus.ERROR}
    assert coordinator.status("topic-2") == (FetchStatus.ERROR, ERROR_MESSAGE)


def test_forget_drops_idle_runner(repository, clock) -> None:
    coordinator = PipelineCoordinator(repository, search=MagicMock(), curate_fn=MagicMock(), clock=clock)
    first = coordinator.runner("topic-1")

    coordinator.forget("topic-1")

    assert coordinator.runner("topic-1") is not first
