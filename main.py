"""CLI entrypoint for the daily paper curator."""

from __future__ import annotations

import argparse
import logging
import os
import sys

from dotenv import load_dotenv

from csv_store import paper_store, topic_store
from models import FetchStatus, edit_topic, new_topic
from pipeline import PipelineCoordinator
from repository import PaperRepository
from timeline import project, render_timeline


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Curate a daily timeline of research papers per topic")
    parser.add_argument("--data-dir", default=None, help="Directory holding topics.csv and papers.csv")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add-topic", help="Create a topic")
    add.add_argument("--title", required=True)
    add.add_argument("--prompt", required=True, help="Natural-language search prompt")

    edit = sub.add_parser("edit-topic", help="Change a topic's title or prompt")
    edit.add_argument("topic_id")
    edit.add_argument("--title", default=None)
    edit.add_argument("--prompt", default=None)

    delete = sub.add_parser("delete-topic", help="Delete a topic and all of its papers")
    delete.add_argument("topic_id")

    sub.add_parser("list-topics", help="List topics")

    refresh = sub.add_parser("refresh", help="Search and curate new papers")
    refresh.add_argument("topic_id", nargs="?", default=None)
    refresh.add_argument("--all", action="store_true", help="Refresh every topic")
    refresh.add_argument(
        "--workers",
        type=int,
        default=int(os.getenv("REFRESH_WORKERS", "4")),
        help="Concurrent topic refreshes with --all",
    )
    refresh.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print what would be refreshed, without API calls",
    )

    show = sub.add_parser("timeline", help="Print a topic's timeline")
    show.add_argument("topic_id")
    show.add_argument(
        "--abstracts",
        action="store_true",
        help="Include the English abstract and its Japanese translation",
    )

    return parser.parse_args(argv)


def build_repository(data_dir: str | None) -> PaperRepository:
    repository = PaperRepository(topic_store(data_dir), paper_store(data_dir))
    repository.load()
    return repository


def run(args: argparse.Namespace, repository: PaperRepository, coordinator: PipelineCoordinator) -> int:
    """Dispatch one CLI command; returns the process exit code."""
    if args.command == "add-topic":
        topic = new_topic(args.title, args.prompt)
        repository.save_topic(topic)
        print(topic.id)
        return 0

    if args.command == "list-topics":
        for topic in repository.topics():
            count = len(repository.papers_for(topic.id))
            print(f"{topic.id}\t{topic.title}\t{count} papers\tlast_updated={topic.last_updated or '-'}")
        return 0

    if args.command == "refresh" and args.all:
        topics = repository.topics()
        if args.dry_run:
            for topic in topics:
                logging.info("[dry-run] Would refresh: %s", topic.title)
            return 0
        results = coordinator.refresh_all(workers=args.workers)
        failed = [topic_id for topic_id, state in results.items() if state is FetchStatus.ERROR]
        logging.info("Refresh complete. topics=%s failed=%s", len(results), len(failed))
        return 1 if failed else 0

    topic_id = getattr(args, "topic_id", None)
    topic = repository.get_topic(topic_id) if topic_id else None
    if topic is None:
        logging.error("Unknown topic: %s", topic_id)
        return 2

    if args.command == "edit-topic":
        repository.save_topic(edit_topic(topic, title=args.title, search_prompt=args.prompt))
        return 0

    if args.command == "delete-topic":
        removed = repository.delete_topic(topic.id)
        coordinator.forget(topic.id)
        logging.info("Deleted topic %s and %s papers", topic.title, removed)
        return 0

    if args.command == "refresh":
        if args.dry_run:
            logging.info("[dry-run] Would refresh: %s", topic.title)
            return 0
        state = coordinator.refresh(topic.id)
        _, message = coordinator.status(topic.id)
        logging.info("Refresh %s: %s", state.value, message)
        return 1 if state is FetchStatus.ERROR else 0

    print(render_timeline(project(repository.papers(), topic.id), abstracts=args.abstracts), end="")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Initialize config and execute one command."""
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    repository = build_repository(args.data_dir)
    coordinator = PipelineCoordinator(repository)

    try:
        return run(args, repository, coordinator)
    except ValueError as exc:
        logging.error("Invalid input: %s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
