#!/usr/bin/env python3
"""
Vixora CLI - run workers and maintenance jobs, inspect processing.
"""

import argparse
import asyncio
import logging
import sys

import httpx
from rich.console import Console
from rich.table import Table

from api.errors import truncate_error
from config import (
    API_BASE_URL,
    CLEANUP_BATCH_LIMIT,
    DEFAULT_API_TIMEOUT,
    ERROR_DETAIL_MAX_LENGTH,
    ERROR_SUMMARY_MAX_LENGTH,
    LOG_LEVEL,
    WORKER_CONCURRENCY,
)

API_BASE = f"{API_BASE_URL}/api/v1"

console = Console()


class CLIError(Exception):
    """Custom exception for CLI errors."""

    pass


def positive_int(value: str) -> int:
    """Argparse type converter that validates positive integers."""
    i = int(value)
    if i <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {i}")
    return i


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def safe_json_response(response, default_error="Request failed"):
    """
    Safely parse JSON response with proper error handling.

    Raises:
        CLIError: If response status is not successful or JSON parsing fails
    """
    if not response.is_success:
        try:
            detail = response.json().get("detail", response.text)
        except (ValueError, httpx.ResponseNotRead):
            detail = truncate_error(response.text, ERROR_DETAIL_MAX_LENGTH) if response.text else default_error
        raise CLIError(f"API error ({response.status_code}): {detail}")

    try:
        return response.json()
    except (ValueError, httpx.ResponseNotRead):
        raise CLIError(f"Invalid JSON response: {truncate_error(response.text, ERROR_SUMMARY_MAX_LENGTH)}")


def _user_headers(args) -> dict:
    user = getattr(args, "user", None)
    return {"X-User-Id": user} if user else {}


def _call_api(method: str, url: str, **kwargs):
    """Run one API request, turning transport errors into CLIError."""
    try:
        return safe_json_response(httpx.request(method, url, timeout=DEFAULT_API_TIMEOUT, **kwargs))
    except httpx.ConnectError:
        raise CLIError(f"Could not connect to API at {API_BASE_URL}")
    except httpx.TimeoutException:
        raise CLIError(f"Request timed out while connecting to {API_BASE_URL}")


def cmd_worker(args):
    """Run a standalone processing worker until SIGTERM/SIGINT."""
    from worker.video_worker import run_worker

    configure_logging()
    sys.exit(asyncio.run(run_worker(concurrency=args.concurrency)))


async def _run_cleanup(batch_limit: int) -> dict:
    from api.services import AppServices
    from worker.cleanup import purge_expired_videos

    services = await AppServices.create(queue_enabled=False)
    try:
        return await purge_expired_videos(services.store, services.assets, batch_limit=batch_limit)
    finally:
        await services.close()


def cmd_cleanup(args):
    """Purge soft-deleted videos past their restore window."""
    configure_logging()
    stats = asyncio.run(_run_cleanup(args.limit))
    print(
        f"Purged {stats['purged']} of {stats['found']} expired videos "
        f"({stats['failed']} failed, {stats['asset_failures']} asset deletions failed)"
    )
    if stats["failed"]:
        sys.exit(1)


def render_queue_stats(queue: dict) -> Table:
    table = Table(title=f"Queue {queue.get('name', '')} ({queue.get('backend', 'unknown')})")
    table.add_column("State")
    table.add_column("Jobs", justify="right")
    for state, count in (queue.get("counts") or {}).items():
        table.add_row(state, str(count))
    for priority, count in (queue.get("priorities") or {}).items():
        table.add_row(f"queued ({priority})", str(count))
    return table


def cmd_queue_stats(args):
    """Show processing queue counts as reported by the API."""
    try:
        health = _call_api("GET", f"{API_BASE_URL}/health")
    except CLIError as e:
        print(f"Error: {e}")
        sys.exit(1)

    queue = health.get("queue")
    if not queue:
        print("Job queue is disabled on the server; new videos stay PENDING.")
        return
    if not queue.get("available"):
        print("Job queue backend is currently unreachable.")
        sys.exit(1)

    console.print(render_queue_stats(queue))
    if health.get("worker"):
        print(f"In-process worker pool: {health['worker']}")


def cmd_status(args):
    """Show processing status for one video."""
    try:
        data = _call_api("GET", f"{API_BASE}/videos/{args.video_id}/processing-status")["data"]
    except CLIError as e:
        print(f"Error: {e}")
        sys.exit(1)

    table = Table(title=f"Video {args.video_id}", show_header=False)
    table.add_column("Field")
    table.add_column("Value")
    for key in (
        "processingStatus",
        "processingProgress",
        "processingStep",
        "processingError",
        "processingStartedAt",
        "processingCompletedAt",
        "isHlsReady",
        "isPublished",
    ):
        value = data.get(key)
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


def cmd_cancel(args):
    """Cancel processing of a video (as its owner)."""
    try:
        data = _call_api(
            "PATCH", f"{API_BASE}/videos/{args.video_id}/cancel-processing", headers=_user_headers(args)
        )["data"]
    except CLIError as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(f"Video {args.video_id}: {data['processingStatus']}")


def main():
    parser = argparse.ArgumentParser(prog="vixora", description="Vixora CLI - video processing pipeline")
    subparsers = parser.add_subparsers(dest="command", required=True)

    worker_parser = subparsers.add_parser("worker", help="Run a processing worker")
    worker_parser.add_argument(
        "-c", "--concurrency", type=positive_int, default=WORKER_CONCURRENCY, help="Concurrent jobs"
    )
    worker_parser.set_defaults(func=cmd_worker)

    cleanup_parser = subparsers.add_parser("cleanup", help="Purge expired soft-deleted videos")
    cleanup_parser.add_argument(
        "-l", "--limit", type=positive_int, default=CLEANUP_BATCH_LIMIT, help="Max videos per run"
    )
    cleanup_parser.set_defaults(func=cmd_cleanup)

    stats_parser = subparsers.add_parser("queue-stats", help="Show processing queue counts")
    stats_parser.set_defaults(func=cmd_queue_stats)

    status_parser = subparsers.add_parser("status", help="Show a video's processing status")
    status_parser.add_argument("video_id", help="Video ID")
    status_parser.set_defaults(func=cmd_status)

    cancel_parser = subparsers.add_parser("cancel", help="Cancel a video's processing")
    cancel_parser.add_argument("video_id", help="Video ID")
    cancel_parser.add_argument("-u", "--user", required=True, help="Owner user ID")
    cancel_parser.set_defaults(func=cmd_cancel)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
