"""Watch the project list through a live SyncContext and print every change.

Usage:
    uv run python -m scripts.sync_monitor <token> [key_segment ...]
Defaults to the project list key (/api/projects). Uses SYNC_URL and
API_BASE_URL from settings. Ctrl+C to stop.
"""

import asyncio
import sys

from reelsync.client import AuthSession, QueryResult, SyncContext, make_key
from reelsync.core.constants import KEY_PROJECTS
from reelsync.shared.telemetry.logging import setup_logging


def _print_result(result: QueryResult) -> None:
    size = len(result.value) if isinstance(result.value, (list, dict)) else "-"
    error = f" error={result.error.message}" if result.error else ""
    print(f"[{result.state.value}] {result.key} items={size}{error}", flush=True)


async def main() -> None:
    """Activate sync, subscribe to one key and print until interrupted."""
    if len(sys.argv) < 2:
        print(
            "Usage: uv run python -m scripts.sync_monitor <token> [key_segment ...]",
            file=sys.stderr,
        )
        sys.exit(1)
    setup_logging()
    token = sys.argv[1]
    key = make_key(*(sys.argv[2:] or [KEY_PROJECTS]))

    context = SyncContext()
    await context.activate(AuthSession(user_id="sync-monitor", token=token))
    context.transport.on_status(lambda status: print(f"transport: {status.value}", flush=True))
    subscription = context.cache.subscribe(key, _print_result)
    try:
        await asyncio.Event().wait()
    finally:
        subscription.unsubscribe()
        await context.deactivate()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
