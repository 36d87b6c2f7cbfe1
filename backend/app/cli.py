"""Support CLI for persisted onboarding wizard state.

Usage:
    python -m app.cli show-session <session_id>    # Print the cached wizard keys
    python -m app.cli clear-session <session_id>   # Delete them (user restarts the wizard)
    python -m app.cli list-sessions                # Session ids with cached state
"""

import asyncio
import sys

from app.config import settings
from app.services.wizard_cache import ALL_KEYS, WizardCache
from app.utils.store import RedisKeyValueStore, close_redis


async def show_session(session_id: str) -> None:
    cache = WizardCache(RedisKeyValueStore(), session_id)
    for name in ALL_KEYS:
        value = await cache.store.get(cache.key(name))
        print(f"  {name}: {value if value is not None else '(missing)'}")

    snapshot = await cache.load()
    if snapshot is not None:
        plan = snapshot.selected_plan.name if snapshot.selected_plan else "-"
        print(
            f"\n  plan={plan} cycle={snapshot.billing_cycle.value} "
            f"branches={snapshot.branch_count} addons={len(snapshot.selected_addons)}"
        )


async def clear_session(session_id: str) -> None:
    await WizardCache(RedisKeyValueStore(), session_id).clear()
    print(f"  Cleared session {session_id}")


async def list_sessions() -> None:
    store = RedisKeyValueStore()
    keys = await store.scan(f"{settings.wizard_key_prefix}:*")
    session_ids = sorted({key.split(":")[1] for key in keys if key.count(":") >= 2})
    for session_id in session_ids:
        print(f"  {session_id}")
    print(f"\n{len(session_ids)} session(s)")


async def _run(cmd: str, args: list[str]) -> int:
    try:
        if cmd == "list-sessions":
            await list_sessions()
        elif cmd in ("show-session", "clear-session") and args:
            handler = show_session if cmd == "show-session" else clear_session
            await handler(args[0])
        else:
            print(__doc__)
            return 1
        return 0
    finally:
        await close_redis()


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    sys.exit(asyncio.run(_run(cmd, sys.argv[2:])))
