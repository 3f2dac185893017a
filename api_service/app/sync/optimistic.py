"""
The optimistic mutation wrapper every client-side write goes through.

1. snapshot the slice of local state it touches and mark the key in flight
2. apply the tentative edit so the UI updates immediately
3. call the server
4. success: reconcile local state with the canonical response
   failure: roll back (snapshot restore or a custom refetch) and surface a
   short notice; if other mutations settled meanwhile, resync from the server
5. always clear the in-flight flag
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Hashable, Iterable, Optional

import httpx
import structlog

from app.errors import Conflict, InvalidReorder, InvalidTransition, NotFound, ShelfError
from app.sync.state import LocalShelfState, LocalSnapshot, PendingMutations

logger = structlog.get_logger()

NoticeHandler = Callable[[str], None]

_NOTICES: dict[type[ShelfError], str] = {
    NotFound: "That book is no longer on your shelves.",
    InvalidTransition: "That change isn't possible for this book.",
    InvalidReorder: "Your queue changed elsewhere. We've refreshed it.",
    Conflict: "Your shelves were updated elsewhere. Please try again.",
}
GENERIC_NOTICE = "Something went wrong. Your change was not saved."
OFFLINE_NOTICE = "Couldn't reach the server. Your change was not saved."


def notice_for(exc: BaseException) -> str:
    """A short, non-technical message for a failed mutation."""
    if isinstance(exc, ShelfError):
        return _NOTICES.get(type(exc), GENERIC_NOTICE)
    if isinstance(exc, httpx.TransportError):
        return OFFLINE_NOTICE
    return GENERIC_NOTICE


@dataclass
class MutationOutcome:
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None
    notice: Optional[str] = None


class OptimisticMutation:
    def __init__(
        self,
        state: LocalShelfState,
        pending: PendingMutations,
        on_notice: Optional[NoticeHandler] = None,
        resync: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.state = state
        self.pending = pending
        self.on_notice = on_notice
        self.resync = resync

    def _notify(self, message: Optional[str]) -> None:
        if message and self.on_notice is not None:
            self.on_notice(message)

    async def _resync(self) -> None:
        if self.resync is None:
            self.state.stale = True
            return
        try:
            await self.resync()
        except (ShelfError, httpx.HTTPError) as e:
            logger.warning("optimistic_resync_failed", error=str(e))
            self.state.stale = True

    async def _rollback(
        self,
        snapshot: LocalSnapshot,
        rollback: Optional[Callable[[LocalSnapshot], Awaitable[None]]],
        interleaved: bool,
    ) -> None:
        if rollback is None:
            self.state.restore(snapshot)
            if interleaved:
                # others settled on top of our snapshot; only the server knows the result
                await self._resync()
            return
        try:
            await rollback(snapshot)
        except (ShelfError, httpx.HTTPError) as e:
            # the refetch failed too; fall back to what we had and flag it
            logger.warning("optimistic_rollback_refetch_failed", error=str(e))
            self.state.restore(snapshot)
            self.state.stale = True

    async def run(
        self,
        key: Hashable,
        *,
        apply: Callable[[], None],
        call: Callable[[], Awaitable[Any]],
        reconcile: Optional[Callable[[Any], None]] = None,
        rollback: Optional[Callable[[LocalSnapshot], Awaitable[None]]] = None,
        success_notice: Optional[str] = None,
        records: Iterable[int] = (),
        favorites: Iterable[int] = (),
        queue: bool = False,
    ) -> MutationOutcome:
        """
        `records`, `favorites` and `queue` name the slice of local state the
        mutation touches; only that slice is snapshotted and restored.
        """
        snapshot = self.state.snapshot(records, favorites, queue)
        settled = self.state.settled
        self.pending.begin(key)
        message = None
        try:
            try:
                apply()
            except ShelfError as e:
                # rejected locally by the same rules the server applies
                self.state.restore(snapshot)
                message = notice_for(e)
                self._notify(message)
                return MutationOutcome(ok=False, error=e, notice=message)

            try:
                value = await call()
            except (ShelfError, httpx.HTTPError) as e:
                self.state.settled += 1
                await self._rollback(snapshot, rollback, self.state.settled != settled + 1)
                message = notice_for(e)
                logger.info(
                    "optimistic_mutation_rolled_back",
                    key=key,
                    error=getattr(e, "code", type(e).__name__),
                )
                self._notify(message)
                return MutationOutcome(ok=False, error=e, notice=message)

            self.state.settled += 1
            if reconcile is not None:
                reconcile(value)
            message = success_notice
            self._notify(message)
            return MutationOutcome(ok=True, value=value, notice=message)
        except BaseException:
            # cancelled or a local bug; the server outcome is unknown
            self.state.restore(snapshot)
            self.state.stale = True
            raise
        finally:
            self.pending.finish(key, message)
