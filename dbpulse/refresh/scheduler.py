"""
Live-refresh subscriptions on an asyncio event loop.

A subscription repeatedly calls an async fetch function for one subject key
(usually a server id) and republishes the outcome as a
:class:`RefreshSnapshot`.  The next timer is armed only after the previous
fetch has settled, so at most one fetch per subscription is ever in flight and
the effective period is ``max(interval, fetch duration)``.

Nothing is cancelled mid-flight.  Disposing a handle (or switching it to a
new subject key) only detaches it: a fetch that is still running resolves into
a dead handle and its result is dropped.

States::

    IDLE -> PENDING -> SETTLED -> (enabled) PENDING -> ...
    any  -> DISABLED -> (re-enabled) PENDING
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Hashable, List, Mapping, Optional, Set, Union

from dbpulse.core.errors import SchedulerMisuseError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 5000

FetchFn = Callable[[Hashable], Awaitable[Any]]


class RefreshState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SETTLED = "settled"
    DISABLED = "disabled"


@dataclass(frozen=True)
class RefreshOptions:
    """``interval_ms == 0`` keeps the subscription manual-only (``refetch_now``)."""

    interval_ms: int = DEFAULT_INTERVAL_MS
    enabled: bool = True

    def __post_init__(self):
        if self.interval_ms < 0:
            raise ValueError(f"interval_ms must be >= 0, got {self.interval_ms}")


@dataclass(frozen=True)
class RefreshSnapshot:
    """What a view renders: latest data, latest error, whether a fetch is pending."""

    subject_key: Hashable
    data: Any = None
    error: Optional[BaseException] = None
    is_loading: bool = False
    state: RefreshState = RefreshState.IDLE
    enabled: bool = True


Listener = Callable[[RefreshSnapshot], None]


def _current_loop(action: str) -> asyncio.AbstractEventLoop:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        raise SchedulerMisuseError(f"{action} must be called from a running event loop") from None


class RefreshHandle:
    """One subscription.  Owned and mutated by the scheduler only; views read it."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        subject_key: Hashable,
        fetch_fn: FetchFn,
        options: RefreshOptions,
        listeners: Optional[List[Listener]] = None,
    ):
        self._loop = loop
        self._subject_key = subject_key
        self._fetch_fn = fetch_fn
        self._options = options
        self._listeners: List[Listener] = list(listeners or [])
        self._enabled = options.enabled
        self._state = RefreshState.IDLE if options.enabled else RefreshState.DISABLED
        self._data: Any = None
        self._error: Optional[BaseException] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._inflight: Optional[asyncio.Future] = None
        self._disposed = False
        self.fetch_count = 0

    def __repr__(self):
        return f"<RefreshHandle {self._subject_key!r} {self._state.value}{' disposed' if self._disposed else ''}>"

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def subject_key(self) -> Hashable:
        return self._subject_key

    @property
    def fetch_fn(self) -> FetchFn:
        return self._fetch_fn

    @property
    def options(self) -> RefreshOptions:
        return replace(self._options, enabled=self._enabled)

    @property
    def data(self) -> Any:
        return self._data

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def is_loading(self) -> bool:
        return self._inflight is not None

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def disposed(self) -> bool:
        return self._disposed

    def snapshot(self) -> RefreshSnapshot:
        return RefreshSnapshot(
            subject_key=self._subject_key,
            data=self._data,
            error=self._error,
            is_loading=self.is_loading,
            state=self._state,
            enabled=self._enabled,
        )

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def refetch_now(self) -> asyncio.Future:
        """
        Fetch immediately, outside the schedule.

        Returns a future that completes once the fetch has settled.  If a fetch
        is already pending, that fetch's future is returned instead of starting
        a second one.  Works while disabled; the schedule is not resumed.
        """
        self._check_loop("refetch_now()")
        if self._disposed:
            raise SchedulerMisuseError(f"refetch_now() on disposed subscription {self._subject_key!r}")
        if self._inflight is not None:
            return self._inflight
        self._cancel_timer()
        return self._issue()

    def set_enabled(self, enabled: bool) -> None:
        self._check_loop("set_enabled()")
        if self._disposed or enabled == self._enabled:
            return
        self._enabled = enabled

        if not enabled:
            self._cancel_timer()
            # an in-flight fetch still settles and is applied, it just won't re-arm
            if self._inflight is None:
                self._state = RefreshState.DISABLED
                self._publish()
            return

        if self._inflight is None:
            self._issue()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._cancel_timer()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_loop(self, action: str) -> None:
        if _current_loop(action) is not self._loop:
            raise SchedulerMisuseError(f"{action} called from a different event loop than the subscription's")

    def _issue(self) -> asyncio.Future:
        try:
            awaitable = self._fetch_fn(self._subject_key)
        except Exception as exc:
            awaitable = self._loop.create_future()
            awaitable.set_exception(exc)

        if not inspect.isawaitable(awaitable):
            raise SchedulerMisuseError(
                f"fetch function for {self._subject_key!r} returned {type(awaitable).__name__}, expected an awaitable"
            )

        self.fetch_count += 1
        self._state = RefreshState.PENDING
        self._inflight = self._loop.create_task(self._settle(awaitable))
        self._publish()
        return self._inflight

    async def _settle(self, awaitable: Awaitable[Any]) -> None:
        try:
            data = await awaitable
        except asyncio.CancelledError as exc:
            # a fetch that was cancelled counts as a failure; the schedule keeps going
            self._apply(error=exc)
            if asyncio.current_task().cancelling():
                raise
        except Exception as exc:
            self._apply(error=exc)
        else:
            self._apply(data=data, ok=True)

    def _apply(self, data: Any = None, error: Optional[BaseException] = None, ok: bool = False) -> None:
        self._inflight = None
        if self._disposed:
            logger.debug("Discarding late result for abandoned subscription %r", self._subject_key)
            return

        if ok:
            self._data = data
            self._error = None
        else:
            logger.debug("Fetch for %r failed: %s", self._subject_key, error)
            self._error = error

        self._state = RefreshState.SETTLED if self._enabled else RefreshState.DISABLED
        self._publish()
        self._arm()

    def _arm(self) -> None:
        if self._disposed or not self._enabled or self._options.interval_ms == 0 or self._timer is not None:
            return
        self._timer = self._loop.call_later(self._options.interval_ms / 1000, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if self._disposed or not self._enabled or self._inflight is not None:
            return
        self._issue()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.error("Refresh listener failed for %r", self._subject_key, exc_info=True)


class RefreshScheduler:
    """
    Creates and tears down :class:`RefreshHandle` objects.

    The scheduler binds to the event loop of its first ``start()`` call (or the
    one passed in); all handle operations must happen on that loop.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._handles: Set[RefreshHandle] = set()

    @property
    def handles(self) -> Set[RefreshHandle]:
        return set(self._handles)

    def start(
        self,
        subject_key: Hashable,
        fetch_fn: FetchFn,
        options: Union[RefreshOptions, Mapping[str, Any], None] = None,
        *,
        on_update: Optional[Listener] = None,
    ) -> RefreshHandle:
        loop = _current_loop("RefreshScheduler.start()")
        if self._loop is None:
            self._loop = loop
        elif loop is not self._loop:
            raise SchedulerMisuseError("RefreshScheduler used from a different event loop")

        if not callable(fetch_fn):
            raise SchedulerMisuseError(f"fetch_fn must be callable, got {fetch_fn!r}")
        if options is None:
            options = RefreshOptions()
        elif not isinstance(options, RefreshOptions):
            options = RefreshOptions(**options)

        return self._start(loop, subject_key, fetch_fn, options, [on_update] if on_update else [])

    def _start(self, loop, subject_key, fetch_fn, options, listeners) -> RefreshHandle:
        handle = RefreshHandle(loop, subject_key, fetch_fn, options, listeners)
        self._handles.add(handle)
        if options.enabled:
            try:
                handle._issue()
            except SchedulerMisuseError:
                self.dispose(handle)
                raise
        return handle

    def set_enabled(self, handle: RefreshHandle, enabled: bool) -> None:
        handle.set_enabled(enabled)

    def dispose(self, handle: RefreshHandle) -> None:
        handle.dispose()
        self._handles.discard(handle)

    def switch_subject(
        self,
        handle: RefreshHandle,
        subject_key: Hashable,
        fetch_fn: Optional[FetchFn] = None,
    ) -> RefreshHandle:
        """
        Abandon *handle* and start a fresh subscription for *subject_key*.

        Options and listeners carry over.  The old handle's pending fetch, if
        any, is left to resolve into the disposed handle.
        """
        if handle.disposed:
            raise SchedulerMisuseError(f"switch_subject() on disposed subscription {handle.subject_key!r}")
        if subject_key == handle.subject_key and fetch_fn is None:
            return handle

        listeners = list(handle._listeners)
        options = handle.options
        fetch_fn = fetch_fn or handle.fetch_fn
        self.dispose(handle)

        return self._start(handle._loop, subject_key, fetch_fn, options, listeners)

    def dispose_all(self) -> None:
        for handle in list(self._handles):
            self.dispose(handle)
