"""
Live push channel between Socket.IO clients and the refresh scheduler.

Flask-SocketIO handlers run on request threads; the scheduler lives on an
asyncio loop owned by :class:`LiveHub` on a daemon thread.  Handlers hand
commands to that loop with :meth:`LiveHub.run` and every state change comes
back to the subscribing client as a ``metrics_update`` event.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set, Tuple

from dbpulse.refresh import LatestRequestTracker, RefreshHandle, RefreshOptions, RefreshScheduler, RefreshSnapshot
from dbpulse.services.bridge import BackendBridge, metric_command

logger = logging.getLogger(__name__)

ChannelKey = Tuple[str, str]


@dataclass
class Channel:
    """One client subscription: which metric, how often, and its refresh handle."""

    sid: str
    name: str
    metric: str
    command: str
    kwargs: Dict[str, Any]
    interval_ms: int
    handle: Optional[RefreshHandle] = None


class LiveHub:
    def __init__(self, bridge: Optional[BackendBridge] = None, call_timeout: float = 10.0):
        self.bridge = bridge or BackendBridge()
        self.call_timeout = call_timeout
        self.default_interval_ms = 5000
        self._emit: Optional[Callable[..., Any]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self.scheduler: Optional[RefreshScheduler] = None
        self.channels: Dict[ChannelKey, Channel] = {}
        self.plans = LatestRequestTracker()
        self._tasks: Set[asyncio.Task] = set()

    def init_app(self, app, socketio) -> None:
        self._emit = socketio.emit
        self.call_timeout = app.config.get("HUB_CALL_TIMEOUT", self.call_timeout)
        self.default_interval_ms = app.config.get("REFRESH_INTERVAL_MS", self.default_interval_ms)

    @property
    def running(self) -> bool:
        return self._loop is not None and self._loop.is_running()

    # ------------------------------------------------------------------
    # Loop lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Spawn the event-loop daemon thread (idempotent)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._ready.clear()
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name="live-hub", daemon=True)
        self._thread.start()
        self._ready.wait(self.call_timeout)

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self.scheduler = RefreshScheduler(self._loop)
        self._loop.call_soon(self._ready.set)
        try:
            self._loop.run_forever()
        finally:
            self._loop.close()

    def stop(self) -> None:
        if not self.running:
            return
        self.run(self._dispose_everything)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(self.call_timeout)
        self._thread = None

    def run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Execute ``fn(*args, **kwargs)`` on the hub loop and return its result."""
        if not self.running:
            raise RuntimeError("Live hub is not running")

        try:
            on_loop = asyncio.get_running_loop() is self._loop
        except RuntimeError:
            on_loop = False
        if on_loop:
            return fn(*args, **kwargs)

        async def call():
            return fn(*args, **kwargs)

        return asyncio.run_coroutine_threadsafe(call(), self._loop).result(self.call_timeout)

    def _dispose_everything(self) -> None:
        self.scheduler.dispose_all()
        self.channels.clear()

    # ------------------------------------------------------------------
    # Emitting
    # ------------------------------------------------------------------

    def emit(self, event: str, payload: Dict[str, Any], to: Optional[str] = None) -> None:
        if self._emit is None:
            return
        try:
            self._emit(event, payload, to=to)
        except Exception:
            logger.error(f"Failed to emit {event}", exc_info=True)

    def _publisher(self, channel: Channel) -> Callable[[RefreshSnapshot], None]:
        def publish(snapshot: RefreshSnapshot) -> None:
            self.emit(
                "metrics_update",
                {
                    "channel": channel.name,
                    "server_id": snapshot.subject_key,
                    "metric": channel.metric,
                    "data": snapshot.data,
                    "error": str(snapshot.error) if snapshot.error is not None else None,
                    "is_loading": snapshot.is_loading,
                    "state": snapshot.state.value,
                    "live": snapshot.enabled,
                },
                to=channel.sid,
            )

        return publish

    # ------------------------------------------------------------------
    # Subscriptions (must run on the hub loop, see ``run``)
    # ------------------------------------------------------------------

    def _channel(self, sid: str, name: str) -> Channel:
        try:
            return self.channels[(sid, name)]
        except KeyError:
            raise ValueError(f"Unknown channel: {name}") from None

    def _subscribe(
        self,
        sid: str,
        name: str,
        server_id: str,
        metric: str,
        interval_ms: Optional[int],
        enabled: bool,
        limit: Optional[int],
    ) -> RefreshHandle:
        command, kwargs = metric_command(metric, limit)
        interval_ms = self.default_interval_ms if interval_ms is None else int(interval_ms)
        options = RefreshOptions(interval_ms=interval_ms, enabled=enabled)

        existing = self.channels.get((sid, name))
        if existing is not None:
            same_feed = (existing.command, existing.kwargs, existing.interval_ms) == (command, kwargs, interval_ms)
            if same_feed:
                if not enabled:
                    # pause first so the switched handle starts without a fetch
                    existing.handle.set_enabled(False)
                handle = self.scheduler.switch_subject(existing.handle, server_id)
                existing.handle = handle
                handle.set_enabled(enabled)
                return handle
            self.scheduler.dispose(existing.handle)

        channel = Channel(sid, name, metric, command, kwargs, interval_ms)
        self.channels[(sid, name)] = channel
        channel.handle = self.scheduler.start(
            server_id,
            self.bridge.fetcher(command, **kwargs),
            options,
            on_update=self._publisher(channel),
        )
        logger.debug(f"{sid} subscribed {name} to {metric} on {server_id}")
        return channel.handle

    def _set_live(self, sid: str, name: str, enabled: bool) -> None:
        self._channel(sid, name).handle.set_enabled(enabled)

    def _refetch(self, sid: str, name: str) -> None:
        self._channel(sid, name).handle.refetch_now()

    def _unsubscribe(self, sid: str, name: str) -> bool:
        channel = self.channels.pop((sid, name), None)
        if channel is None:
            return False
        self.scheduler.dispose(channel.handle)
        return True

    def _drop_client(self, sid: str) -> int:
        keys = [key for key in self.channels if key[0] == sid]
        for key in keys:
            self.scheduler.dispose(self.channels.pop(key).handle)
        self.plans.forget(sid)
        return len(keys)

    def _explain(self, sid: str, server_id: str, query: str, analyze: bool) -> int:
        token = self.plans.begin(sid)
        task = self._loop.create_task(self._run_explain(sid, token, server_id, query, analyze))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return token

    async def _run_explain(self, sid: str, token: int, server_id: str, query: str, analyze: bool) -> None:
        try:
            plan = await self.bridge.invoke("analyze_plan", server_id=server_id, query=query, analyze=analyze)
        except Exception as exc:
            if self.plans.finish(sid, token):
                self.emit("plan_error", {"server_id": server_id, "request": token, "error": str(exc)}, to=sid)
            return

        if self.plans.finish(sid, token):
            self.emit("plan_result", {"server_id": server_id, "request": token, "plan": plan}, to=sid)
        else:
            logger.debug(f"Dropping superseded plan request {token} for {sid}")

    # ------------------------------------------------------------------
    # Thread-safe API used by the socket handlers
    # ------------------------------------------------------------------

    def subscribe(
        self,
        sid: str,
        channel: str,
        server_id: str,
        metric: str,
        interval_ms: Optional[int] = None,
        enabled: bool = True,
        limit: Optional[int] = None,
    ) -> None:
        self.run(self._subscribe, sid, channel, server_id, metric, interval_ms, enabled, limit)

    def set_live(self, sid: str, channel: str, enabled: bool) -> None:
        self.run(self._set_live, sid, channel, enabled)

    def refetch(self, sid: str, channel: str) -> None:
        self.run(self._refetch, sid, channel)

    def unsubscribe(self, sid: str, channel: str) -> bool:
        return self.run(self._unsubscribe, sid, channel)

    def drop_client(self, sid: str) -> int:
        return self.run(self._drop_client, sid)

    def explain(self, sid: str, server_id: str, query: str, analyze: bool = False) -> int:
        """Start a plan analysis; only the newest request per client is delivered."""
        return self.run(self._explain, sid, server_id, query, analyze)
