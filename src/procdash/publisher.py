# src/procdash/publisher.py
"""Per-client streaming of process snapshots.

Each subscribed client owns one asyncio task that runs a sampling pass
immediately and then every `interval` seconds. The task lives in a
Subscription record keyed by client id; unsubscribe() cancels and awaits it,
and the socket server calls unsubscribe() in a finally block on disconnect,
so live tasks never outnumber connected subscribers. Each subscription also
owns the CPU baseline its passes measure against.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from procdash.control import parse_pid
from procdash.errors import SourceUnavailable, TerminationError, ValidationError
from procdash.models import ProcessRecord
from procdash.normalizer import UsageNormalizer
from procdash.sources import CpuBaseline, Terminator

log = structlog.get_logger()

Deliver = Callable[[dict], Awaitable[None]]

DEFAULT_INTERVAL = 5.0


def _with_id(message: dict, request_id: object) -> dict:
    if request_id is not None:
        message["id"] = request_id
    return message


def process_data_message(records: list[ProcessRecord]) -> dict:
    """Build the message pushed on every tick."""
    return {"type": "process_data", "processes": [r.to_dict() for r in records]}


@dataclass
class Subscription:
    """A client's live streaming task and its CPU measurement baseline."""

    client_id: str
    task: asyncio.Task
    baseline: CpuBaseline = field(default_factory=CpuBaseline)

    @property
    def active(self) -> bool:
        return not self.task.done()

    async def cancel(self) -> None:
        """Cancel the streaming task and wait for it to finish."""
        if not self.task.done():
            self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass


class StreamingPublisher:
    """Delivers sampling passes to subscribed clients on a fixed cadence."""

    def __init__(
        self,
        normalizer: UsageNormalizer,
        terminator: Terminator,
        *,
        interval: float = DEFAULT_INTERVAL,
    ) -> None:
        self.normalizer = normalizer
        self.terminator = terminator
        self.interval = interval
        self._subscriptions: dict[str, Subscription] = {}

    @property
    def active_count(self) -> int:
        """Number of subscriptions whose task is still running."""
        return sum(1 for s in self._subscriptions.values() if s.active)

    def is_subscribed(self, client_id: str) -> bool:
        sub = self._subscriptions.get(client_id)
        return sub is not None and sub.active

    async def subscribe(self, client_id: str, deliver: Deliver) -> Subscription:
        """Start streaming to a client, replacing any existing subscription."""
        await self.unsubscribe(client_id)
        baseline = CpuBaseline()
        task = asyncio.create_task(
            self._stream(client_id, deliver, baseline),
            name=f"procdash-stream-{client_id}",
        )
        sub = Subscription(client_id=client_id, task=task, baseline=baseline)
        self._subscriptions[client_id] = sub
        log.info("stream_subscribed", client=client_id, interval=self.interval)
        return sub

    async def unsubscribe(self, client_id: str) -> None:
        """Stop streaming to a client. Safe to call when not subscribed."""
        sub = self._subscriptions.pop(client_id, None)
        if sub is None:
            return
        await sub.cancel()
        log.info("stream_unsubscribed", client=client_id)

    async def stop(self) -> None:
        """Cancel every subscription."""
        for client_id in list(self._subscriptions):
            await self.unsubscribe(client_id)

    async def sample(self, baseline: CpuBaseline | None = None) -> list[ProcessRecord]:
        """Run one sampling pass off the event loop."""
        return await asyncio.to_thread(self.normalizer.sample, baseline)

    async def publish_once(
        self,
        deliver: Deliver,
        client_id: str = "",
        baseline: CpuBaseline | None = None,
    ) -> bool:
        """Run one pass and deliver it.

        A failed pass is logged and skipped. Returns False only if the pass
        failed; delivery errors propagate to the caller.
        """
        try:
            records = await self.sample(baseline)
        except SourceUnavailable as e:
            log.error("sample_failed", client=client_id, error=str(e))
            return False
        await deliver(process_data_message(records))
        return True

    async def handle_kill(
        self,
        pid: object,
        deliver: Deliver,
        client_id: str = "",
        request_id: object = None,
    ) -> None:
        """Terminate a process on behalf of a streaming client.

        The acknowledgement goes only to the requesting client, followed by a
        fresh snapshot on success or failure alike. A malformed pid is
        rejected without calling the terminator.
        """
        try:
            checked = parse_pid(pid)
        except ValidationError as e:
            ack = {"type": "process_killed", "success": False, "pid": pid, "error": str(e)}
        else:
            try:
                await asyncio.to_thread(self.terminator.terminate, checked)
            except TerminationError as e:
                log.warning("kill_failed", client=client_id, pid=checked, reason=e.reason)
                ack = {
                    "type": "process_killed",
                    "success": False,
                    "pid": checked,
                    "error": e.reason,
                }
            else:
                ack = {"type": "process_killed", "success": True, "pid": checked}
        await deliver(_with_id(ack, request_id))

        sub = self._subscriptions.get(client_id)
        await self.publish_once(deliver, client_id, sub.baseline if sub else None)

    async def _stream(self, client_id: str, deliver: Deliver, baseline: CpuBaseline) -> None:
        """Streaming loop: deliver now, then every interval until cancelled."""
        loop = asyncio.get_running_loop()
        try:
            while True:
                tick_start = loop.time()
                try:
                    await self.publish_once(deliver, client_id, baseline)
                except (ConnectionError, OSError) as e:
                    log.info("stream_delivery_failed", client=client_id, error=str(e))
                    return

                # Sleep for remaining interval to keep a fixed cadence
                elapsed = loop.time() - tick_start
                await asyncio.sleep(max(self.interval - elapsed, 0.0))
        finally:
            sub = self._subscriptions.get(client_id)
            if sub is not None and sub.task is asyncio.current_task():
                del self._subscriptions[client_id]
