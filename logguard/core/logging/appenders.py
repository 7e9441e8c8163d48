"""Appenders: lifecycle-managed output sinks for log entries.

``append`` never waits on I/O. Console and memory appenders write
synchronously to in-process targets; file and remote appenders buffer
payloads and deliver them in batches from asyncio tasks, with retry.
"""

import asyncio
import contextlib
import json
import logging
import sys
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Mapping
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import httpx
import structlog
from rich.console import Console

from .config import AppenderConfig, LayoutConfig, ThrottlingConfig
from .entry import LogEntry
from .exceptions import ConfigurationError, DeliveryError
from .layouts import BaseLayout, ConsoleLayout, JsonLayout, PatternLayout
from .throttling import RateLimiter, RetryPolicy

logger = structlog.get_logger(__name__)
fallback_logger = structlog.get_logger("logguard.fallback")


class AppenderState(str, Enum):
    """Appender lifecycle states."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    STOPPED = "stopped"


class BaseAppender(ABC):
    """
    Base class for appenders.

    Handles configuration, lifecycle state, per-appender rate limiting and
    statistics. Subclasses implement ``_write`` and optionally the
    ``_on_start``/``_on_stop`` hooks.
    """

    appender_type = "base"

    def __init__(
        self,
        config: AppenderConfig | Mapping[str, Any] | None = None,
        layout: BaseLayout | None = None,
    ):
        if config is None:
            config = AppenderConfig(name=self.appender_type, type=self.appender_type)
        elif not isinstance(config, AppenderConfig):
            config = AppenderConfig.model_validate(config)
        self.config = config
        self.layout = layout or self._layout_from_config(config)
        self.state = AppenderState.UNINITIALIZED
        self._rate_limiter: RateLimiter[LogEntry] | None = RateLimiter.from_config(config.throttling)
        self._release_handle: asyncio.TimerHandle | None = None
        self._appended = 0
        self._delivered = 0
        self._dropped = 0
        self._failed = 0

    @property
    def name(self) -> str:
        return self.config.name or self.appender_type

    def default_layout(self) -> BaseLayout:
        return PatternLayout()

    def _layout_from_config(self, config: AppenderConfig) -> BaseLayout:
        if isinstance(config.layout, LayoutConfig):
            return _layout_for(config.layout, self.default_layout())
        return self.default_layout()

    def is_ready(self) -> bool:
        return self.state == AppenderState.READY

    async def start(self) -> None:
        """Transition to READY. Starting a ready appender does nothing."""
        if self.state == AppenderState.READY:
            return
        await self._on_start()
        self.state = AppenderState.READY
        logger.debug("Appender started", appender=self.name, type=self.appender_type)

    async def stop(self) -> None:
        """Release resources and transition to STOPPED. Idempotent."""
        if self.state == AppenderState.STOPPED:
            return
        was_ready = self.state == AppenderState.READY
        self.state = AppenderState.STOPPED
        if self._release_handle is not None:
            self._release_handle.cancel()
            self._release_handle = None
        if self._rate_limiter is not None:
            for entry in self._rate_limiter.drain():
                self._emit(entry)
        if was_ready:
            await self._on_stop()
        logger.debug("Appender stopped", appender=self.name, type=self.appender_type)

    def configure(self, config: AppenderConfig | Mapping[str, Any]) -> None:
        """Merge new settings into the current configuration."""
        if not isinstance(config, AppenderConfig):
            config = AppenderConfig.model_validate(config)
        updates = config.model_dump(exclude_unset=True)
        self.config = AppenderConfig.model_validate({**self.config.model_dump(), **updates})
        if "throttling" in updates:
            self._rate_limiter = RateLimiter.from_config(self.config.throttling)
        if isinstance(self.config.layout, LayoutConfig) and "layout" in updates:
            self.layout = _layout_for(self.config.layout, self.layout)

    def append(self, entry: LogEntry) -> None:
        """Accept an entry for delivery without blocking on I/O."""
        if not self.is_ready():
            self._dropped += 1
            return
        self._appended += 1
        if self._rate_limiter is None:
            self._emit(entry)
            return
        for released in self._rate_limiter.offer(entry):
            self._emit(released)
        self._schedule_release()

    def _schedule_release(self) -> None:
        """Release deferred entries when the next rate window opens."""
        if self._release_handle is not None or self._rate_limiter is None or not self._rate_limiter.pending:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._release_handle = loop.call_later(
            self._rate_limiter.seconds_until_next_window(), self._release_deferred
        )

    def _release_deferred(self) -> None:
        self._release_handle = None
        if not self.is_ready() or self._rate_limiter is None:
            return
        for entry in self._rate_limiter.release():
            try:
                self._emit(entry)
            except Exception as e:
                fallback_logger.error(
                    "Deferred entry delivery failed",
                    appender=self.name,
                    entry_id=entry.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        self._schedule_release()

    def _emit(self, entry: LogEntry) -> None:
        try:
            self._write(entry)
        except Exception:
            self._failed += 1
            raise
        else:
            self._delivered += 1

    @abstractmethod
    def _write(self, entry: LogEntry) -> None:
        """Write or enqueue one entry that passed throttling."""

    async def _on_start(self) -> None:
        return None

    async def _on_stop(self) -> None:
        return None

    @property
    def throttled(self) -> int:
        """Entries dropped by the rate limiter so far."""
        return self._rate_limiter.dropped if self._rate_limiter else 0

    def get_statistics(self) -> dict[str, Any]:
        throttled = self.throttled
        return {
            "name": self.name,
            "type": self.appender_type,
            "state": self.state.value,
            "appended": self._appended,
            "delivered": self._delivered,
            "dropped": self._dropped + throttled,
            "throttled": throttled,
            "failed": self._failed,
            "deferred": self._rate_limiter.pending if self._rate_limiter else 0,
        }


def _layout_for(config: LayoutConfig, current: BaseLayout) -> BaseLayout:
    layout_class = {
        "pattern": PatternLayout,
        "json": JsonLayout,
        "console": ConsoleLayout,
    }.get(config.type)
    if layout_class is None or isinstance(current, layout_class):
        current.configure(config)
        return current
    return layout_class(config)


class ConsoleAppender(BaseAppender):
    """Writes formatted entries to the terminal through rich."""

    appender_type = "console"

    def __init__(
        self,
        config: AppenderConfig | Mapping[str, Any] | None = None,
        layout: BaseLayout | None = None,
        console: Console | None = None,
    ):
        super().__init__(config, layout)
        if console is None:
            console = Console(stderr=self.config.properties.get("stream") == "stderr")
        self.console = console

    def default_layout(self) -> BaseLayout:
        return ConsoleLayout()

    def _write(self, entry: LogEntry) -> None:
        payload = self.layout.format(entry)
        self.console.print(
            payload,
            markup=self.layout.uses_markup,
            highlight=False,
            soft_wrap=True,
        )


class MemoryAppender(BaseAppender):
    """Keeps the most recent entries and payloads in memory."""

    appender_type = "memory"

    def __init__(
        self,
        config: AppenderConfig | Mapping[str, Any] | None = None,
        layout: BaseLayout | None = None,
    ):
        super().__init__(config, layout)
        max_entries = int(self.config.properties.get("max_entries", 1000))
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)
        self._payloads: deque[str] = deque(maxlen=max_entries)

    def _write(self, entry: LogEntry) -> None:
        self._entries.append(entry)
        self._payloads.append(self.layout.format(entry))

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    @property
    def payloads(self) -> list[str]:
        return list(self._payloads)

    def clear(self) -> None:
        self._entries.clear()
        self._payloads.clear()


class BufferedAppender(BaseAppender):
    """
    Appender that delivers formatted payloads in batches.

    A flush is scheduled on the running event loop when ``max_batch_size``
    payloads are buffered, a background task flushes every
    ``max_interval`` seconds while the appender is ready, and ``stop()``
    flushes whatever is left. Without a running loop entries stay
    buffered until ``flush()`` or ``stop()`` is awaited.
    """

    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def __init__(
        self,
        config: AppenderConfig | Mapping[str, Any] | None = None,
        layout: BaseLayout | None = None,
    ):
        super().__init__(config, layout)
        self._buffer: deque[str] = deque()
        self._flush_lock = asyncio.Lock()
        self._flush_task: asyncio.Task | None = None
        self._interval_task: asyncio.Task | None = None
        self._retry = (
            RetryPolicy(self.config.retry, retry_on=self.retry_on)
            if self.config.retry is not None
            else RetryPolicy.single_attempt(retry_on=self.retry_on)
        )

    @property
    def throttling(self) -> ThrottlingConfig:
        return self.config.throttling or ThrottlingConfig()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def configure(self, config: AppenderConfig | Mapping[str, Any]) -> None:
        super().configure(config)
        if self.config.retry is not None:
            self._retry = RetryPolicy(self.config.retry, retry_on=self.retry_on)

    def _emit(self, entry: LogEntry) -> None:
        if len(self._buffer) >= self.throttling.max_queue_size:
            self._dropped += 1
            return
        self._buffer.append(self.layout.format(entry))
        if len(self._buffer) >= self.throttling.max_batch_size:
            self._schedule_flush()

    def _write(self, entry: LogEntry) -> None:
        self._emit(entry)

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = loop.create_task(self.flush())

    async def _flush_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.throttling.max_interval)
            if self._rate_limiter is not None:
                for entry in self._rate_limiter.release():
                    self._emit(entry)
            await self.flush()

    async def flush(self) -> None:
        """Deliver every buffered payload in batches of ``max_batch_size``."""
        async with self._flush_lock:
            while self._buffer:
                size = min(self.throttling.max_batch_size, len(self._buffer))
                batch = [self._buffer.popleft() for _ in range(size)]
                try:
                    await self._retry.call(self._deliver, batch)
                except asyncio.CancelledError:
                    # back to the front so the final flush on stop delivers it
                    self._buffer.extendleft(reversed(batch))
                    raise
                except Exception as e:
                    self._failed += len(batch)
                    error = DeliveryError(
                        f"Failed to deliver {len(batch)} entries",
                        appender=self.name,
                        details={"cause": str(e), "cause_type": type(e).__name__},
                    )
                    fallback_logger.error("Batch delivery failed", **error.to_dict())
                else:
                    self._delivered += len(batch)

    async def _on_start(self) -> None:
        await self._open()
        self._interval_task = asyncio.create_task(self._flush_periodically())

    async def _on_stop(self) -> None:
        if self._interval_task is not None:
            self._interval_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._interval_task
            self._interval_task = None
        if self._flush_task is not None and not self._flush_task.done():
            await self._flush_task
        await self.flush()
        await self._close()

    async def _open(self) -> None:
        return None

    async def _close(self) -> None:
        return None

    @abstractmethod
    async def _deliver(self, batch: list[str]) -> None:
        """Deliver one batch of payloads; raise to trigger a retry."""

    def get_statistics(self) -> dict[str, Any]:
        stats = super().get_statistics()
        stats["buffered"] = len(self._buffer)
        return stats


class _RaisingRotatingFileHandler(RotatingFileHandler):
    """Rotating handler that propagates write errors instead of printing them."""

    def handleError(self, record: logging.LogRecord) -> None:
        error = sys.exc_info()[1]
        if error is not None:
            raise error
        super().handleError(record)


class FileAppender(BufferedAppender):
    """
    Appends payloads to a size-rotated file.

    Properties: ``filename`` (required), ``max_bytes`` (default 10MB),
    ``backup_count`` (default 5) and ``encoding`` (default utf-8). File I/O
    runs in a worker thread.
    """

    appender_type = "file"
    retry_on = (OSError,)

    def __init__(
        self,
        config: AppenderConfig | Mapping[str, Any] | None = None,
        layout: BaseLayout | None = None,
    ):
        super().__init__(config, layout)
        filename = self.config.properties.get("filename")
        if not filename:
            raise ConfigurationError(
                f"File appender '{self.name}' requires a filename property",
                details={"appender": self.name},
            )
        self.path = Path(filename)
        self._handler: RotatingFileHandler | None = None

    def _open_handler(self) -> RotatingFileHandler:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handler = _RaisingRotatingFileHandler(
            filename=str(self.path),
            maxBytes=int(self.config.properties.get("max_bytes", 10 * 1024 * 1024)),
            backupCount=int(self.config.properties.get("backup_count", 5)),
            encoding=self.config.properties.get("encoding", "utf-8"),
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        return handler

    def _write_batch(self, batch: list[str]) -> None:
        if self._handler is None:
            self._handler = self._open_handler()
        for payload in batch:
            record = logging.makeLogRecord({"msg": payload, "levelno": logging.INFO, "levelname": "INFO"})
            self._handler.emit(record)
        self._handler.flush()

    async def _open(self) -> None:
        if self._handler is None:
            self._handler = await asyncio.to_thread(self._open_handler)

    async def _deliver(self, batch: list[str]) -> None:
        await asyncio.to_thread(self._write_batch, batch)

    async def _close(self) -> None:
        if self._handler is not None:
            await asyncio.to_thread(self._handler.close)
            self._handler = None


class RemoteAppender(BufferedAppender):
    """
    POSTs batches of entries to an HTTP endpoint as JSON.

    The endpoint comes from ``url`` or ``properties.url``. Requests carry
    ``{"entries": [...]}``; JSON payloads are embedded as objects, other
    payloads as strings. Transport and HTTP status errors are retried per
    the retry config; exhausted batches are reported and dropped.
    """

    appender_type = "remote"
    retry_on = (httpx.HTTPError,)

    def __init__(
        self,
        config: AppenderConfig | Mapping[str, Any] | None = None,
        layout: BaseLayout | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, layout)
        self.url = self.config.url or self.config.properties.get("url")
        if not self.url:
            raise ConfigurationError(
                f"Remote appender '{self.name}' requires a url",
                details={"appender": self.name},
            )
        self.headers = dict(self.config.properties.get("headers", {}))
        self.timeout = float(self.config.properties.get("timeout", 10.0))
        self._client = client
        self._owns_client = client is None

    def default_layout(self) -> BaseLayout:
        return JsonLayout()

    async def _open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=self.headers)
            self._owns_client = True

    def _records(self, batch: list[str]) -> list[Any]:
        if self.layout.get_content_type() != "application/json":
            return list(batch)
        return [json.loads(payload) for payload in batch]

    async def _send(self, body: dict[str, Any]) -> None:
        response = await self._client.post(self.url, json=body)
        response.raise_for_status()

    async def _deliver(self, batch: list[str]) -> None:
        if self._client is None:
            await self._open()
        await self._send({"entries": self._records(batch)})

    async def _close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
