"""Pipeline metrics, Prometheus export and threshold alerts.

``LoggingMetrics`` counts what the logging pipeline did, times every log
call and keeps a sliding window of recent entries. Alert rules are
evaluated against that window each time an entry is emitted.

Collectors live in a per-instance ``CollectorRegistry``, so several
pipelines in one process never share series.
"""

import threading
import time
from collections import Counter, deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog
from prometheus_client import CollectorRegistry, Gauge, Histogram, generate_latest
from prometheus_client import Counter as PrometheusCounter

from .config import AlertRuleConfig, MonitoringConfig
from .entry import LogEntry

logger = structlog.get_logger(__name__)

ERROR_LEVELS = ("ERROR", "FATAL")
SECURITY_LEVEL = "SECURITY"

# seconds
PROCESSING_BUCKETS = (0.0001, 0.00025, 0.0005, 0.001, 0.0025, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0)

DEFAULT_ALERTS = [
    AlertRuleConfig(
        name="high-error-rate",
        description="Error rate exceeds threshold",
        metric="error_rate",
        threshold=10,
        severity="high",
        cooldown=300,
    ),
    AlertRuleConfig(
        name="security-events",
        description="Security events detected",
        metric="security_events",
        threshold=0,
        severity="critical",
        cooldown=60,
    ),
    AlertRuleConfig(
        name="high-message-volume",
        description="Message volume exceeds threshold",
        metric="total_entries",
        threshold=1000,
        severity="medium",
        cooldown=600,
    ),
]


@dataclass
class WindowMetrics:
    """Aggregates over the entries emitted in the last ``window_seconds``."""

    window_seconds: float
    total_entries: int
    level_counts: dict[str, int]
    error_rate: float
    security_events: int
    entries_per_second: float

    def value(self, metric: str) -> float:
        return {
            "error_rate": self.error_rate,
            "security_events": self.security_events,
            "total_entries": self.total_entries,
            "entries_per_second": self.entries_per_second,
        }[metric]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Alert:
    """A firing alert."""

    name: str
    description: str
    severity: str
    triggered_at: datetime
    message: str
    metrics: WindowMetrics

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "severity": self.severity,
            "triggered_at": self.triggered_at.isoformat(),
            "message": self.message,
            "metrics": self.metrics.to_dict(),
        }


@dataclass
class AlertRule:
    """
    A named condition over window metrics.

    While the condition holds the alert is active. Notifications (a
    structlog warning and the optional callback) are repeated at most once
    per ``cooldown`` seconds.
    """

    name: str
    condition: Callable[[WindowMetrics], bool]
    description: str = ""
    severity: str = "medium"
    cooldown: float = 300.0
    enabled: bool = True
    callback: Callable[[Alert], None] | None = field(default=None, repr=False)

    @classmethod
    def from_config(cls, config: AlertRuleConfig) -> "AlertRule":
        metric, threshold = config.metric, config.threshold
        return cls(
            name=config.name,
            condition=lambda window: window.value(metric) > threshold,
            description=config.description or f"{metric} above {threshold:g}",
            severity=config.severity,
            cooldown=config.cooldown,
            enabled=config.enabled,
        )


def _alert_message(rule: AlertRule, window: WindowMetrics) -> str:
    return (
        f"{rule.description}: error_rate={window.error_rate:.2f}, "
        f"total_entries={window.total_entries}, security_events={window.security_events}"
    )


class LoggingMetrics:
    """
    Thread-safe pipeline metrics.

    Tracks emitted entries per level and category, entries suppressed by
    the level gate, the compliance engine and the filter chain, appender
    failures, entries dropped by appender rate limiting and the time spent
    in each log call.
    """

    def __init__(
        self,
        enabled: bool = True,
        config: MonitoringConfig | Mapping[str, Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.enabled = enabled
        self._lock = threading.Lock()
        self._alert_lock = threading.Lock()
        self._clock = clock
        self._emitted: Counter[str] = Counter()
        self._suppressed: Counter[str] = Counter()
        self._appender_failures: Counter[str] = Counter()
        self._throttled: Counter[str] = Counter()
        self._window: deque[tuple[float, str]] = deque()
        self._window_counts: Counter[str] = Counter()
        self._rules: dict[str, AlertRule] = {}
        self._configured_rules: set[str] = set()
        self._added_rules: set[str] = set()
        self._active: dict[str, Alert] = {}
        self._last_notified: dict[str, float] = {}
        self._started_at = datetime.now(UTC)
        self.window_seconds = 60.0
        self._build_collectors()
        self.configure(config)

    def _build_collectors(self) -> None:
        self.registry = CollectorRegistry()
        self._entries_total = PrometheusCounter(
            "logguard_entries", "Log entries emitted", ["level", "category"], registry=self.registry
        )
        self._suppressed_total = PrometheusCounter(
            "logguard_suppressed_entries", "Log entries suppressed", ["reason"], registry=self.registry
        )
        self._failures_total = PrometheusCounter(
            "logguard_appender_failures", "Appender failures", ["appender"], registry=self.registry
        )
        self._throttled_total = PrometheusCounter(
            "logguard_throttled_entries", "Entries dropped by appender rate limits", ["appender"],
            registry=self.registry,
        )
        self._processing = Histogram(
            "logguard_processing_seconds", "Time spent in a log call", ["level"],
            buckets=PROCESSING_BUCKETS, registry=self.registry,
        )
        self._error_rate = Gauge(
            "logguard_error_rate_percent", "Share of ERROR and FATAL entries in the window",
            registry=self.registry,
        )
        self._window_entries = Gauge(
            "logguard_window_entries", "Entries emitted in the window", registry=self.registry
        )
        self._active_alerts = Gauge("logguard_active_alerts", "Alerts currently firing", registry=self.registry)

    def configure(self, config: MonitoringConfig | Mapping[str, Any] | None) -> None:
        """Apply window size and configured alert rules; rules added with ``add_alert`` are kept."""
        if config is None:
            config = MonitoringConfig()
        elif not isinstance(config, MonitoringConfig):
            config = MonitoringConfig.model_validate(config)
        rule_configs = [*(DEFAULT_ALERTS if config.default_alerts else []), *config.alerts]
        with self._alert_lock:
            self.window_seconds = config.window_seconds
            for name in self._configured_rules:
                self._rules.pop(name, None)
                self._active.pop(name, None)
            self._configured_rules = set()
            for rule_config in rule_configs:
                if rule_config.name in self._added_rules:
                    continue
                self._rules[rule_config.name] = AlertRule.from_config(rule_config)
                self._configured_rules.add(rule_config.name)

    # Recording

    def record_emitted(self, level: str, category: str = "") -> None:
        if not self.enabled:
            return
        level = str(level)
        with self._lock:
            self._emitted[level] += 1
            self._window.append((self._clock(), level))
            self._window_counts[level] += 1
        self._entries_total.labels(level=level, category=category).inc()
        self.check_alerts()

    def record_processing(self, level: str, seconds: float) -> None:
        if not self.enabled:
            return
        self._processing.labels(level=str(level)).observe(seconds)

    def record_suppressed(self, reason: str) -> None:
        """Count an entry dropped by ``level``, ``compliance`` or ``filter``."""
        if not self.enabled:
            return
        with self._lock:
            self._suppressed[reason] += 1
        self._suppressed_total.labels(reason=reason).inc()

    def record_appender_failure(self, appender: str) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._appender_failures[appender] += 1
        self._failures_total.labels(appender=appender).inc()

    def record_throttled(self, appender: str) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._throttled[appender] += 1
        self._throttled_total.labels(appender=appender).inc()

    def process_entries(self, entries: Iterable[LogEntry]) -> None:
        """
        Record entries produced elsewhere, e.g. replayed from a memory appender.

        A ``processingTime`` (or ``processing_time``) metadata value in
        milliseconds is added to the processing histogram.
        """
        for entry in entries:
            level = entry.level.value
            self.record_emitted(level, entry.category)
            metadata = entry.metadata or {}
            elapsed = metadata.get("processingTime", metadata.get("processing_time"))
            if isinstance(elapsed, (int, float)) and not isinstance(elapsed, bool):
                self.record_processing(level, elapsed / 1000)

    # Window and alerts

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._window and self._window[0][0] <= cutoff:
            _, level = self._window.popleft()
            self._window_counts[level] -= 1
            if self._window_counts[level] <= 0:
                del self._window_counts[level]

    def window_metrics(self) -> WindowMetrics:
        with self._lock:
            self._evict(self._clock())
            counts = dict(self._window_counts)
        total = sum(counts.values())
        errors = sum(counts.get(level, 0) for level in ERROR_LEVELS)
        return WindowMetrics(
            window_seconds=self.window_seconds,
            total_entries=total,
            level_counts=counts,
            error_rate=errors / total * 100 if total else 0.0,
            security_events=counts.get(SECURITY_LEVEL, 0),
            entries_per_second=total / self.window_seconds,
        )

    def add_alert(self, rule: AlertRule | AlertRuleConfig | Mapping[str, Any]) -> None:
        """Add or replace an alert rule by name."""
        if isinstance(rule, Mapping):
            rule = AlertRuleConfig.model_validate(rule)
        if isinstance(rule, AlertRuleConfig):
            rule = AlertRule.from_config(rule)
        with self._alert_lock:
            self._rules[rule.name] = rule
            self._added_rules.add(rule.name)
            self._configured_rules.discard(rule.name)

    def remove_alert(self, name: str) -> None:
        with self._alert_lock:
            self._rules.pop(name, None)
            self._active.pop(name, None)
            self._last_notified.pop(name, None)
            self._configured_rules.discard(name)
            self._added_rules.discard(name)

    def get_alerts(self) -> list[AlertRule]:
        with self._alert_lock:
            return list(self._rules.values())

    def get_active_alerts(self) -> list[Alert]:
        with self._alert_lock:
            return list(self._active.values())

    def check_alerts(self) -> list[Alert]:
        """
        Evaluate every enabled rule against the current window.

        Returns the alerts notified by this call. Rules whose condition no
        longer holds are resolved.
        """
        window = self.window_metrics()
        now = self._clock()
        notify: list[tuple[AlertRule, Alert]] = []
        with self._alert_lock:
            for rule in self._rules.values():
                try:
                    firing = rule.enabled and bool(rule.condition(window))
                except Exception as e:
                    logger.warning("Alert rule failed", alert=rule.name, error=str(e))
                    continue
                if not firing:
                    if self._active.pop(rule.name, None) is not None:
                        logger.info("Logging alert resolved", alert=rule.name)
                    continue
                last = self._last_notified.get(rule.name)
                within_cooldown = last is not None and now - last < rule.cooldown
                if within_cooldown and rule.name in self._active:
                    continue
                alert = Alert(
                    name=rule.name,
                    description=rule.description,
                    severity=rule.severity,
                    triggered_at=datetime.now(UTC),
                    message=_alert_message(rule, window),
                    metrics=window,
                )
                self._active[rule.name] = alert
                if within_cooldown:
                    continue
                self._last_notified[rule.name] = now
                notify.append((rule, alert))
            self._active_alerts.set(len(self._active))

        for rule, alert in notify:
            logger.warning(
                "Logging alert triggered",
                alert=alert.name,
                severity=alert.severity,
                message=alert.message,
            )
            if rule.callback is not None:
                try:
                    rule.callback(alert)
                except Exception as e:
                    logger.error("Alert callback failed", alert=alert.name, error=str(e))
        return [alert for _, alert in notify]

    # Reporting

    def export_prometheus(self) -> str:
        """Render every series in the Prometheus text exposition format."""
        window = self.window_metrics()
        self._error_rate.set(window.error_rate)
        self._window_entries.set(window.total_entries)
        return generate_latest(self.registry).decode("utf-8")

    def reset(self) -> None:
        """Clear recorded data; alert rules stay installed."""
        with self._lock:
            self._emitted.clear()
            self._suppressed.clear()
            self._appender_failures.clear()
            self._throttled.clear()
            self._window.clear()
            self._window_counts.clear()
            self._started_at = datetime.now(UTC)
        with self._alert_lock:
            self._active.clear()
            self._last_notified.clear()
        self._build_collectors()

    def snapshot(self) -> dict[str, Any]:
        window = self.window_metrics()
        with self._lock:
            counters = {
                "since": self._started_at.isoformat(),
                "emitted": dict(self._emitted),
                "total_emitted": sum(self._emitted.values()),
                "suppressed": dict(self._suppressed),
                "appender_failures": dict(self._appender_failures),
                "throttled": dict(self._throttled),
            }
        return {
            **counters,
            "window": window.to_dict(),
            "active_alerts": [alert.name for alert in self.get_active_alerts()],
        }
