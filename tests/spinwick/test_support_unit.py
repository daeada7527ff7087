"""Unit tests for configuration, the env var cache, notifications and events."""

import asyncio
import json
import logging
from unittest.mock import AsyncMock

import httpx
import pytest
from prometheus_client import CollectorRegistry
from pydantic import ValidationError

from src.spinwick.cloud.models import EnvVar
from src.spinwick.config import SpinWickSettings, get_settings
from src.spinwick.env_cache import EnvVarCache
from src.spinwick.events.emitter import (
    CompositeEventEmitter,
    EventSinkType,
    LoggingEventEmitter,
    NullEventEmitter,
    create_event_emitter,
)
from src.spinwick.events.metrics import MetricsEventEmitter, SpinWickMetrics
from src.spinwick.events.models import EventType, LifecycleEvent
from src.spinwick.github.models import PullRequest
from src.spinwick.notifier import OperatorNotifier, format_pretty_error
from src.spinwick.webhook.channels import WebhookChannelRegistry


def run_async(coro):
    return asyncio.run(coro)


def _make_event(event_type: EventType = EventType.COMPLETION, **details) -> LifecycleEvent:
    return LifecycleEvent(
        event_type=event_type,
        environment_id="mattermost-pr-42",
        repository="mattermost/mattermost",
        details={"operation": "create", "duration_seconds": 12.5, **details},
    )


def _make_pr() -> PullRequest:
    return PullRequest(
        owner="mattermost",
        repository="mattermost",
        number=42,
        url="https://github.com/mattermost/mattermost/pull/42",
    )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestSettings:
    REQUIRED = {
        "SPINWICK_GITHUB_TOKEN": "ghp_x",
        "SPINWICK_GITHUB_WEBHOOK_SECRET": "secret",
        "SPINWICK_PROVISIONER_URL": "http://provisioner.test/",
        "SPINWICK_DNS_BASE_DOMAIN": "test.mattermost.cloud",
    }

    def _set_env(self, monkeypatch, **overrides):
        for key, value in {**self.REQUIRED, **overrides}.items():
            monkeypatch.setenv(key, value)

    def test_loads_from_environment(self, monkeypatch):
        self._set_env(
            monkeypatch,
            SPINWICK_PR_LABELS=json.dumps([{"label": "QA", "message": "hi USERNAME"}]),
            SPINWICK_USE_POLLING_WAITER="true",
        )
        settings = get_settings()

        assert settings.provisioner_url == "http://provisioner.test"
        assert settings.dns_base_domain == ".test.mattermost.cloud"
        assert settings.pr_labels[0].label == "QA"
        assert settings.use_polling_waiter is True
        assert settings.spinwick_labels == [
            "Setup Cloud Test Server",
            "Setup HA Cloud Test Server",
            "Setup Cloud + CWS Test Server",
        ]

    def test_missing_required_value(self, monkeypatch):
        self._set_env(monkeypatch)
        monkeypatch.delenv("SPINWICK_GITHUB_TOKEN")
        with pytest.raises(ValidationError):
            SpinWickSettings()

    def test_blank_secret_rejected(self, monkeypatch):
        self._set_env(monkeypatch, SPINWICK_GITHUB_WEBHOOK_SECRET="   ")
        with pytest.raises(ValidationError):
            SpinWickSettings()

    def test_relative_provisioner_url_rejected(self, monkeypatch):
        self._set_env(monkeypatch, SPINWICK_PROVISIONER_URL="provisioner.test")
        with pytest.raises(ValidationError):
            SpinWickSettings()

    def test_port_range(self, monkeypatch):
        self._set_env(monkeypatch, SPINWICK_PORT="70000")
        with pytest.raises(ValidationError):
            SpinWickSettings()


# ---------------------------------------------------------------------------
# Env var cache
# ---------------------------------------------------------------------------


class TestEnvVarCache:
    def test_set_get_pop(self):
        cache = EnvVarCache()
        cache.set("mattermost-pr-42", {"A": EnvVar(value="1")})

        assert cache.get("mattermost-pr-42") == {"A": EnvVar(value="1")}
        assert len(cache) == 1
        assert cache.pop("mattermost-pr-42") == {"A": EnvVar(value="1")}
        assert cache.get("mattermost-pr-42") is None
        assert cache.pop("mattermost-pr-42") is None

    def test_get_returns_a_copy(self):
        cache = EnvVarCache()
        cache.set("id", {"A": EnvVar(value="1")})
        cache.get("id")["B"] = EnvVar(value="2")
        assert list(cache.get("id")) == ["A"]

    def test_set_replaces_previous_map(self):
        cache = EnvVarCache()
        cache.set("id", {"A": EnvVar(value="1")})
        cache.set("id", {"B": EnvVar.clear()})
        assert list(cache.get("id")) == ["B"]


# ---------------------------------------------------------------------------
# Operator notifier
# ---------------------------------------------------------------------------


class TestOperatorNotifier:
    def test_format_pretty_error(self):
        text = format_pretty_error(
            "[ SpinWick ] Creation Failed",
            _make_pr(),
            RuntimeError("boom"),
            {"Installation ID": "inst-1"},
        )
        assert text.startswith("[ SpinWick ] Creation Failed\n---\n")
        assert "Error: boom\n" in text
        assert "Repository: mattermost/mattermost\n" in text
        assert "Pull Request: 42 [ status=open ]\n" in text
        assert text.endswith("Installation ID: inst-1\n")

    def test_disabled_without_url(self):
        assert not run_async(OperatorNotifier("").notify("hello"))

    def test_posts_message_with_footer(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, text="ok")

        notifier = OperatorNotifier(
            "https://chat.test/hooks/abc",
            footer="\n@oncall",
            transport=httpx.MockTransport(handler),
        )
        assert run_async(notifier.notify_failure("Title", _make_pr(), RuntimeError("x")))

        body = json.loads(seen[0].content)
        assert str(seen[0].url) == "https://chat.test/hooks/abc"
        assert body["username"] == "SpinWick"
        assert body["text"].endswith("\n@oncall")

    def test_rejected_message_is_not_raised(self):
        notifier = OperatorNotifier(
            "https://chat.test/hooks/abc",
            transport=httpx.MockTransport(lambda request: httpx.Response(400)),
        )
        assert not run_async(notifier.notify("hello"))


# ---------------------------------------------------------------------------
# Events and metrics
# ---------------------------------------------------------------------------


class TestEventEmitters:
    def test_logging_levels(self, caplog):
        emitter = LoggingEventEmitter(logger_name="spinwick.test.events")
        with caplog.at_level(logging.DEBUG, logger="spinwick.test.events"):
            run_async(emitter.emit(_make_event(EventType.COMPLETION)))
            run_async(emitter.emit(_make_event(EventType.ERROR, error_message="boom")))

        assert [r.levelno for r in caplog.records] == [logging.INFO, logging.ERROR]
        assert caplog.records[1].error_message == "boom"
        assert "SpinWick create error for mattermost-pr-42" in caplog.records[1].getMessage()

    def test_composite_survives_failing_child(self):
        failing = AsyncMock()
        failing.emit.side_effect = RuntimeError("sink down")
        healthy = AsyncMock()
        composite = CompositeEventEmitter([failing, healthy])

        run_async(composite.emit(_make_event()))

        healthy.emit.assert_awaited_once()

    def test_create_event_emitter(self):
        assert isinstance(create_event_emitter(), LoggingEventEmitter)
        assert isinstance(
            create_event_emitter([EventSinkType.LOGGING, EventSinkType.METRICS]),
            CompositeEventEmitter,
        )

    def test_null_emitter(self):
        run_async(NullEventEmitter().emit(_make_event()))

    def test_event_log_dict(self):
        data = _make_event(installation_id="inst-1").to_log_dict()
        assert data["event_type"] == "completion"
        assert data["installation_id"] == "inst-1"
        assert data["operation"] == "create"


class TestMetrics:
    def test_metrics_emitter_counts_outcomes(self):
        registry = CollectorRegistry()
        emitter = MetricsEventEmitter(registry=registry)

        run_async(emitter.emit(_make_event(EventType.COMPLETION)))
        run_async(emitter.emit(_make_event(EventType.TIMEOUT)))

        labels = {"repository": "mattermost/mattermost", "operation": "create"}
        assert registry.get_sample_value(
            "spinwick_operations_total", {**labels, "outcome": "completion"}
        ) == 1.0
        assert registry.get_sample_value(
            "spinwick_operations_total", {**labels, "outcome": "timeout"}
        ) == 1.0
        assert registry.get_sample_value(
            "spinwick_operation_duration_seconds_count", {"operation": "create"}
        ) == 2.0

    def test_in_flight_tracking(self):
        registry = CollectorRegistry()
        metrics = SpinWickMetrics(registry=registry)

        with metrics.track_in_flight("update"):
            inside = registry.get_sample_value(
                "spinwick_operations_in_flight", {"operation": "update"}
            )
        after = registry.get_sample_value("spinwick_operations_in_flight", {"operation": "update"})

        assert (inside, after) == (1.0, 0.0)

    def test_channel_gauge_reads_registry(self):
        registry = CollectorRegistry()
        metrics = SpinWickMetrics(registry=registry)
        channels = WebhookChannelRegistry()
        metrics.bind_channel_registry(channels)

        async def register():
            channels.request_channel("inst-1")

        run_async(register())
        assert registry.get_sample_value("spinwick_webhook_channels") == 1.0
