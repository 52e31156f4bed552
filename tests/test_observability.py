from types import SimpleNamespace

from nano_banana.core import observability


def _settings(dsn: str) -> SimpleNamespace:
    return SimpleNamespace(
        sentry_dsn=dsn,
        env="production",
        app_name="nano-banana-mcp",
        app_version="0.1.0",
        sentry_traces_sample_rate=0.2,
    )


def test_init_sentry_skips_when_dsn_missing(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(observability.sentry_sdk, "init", lambda **kwargs: calls.append(kwargs))
    monkeypatch.setattr(observability, "get_settings", lambda: _settings(""))

    assert observability.init_sentry() is False
    assert calls == []


def test_init_sentry_initializes_once(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(observability.sentry_sdk, "init", lambda **kwargs: calls.append(kwargs))
    monkeypatch.setattr(observability, "get_settings", lambda: _settings("https://abc@example.ingest.sentry.io/1"))

    assert observability.init_sentry() is True
    assert observability.init_sentry() is True
    assert len(calls) == 1
    assert calls[0]["dsn"] == "https://abc@example.ingest.sentry.io/1"
    assert calls[0]["release"] == "nano-banana-mcp@0.1.0"
    observability.reset_observability_for_tests()


def test_capture_and_scope_are_noops_before_init(monkeypatch) -> None:
    captured = []
    monkeypatch.setattr(observability.sentry_sdk, "capture_exception", lambda exc: captured.append(exc))

    with observability.sentry_scope(task_id="t1", request_id="r1"):
        observability.capture_exception(RuntimeError("ignored"))

    assert captured == []
