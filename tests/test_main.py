"""Tests for the service entry point."""

from __future__ import annotations

from fastapi import FastAPI

from contract_workflow import main as main_module


def test_main_configures_logging_once(monkeypatch, settings):
    """Starting the server sets up logging exactly once and hands the app to uvicorn."""
    logging_calls = []
    served = []
    monkeypatch.setattr(main_module, "get_settings", lambda: settings)
    monkeypatch.setattr(main_module, "setup_logging", lambda *args, **kwargs: logging_calls.append((args, kwargs)))
    monkeypatch.setattr(main_module.uvicorn, "run", lambda app, **kwargs: served.append((app, kwargs)))

    main_module.main()

    assert logging_calls == [(("DEBUG",), {"json_logs": settings.json_logs})]
    [(app, kwargs)] = served
    assert isinstance(app, FastAPI)
    assert kwargs["port"] == settings.port
