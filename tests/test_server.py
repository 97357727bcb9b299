from __future__ import annotations

import pytest

from ekklesia.application import EkklesiaApp
from ekklesia.server import ServerConfig, _clear_current_app, _current_app_loader, _granian_kwargs, create_server, run


def _granian_spy(monkeypatch):
    calls: list[dict[str, object]] = []

    class DummyGranian:
        def __init__(self, target: str, **kwargs):
            calls.append({"target": target, "kwargs": kwargs})
            self.served: list[dict[str, object]] = []

        def serve(self, **kwargs):
            self.served.append(kwargs)
            calls.append({"serve": kwargs})

    monkeypatch.setattr("ekklesia.server.Granian", DummyGranian)
    return calls, DummyGranian


def test_create_server_configures_tls(monkeypatch, tmp_path) -> None:
    app = EkklesiaApp()
    certificate = tmp_path / "server.crt"
    key = tmp_path / "server.key"
    for path in (certificate, key):
        path.write_text("sample", encoding="utf-8")
    calls, DummyGranian = _granian_spy(monkeypatch)

    server = create_server(
        app,
        ServerConfig(host="127.0.0.1", port=9443, workers=2, certificate_path=certificate, private_key_path=key),
    )

    assert isinstance(server, DummyGranian)
    assert calls[0]["target"] == "ekklesia.server:_current_app_loader"
    kwargs = calls[0]["kwargs"]
    assert kwargs["address"] == "127.0.0.1"
    assert kwargs["port"] == 9443
    assert kwargs["ssl_cert"] == certificate
    assert kwargs["ssl_key"] == key
    try:
        assert _current_app_loader() is app
    finally:
        _clear_current_app()


def test_production_profile_requires_existing_tls_assets(tmp_path) -> None:
    config = ServerConfig(certificate_path=tmp_path / "missing.crt", private_key_path=tmp_path / "missing.key")

    with pytest.raises(RuntimeError, match="TLS assets not found"):
        _granian_kwargs(config)


def test_development_profile_allows_plain_http(tmp_path) -> None:
    config = ServerConfig(profile="development", certificate_path=tmp_path / "missing.crt")

    kwargs = _granian_kwargs(config)

    assert "ssl_cert" not in kwargs
    assert kwargs["interface"] == "asgi"


def test_run_serves_and_clears_registration(monkeypatch) -> None:
    calls, _ = _granian_spy(monkeypatch)

    run(EkklesiaApp(), ServerConfig(profile="test"))

    assert calls[-1]["serve"]["wrap_loader"] is False
    with pytest.raises(RuntimeError, match="no Ekklesia application registered"):
        _current_app_loader()
