"""Serve an application with Granian."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import msgspec
from granian import Granian

from .application import EkklesiaApp

_DEV_PROFILES = frozenset({"development", "dev", "local", "test"})

# Granian resolves its target by import path; the loader hands back this app.
_registered_app: EkklesiaApp | None = None


class ServerConfig(msgspec.Struct, frozen=True):
    host: str = "0.0.0.0"
    port: int = 8000
    interface: str = "asgi"
    loop: str = "auto"
    workers: int = 1
    certificate_path: str | Path | None = None
    private_key_path: str | Path | None = None
    profile: str = "production"

    @property
    def is_development(self) -> bool:
        return self.profile.lower() in _DEV_PROFILES


def _register_current_app(app: EkklesiaApp) -> None:
    global _registered_app
    _registered_app = app


def _clear_current_app() -> None:
    global _registered_app
    _registered_app = None


def _current_app_loader() -> EkklesiaApp:
    if _registered_app is None:
        raise RuntimeError("no Ekklesia application registered for Granian")
    return _registered_app


def _granian_kwargs(config: ServerConfig) -> dict[str, Any]:
    """Translate ``config`` into ``Granian(...)`` keyword arguments.

    TLS is enabled only when both files exist. Outside development profiles
    a configured but missing file is an error rather than a silent
    fallback to plain HTTP.
    """

    tls = {
        "ssl_cert": None if config.certificate_path is None else Path(config.certificate_path),
        "ssl_key": None if config.private_key_path is None else Path(config.private_key_path),
    }
    missing = [f"{name} ({path})" for name, path in tls.items() if path is not None and not path.exists()]
    if missing and not config.is_development:
        raise RuntimeError(f"TLS assets not found for {config.profile!r} profile: {', '.join(missing)}")
    kwargs: dict[str, Any] = {
        "address": config.host,
        "port": config.port,
        "interface": config.interface,
        "loop": config.loop,
        "workers": config.workers,
    }
    if not missing and all(path is not None for path in tls.values()):
        kwargs.update(tls)
    return kwargs


def create_server(app: EkklesiaApp, config: ServerConfig | None = None) -> Granian:
    kwargs = _granian_kwargs(config or ServerConfig())
    _register_current_app(app)
    return Granian("ekklesia.server:_current_app_loader", **kwargs)


def run(app: EkklesiaApp, config: ServerConfig | None = None) -> None:
    """Block serving ``app`` until Granian exits."""

    server = create_server(app, config)
    try:
        server.serve(target_loader=_current_app_loader, wrap_loader=False)
    finally:
        _clear_current_app()


__all__ = ["ServerConfig", "create_server", "run"]
