"""HTTP endpoints for setup, authentication and identity lookup."""

from __future__ import annotations

from typing import Any

import msgspec

from .application import EkklesiaApp
from .authentication import AuthenticationService, PasswordHasher, SessionTokens
from .bootstrap import BootstrapService, CredentialHasher
from .config import AppConfig
from .database import Database
from .exceptions import HTTPError
from .http import Status
from .identity import AssembledIdentity, IdentityResolver
from .middleware import bearer_authentication
from .requests import Request
from .responses import JSONResponse, Response
from .routing import get, post
from .tenancy import TenantContext
from .validation import login_schema

INITIALIZED_MESSAGE = "System initialized successfully"

_login_schema = login_schema()


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except msgspec.DecodeError as exc:
        raise HTTPError(
            Status.BAD_REQUEST,
            {"code": "invalid_json", "message": "Request body is not valid JSON"},
        ) from exc


@get("/setup/status", name="setup-status", public=True)
async def setup_status(bootstrap: BootstrapService) -> Response:
    status = await bootstrap.status()
    return JSONResponse(status.to_payload())


@post("/setup/initialize", name="setup-initialize", public=True)
async def setup_initialize(request: Request, bootstrap: BootstrapService) -> Response:
    result = await bootstrap.initialize(await _json_body(request))
    return JSONResponse(
        {"message": INITIALIZED_MESSAGE, "user": result.user, "church": result.church},
        status=Status.CREATED,
    )


@post("/auth/login", name="auth-login", public=True)
async def login(request: Request, authentication: AuthenticationService) -> Response:
    payload = await _json_body(request)
    _login_schema.check(payload)
    result = await authentication.login(payload["email"], payload["password"])
    return JSONResponse(result)


@get("/auth/me", name="auth-me")
async def me(identity: AssembledIdentity) -> Response:
    return JSONResponse(identity)


@get("/users/{key}", name="user-detail")
async def user_detail(key: str, tenant: TenantContext, resolver: IdentityResolver) -> Response:
    identity = await resolver.resolve(key)
    # Identities in other churches are indistinguishable from missing ones.
    if identity is None or not tenant.can_access(identity.church_id):
        raise HTTPError(Status.NOT_FOUND, {"code": "not_found", "message": "User not found"})
    return JSONResponse(identity)


ROUTES = (setup_status, setup_initialize, login, me, user_detail)


def create_app(
    config: AppConfig | None = None,
    *,
    database: Database | None = None,
    password_hasher: PasswordHasher | None = None,
    credential_hasher: CredentialHasher | None = None,
    tokens: SessionTokens | None = None,
) -> EkklesiaApp:
    """Assemble an application with every service wired into dependency injection."""

    app = EkklesiaApp(config, database=database)
    settings = app.config
    hasher = password_hasher or PasswordHasher.from_config(settings.security)
    resolver = IdentityResolver(app.orm)
    bootstrap = BootstrapService(app.orm, credential_hasher or hasher, settings.bootstrap)
    authentication = AuthenticationService(
        orm=app.orm,
        resolver=resolver,
        password_hasher=hasher,
        tokens=tokens or SessionTokens.from_config(settings.security),
    )
    app.dependencies.provide(IdentityResolver, lambda: resolver)
    app.dependencies.provide(BootstrapService, lambda: bootstrap)
    app.dependencies.provide(AuthenticationService, lambda: authentication)
    app.add_middleware(bearer_authentication(authentication))
    app.include(*ROUTES)
    return app


__all__ = ["ROUTES", "create_app"]
