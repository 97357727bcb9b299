"""Ekklesia church management core: first-run setup and tenant-scoped identities."""

from .api import create_app
from .application import EkklesiaApp
from .authentication import AuthenticationService, LoginResult, PasswordHasher, SessionTokens
from .bootstrap import BootstrapResult, BootstrapService, BootstrapStatus, CredentialHasher, SetupRequest
from .config import AppConfig, BootstrapConfig, SecurityConfig, load_config_from_env
from .database import Database, DatabaseConfig, DatabaseError, PoolConfig
from .dependency import DependencyProvider
from .exceptions import (
    AlreadyInitializedError,
    AuthenticationError,
    EkklesiaError,
    HTTPError,
    PersistenceFailure,
    ValidationError,
)
from .identity import (
    AssembledIdentity,
    ChurchView,
    IdentityCredentials,
    IdentityResolver,
    MemberView,
    UserView,
)
from .migrations import MigrationRunner
from .models import Church, Member, MemberStatus, User, UserRole
from .observability import Observability, ObservabilityConfig
from .orm import ORM, DatabaseModel, Model, ModelRegistry, default_registry, model
from .requests import Request
from .responses import JSONResponse, Response
from .routing import Router, get, post, route
from .tenancy import TenantContext, derive_slug
from .testing import TestClient
from .validation import Schema, Violation, setup_schema

__all__ = [
    "ORM",
    "AlreadyInitializedError",
    "AppConfig",
    "AssembledIdentity",
    "AuthenticationError",
    "AuthenticationService",
    "BootstrapConfig",
    "BootstrapResult",
    "BootstrapService",
    "BootstrapStatus",
    "Church",
    "ChurchView",
    "CredentialHasher",
    "Database",
    "DatabaseConfig",
    "DatabaseError",
    "DatabaseModel",
    "DependencyProvider",
    "EkklesiaApp",
    "EkklesiaError",
    "HTTPError",
    "IdentityCredentials",
    "IdentityResolver",
    "JSONResponse",
    "LoginResult",
    "Member",
    "MemberStatus",
    "MemberView",
    "MigrationRunner",
    "Model",
    "ModelRegistry",
    "Observability",
    "ObservabilityConfig",
    "PasswordHasher",
    "PersistenceFailure",
    "PoolConfig",
    "Request",
    "Response",
    "Router",
    "Schema",
    "SecurityConfig",
    "SessionTokens",
    "SetupRequest",
    "TenantContext",
    "TestClient",
    "User",
    "UserRole",
    "UserView",
    "ValidationError",
    "Violation",
    "create_app",
    "default_registry",
    "derive_slug",
    "get",
    "load_config_from_env",
    "model",
    "post",
    "route",
    "setup_schema",
]
