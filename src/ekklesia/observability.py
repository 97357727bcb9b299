"""One JSON log line per request event, tagged with a request id."""

from __future__ import annotations

import json
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

import msgspec

if TYPE_CHECKING:
    from .requests import Request
    from .responses import Response

_MAX_REQUEST_ID_LENGTH = 128


class ObservabilityConfig(msgspec.Struct, frozen=True):
    enabled: bool = True
    logger_name: str = "ekklesia.observability"
    request_id_header: str = "x-request-id"


@dataclass(slots=True)
class RequestObservation:
    request_id: str
    method: str
    path: str
    started: float = field(default_factory=time.perf_counter)

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.started) * 1000.0, 3)

    def fields(self) -> dict[str, Any]:
        return {"request_id": self.request_id, "http.method": self.method, "http.path": self.path}


def random_request_id(size: int) -> str:
    if size <= 0:
        raise ValueError("size must be positive")
    return secrets.token_hex(size)


class Observability:
    """Request lifecycle hooks called by the application around every dispatch.

    Every hook is a no-op when ``config.enabled`` is false, and
    :meth:`on_request_start` then returns ``None``.
    """

    def __init__(
        self,
        config: ObservabilityConfig | None = None,
        *,
        id_generator: Callable[[int], str] | None = None,
    ) -> None:
        self.config = config or ObservabilityConfig()
        self._logger = logging.getLogger(self.config.logger_name)
        self._new_id = id_generator or random_request_id

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def on_request_start(self, request: "Request") -> RequestObservation | None:
        if not self.enabled:
            return None
        observation = RequestObservation(self._request_id(request), request.method, request.path)
        self._emit(logging.INFO, "request.start", observation)
        return observation

    def on_request_success(self, observation: RequestObservation | None, response: "Response") -> "Response":
        if observation is None:
            return response
        self._emit(
            logging.INFO,
            "request.success",
            observation,
            {"http.status": response.status, "duration_ms": observation.elapsed_ms()},
        )
        return self.tag(observation, response)

    def on_request_error(
        self,
        observation: RequestObservation | None,
        error: BaseException,
        *,
        status_code: int | None = None,
    ) -> None:
        if observation is None:
            return
        level = logging.WARNING if status_code is not None and status_code < 500 else logging.ERROR
        self._emit(
            level,
            "request.error",
            observation,
            {"error_type": type(error).__name__, "http.status": status_code, "duration_ms": observation.elapsed_ms()},
        )

    def tag(self, observation: RequestObservation | None, response: "Response") -> "Response":
        """Add the request id header unless the response already carries one."""

        header = self.config.request_id_header
        if observation is None or response.header(header) is not None:
            return response
        return response.with_headers([(header, observation.request_id)])

    def _request_id(self, request: "Request") -> str:
        candidate = (request.header(self.config.request_id_header) or "").strip()
        if 0 < len(candidate) <= _MAX_REQUEST_ID_LENGTH and candidate.isprintable():
            return candidate
        return self._new_id(8)

    def _emit(
        self,
        level: int,
        event: str,
        observation: RequestObservation,
        extra: dict[str, Any] | None = None,
    ) -> None:
        payload = {"event": event, **observation.fields()}
        payload.update((key, value) for key, value in (extra or {}).items() if value is not None)
        self._logger.log(level, json.dumps(payload, separators=(",", ":")))


__all__ = ["Observability", "ObservabilityConfig", "RequestObservation"]
