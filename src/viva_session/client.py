"""Viva API client with automatic token refresh and error handling.

Every request to the Viva backend flows through ``APIClient.execute``, which
attaches the session's bearer token, refreshes the token once on a 401,
backs off once when the server cannot be reached, and maps failures onto
the exceptions in ``viva_session.errors``.
"""

from __future__ import annotations

import asyncio
import types
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

import httpx
import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from .error_manager import ErrorType
from .errors import (
    APIConnectionError,
    APIErrorResponse,
    AuthenticationError,
    DecodingError,
    RefreshError,
    ResponseError,
)
from .refresh import TokenRefreshCoordinator
from .session import UserSession

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Decoder = Callable[[bytes], T]


class ErrorReporter(Protocol):
    """Receives user-facing error state changes (see ``ErrorManager``)."""

    def register_error(self, message: str, error_type: ErrorType) -> None: ...

    def clear_error(self, error_type: ErrorType) -> None: ...


@dataclass(frozen=True)
class AuthenticatedRequest:
    """A request that can be replayed unchanged for a retry."""

    method: str
    path: str
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] | None = None

    def with_headers(self, extra: Mapping[str, str]) -> AuthenticatedRequest:
        """Return a copy with extra headers merged over the existing ones."""
        return AuthenticatedRequest(
            method=self.method,
            path=self.path,
            body=self.body,
            headers={**self.headers, **extra},
            params=self.params,
        )


@dataclass
class _CallState:
    """Shared by the attempts of one ``execute`` call."""

    refreshed: bool = False


def model_decoder(response_model: Any) -> Decoder[Any]:
    """Build a decoder validating JSON bytes against a model or type."""
    if isinstance(response_model, type) and issubclass(response_model, BaseModel):
        return response_model.model_validate_json
    adapter = TypeAdapter(response_model)
    return adapter.validate_json


def ignore_body(content: bytes) -> None:
    return None


def _decode_error(error_model: type[BaseModel] | None, content: bytes) -> BaseModel | None:
    """Decode a structured error payload, or None if it has another shape."""
    if error_model is None:
        return None
    try:
        return error_model.model_validate_json(content)
    except (ValidationError, ValueError):
        return None


class APIClient:
    """Async HTTP client for the Viva API with automatic token refresh."""

    CONNECTION_RETRY_DELAY = 5.0  # Seconds; one retry only

    def __init__(
        self,
        base_url: str,
        *,
        referer: str,
        session: UserSession | None = None,
        refresh_coordinator: TokenRefreshCoordinator | None = None,
        error_reporter: ErrorReporter | None = None,
        error_model: type[BaseModel] | None = None,
        timeout: float = 30.0,
        log_bodies: bool = False,
    ):
        """Initialize the Viva API client.

        A client without a session sends anonymous requests; a client
        without a refresh coordinator treats 401 like any other error status.
        """
        self.base_url = base_url.rstrip("/")
        self.referer = referer
        self.session = session
        self.refresh_coordinator = refresh_coordinator
        self.error_reporter = error_reporter
        self.error_model = error_model
        self.timeout = timeout
        self.log_bodies = log_bodies
        self.retry_delay = self.CONNECTION_RETRY_DELAY
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> APIClient:
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_headers(self, request: AuthenticatedRequest) -> dict[str, str]:
        """Static headers, then the request's own, then the current bearer token."""
        headers = {
            "Referer": self.referer,
            "X-Request-ID": str(uuid.uuid4()),
        }
        if request.body is not None:
            headers["Content-Type"] = "application/json"
        headers.update(request.headers)

        access_token = self.session.current_access_token() if self.session else None
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _send(self, request: AuthenticatedRequest) -> httpx.Response:
        """Send the request once. Raises httpx.TransportError when no response arrives."""
        if not self._client:
            raise RuntimeError("Client not initialized. Use async context manager.")

        kwargs: dict[str, Any] = {"headers": self._get_headers(request)}
        if request.params is not None:
            kwargs["params"] = dict(request.params)
        if request.body is not None:
            kwargs["json"] = request.body

        logger.debug("request_sent", method=request.method, path=request.path)
        response = await self._client.request(request.method, request.path, **kwargs)
        logger.debug(
            "response_received",
            method=request.method,
            path=request.path,
            status=response.status_code,
            size=len(response.content),
        )
        if self.log_bodies:
            logger.debug("response_body", path=request.path, body=response.text)
        return response

    async def execute(
        self,
        request: AuthenticatedRequest,
        decode: Decoder[T],
        error_model: type[BaseModel] | None = None,
    ) -> T:
        """
        Make an authenticated request to the Viva API.

        Refreshes the access token on 401 and retries once. When no response
        is received at all, waits CONNECTION_RETRY_DELAY seconds and retries
        the whole call once. At most one refresh happens per call. Error statuses are never retried.

        Raises:
            AuthenticationError: If the session could not be refreshed
            APIConnectionError: If the server stayed unreachable
            DecodingError: If a successful response could not be decoded
            APIErrorResponse: If an error status carried a structured error
            ResponseError: If an error status carried anything else
        """
        call = _CallState()
        try:
            return await self._execute_once(request, decode, error_model, call)
        except httpx.TransportError as e:
            logger.warning(
                "request_unreachable",
                method=request.method,
                path=request.path,
                error=str(e),
                retry_in=self.retry_delay,
            )
            self._report_network_error()

        await asyncio.sleep(self.retry_delay)

        try:
            return await self._execute_once(request, decode, error_model, call)
        except httpx.TransportError as e:
            logger.error(
                "request_unreachable_after_retry",
                method=request.method,
                path=request.path,
                error=str(e),
            )
            raise APIConnectionError(f"Request failed: {e}") from e

    async def _execute_once(
        self,
        request: AuthenticatedRequest,
        decode: Decoder[T],
        error_model: type[BaseModel] | None,
        call: _CallState,
    ) -> T:
        response = await self._send(request)

        if response.status_code == 401 and self.refresh_coordinator is not None:
            # A replay after backoff reuses the refresh this call already made
            if not call.refreshed:
                # Token expired: join or start the refresh wave
                try:
                    await self.refresh_coordinator.handle_unauthorized()
                except RefreshError as e:
                    self._report_authentication_error()
                    raise AuthenticationError(e.message) from e
                call.refreshed = True

                # Retry exactly once with the renewed token
                response = await self._send(request)

            if response.status_code == 401:
                logger.error("request_unauthorized_after_refresh", path=request.path)
                if self.session is not None:
                    self.session.log_out()
                self._report_authentication_error()
                raise AuthenticationError("Request rejected after token refresh")

        return self._handle_response(request, response, decode, error_model)

    def _handle_response(
        self,
        request: AuthenticatedRequest,
        response: httpx.Response,
        decode: Decoder[T],
        error_model: type[BaseModel] | None,
    ) -> T:
        if response.is_success:
            self._clear_network_error()
            try:
                return decode(response.content)
            except (ValidationError, ValueError) as e:
                logger.error(
                    "response_decoding_failed",
                    path=request.path,
                    status=response.status_code,
                    body=response.text,
                    error=str(e),
                )
                raise DecodingError(
                    f"Failed to decode response from {request.path}", response.text
                ) from e

        error = _decode_error(error_model or self.error_model, response.content)
        if error is not None:
            logger.warning(
                "request_failed",
                path=request.path,
                status=response.status_code,
                error=str(error),
            )
            raise APIErrorResponse(response.status_code, error)

        logger.warning(
            "request_failed",
            path=request.path,
            status=response.status_code,
            body=response.text,
        )
        raise ResponseError(response.status_code, response.text)

    def _report_network_error(self) -> None:
        if self.error_reporter is not None:
            self.error_reporter.register_error(
                APIConnectionError.friendly_message or "", ErrorType.NETWORK
            )

    def _clear_network_error(self) -> None:
        if self.error_reporter is not None:
            self.error_reporter.clear_error(ErrorType.NETWORK)

    def _report_authentication_error(self) -> None:
        if self.error_reporter is not None:
            self.error_reporter.register_error(
                AuthenticationError.friendly_message or "", ErrorType.AUTHENTICATION
            )

    # Request helpers

    async def request(
        self,
        method: str,
        path: str,
        response_model: Any = None,
        *,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        error_model: type[BaseModel] | None = None,
    ) -> Any:
        """Build an AuthenticatedRequest and execute it.

        Pydantic models passed as body are serialised with their aliases.
        """
        if isinstance(body, BaseModel):
            body = body.model_dump(mode="json", by_alias=True, exclude_none=True)
        request = AuthenticatedRequest(
            method=method,
            path=path,
            body=body,
            headers=dict(headers or {}),
            params=params,
        )
        decode = model_decoder(response_model) if response_model is not None else ignore_body
        return await self.execute(request, decode, error_model)

    async def get(self, path: str, response_model: Any = None, **kwargs: Any) -> Any:
        return await self.request("GET", path, response_model, **kwargs)

    async def post(self, path: str, response_model: Any = None, **kwargs: Any) -> Any:
        return await self.request("POST", path, response_model, **kwargs)

    async def put(self, path: str, response_model: Any = None, **kwargs: Any) -> Any:
        return await self.request("PUT", path, response_model, **kwargs)

    async def patch(self, path: str, response_model: Any = None, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, response_model, **kwargs)

    async def delete(self, path: str, response_model: Any = None, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, response_model, **kwargs)
