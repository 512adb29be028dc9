"""HTTP client for the OpenCode server."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from cody_routines.errors import RemoteAPIError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class HealthResponse:
    healthy: bool
    version: str


@dataclass(frozen=True)
class Session:
    id: str
    title: str | None = None


@dataclass(frozen=True)
class ModelRef:
    provider_id: str
    model_id: str

    def to_dict(self) -> dict[str, str]:
        return {"providerID": self.provider_id, "modelID": self.model_id}


def parse_model(model: str | None) -> ModelRef | None:
    """Parse a "provider/model" string, splitting on the first slash.

    Returns None (with a warning) for malformed values so the server default
    model is used instead.
    """
    if not model:
        return None
    provider_id, _, model_id = model.partition("/")
    if provider_id and model_id:
        return ModelRef(provider_id=provider_id, model_id=model_id)
    logger.warning(
        "invalid_model_format",
        extra={"gen_ai.request.model": model, "expected": "provider/model"},
    )
    return None


def _build_message_body(
    message: str, model: ModelRef | None, agent: str | None
) -> dict[str, Any]:
    body: dict[str, Any] = {"parts": [{"type": "text", "text": message}]}
    if model:
        body["model"] = model.to_dict()
    if agent:
        body["agent"] = agent
    return body


class OpenCodeClient:
    """Minimal async client for the OpenCode session API.

    Example:
        async with OpenCodeClient("http://localhost:4096") as client:
            session_id = await client.create_session_with_message(
                message="Summarize yesterday's commits",
            )
    """

    def __init__(
        self,
        server_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = server_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "OpenCodeClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self, method: str, path: str, action: str, **kwargs: Any
    ) -> httpx.Response:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteAPIError(f"{action} failed: {e}") from e

        if not response.is_success:
            raise RemoteAPIError(
                f"{action} failed: {response.status_code} "
                f"{response.reason_phrase} - {response.text}",
                status_code=response.status_code,
            )
        return response

    async def health(self) -> HealthResponse:
        """Check server health."""
        response = await self._request("GET", "/global/health", "Health check")
        data = response.json()
        if not isinstance(data, dict):
            raise RemoteAPIError(
                f"Health check failed: expected a JSON object, got {response.text}"
            )
        return HealthResponse(
            healthy=bool(data.get("healthy")),
            version=str(data.get("version", "unknown")),
        )

    async def create_session(self, title: str | None = None) -> Session:
        """Create a new session."""
        payload = {"title": title} if title else {}
        response = await self._request(
            "POST", "/session", "Create session", json=payload
        )
        data = response.json()
        return Session(id=data["id"], title=data.get("title"))

    async def send_message_async(
        self,
        session_id: str,
        message: str,
        model: ModelRef | None = None,
        agent: str | None = None,
    ) -> None:
        """Send a message without waiting for the session to respond."""
        await self._request(
            "POST",
            f"/session/{session_id}/prompt_async",
            "Send async message",
            json=_build_message_body(message, model, agent),
        )

    async def create_session_with_message(
        self,
        message: str,
        title: str | None = None,
        model: str | None = None,
        agent: str | None = None,
    ) -> str:
        """Create a session and deliver its first message.

        Returns:
            The new session id.
        """
        session = await self.create_session(title)
        logger.info(
            "session_created",
            extra={"session.id": session.id, "session.title": title},
        )

        await self.send_message_async(
            session.id, message, model=parse_model(model), agent=agent
        )
        logger.info("session_message_sent", extra={"session.id": session.id})
        return session.id
