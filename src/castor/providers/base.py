"""Provider protocol and the shared httpx transport base."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, runtime_checkable

import httpx

from castor.models import ChatOptions, EmbeddingOptions, Message
from castor.providers._errors import (
    araise_for_status,
    decode_json_body,
    raise_for_status,
    wrap_transport_error,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from castor.config import ProviderConfig
    from castor.errors import APIError
    from castor.models import ChatResponse, EmbeddingResponse
    from castor.providers.streaming import StreamingResponse

log = logging.getLogger(__name__)

MessageLike = Message | dict[str, Any]


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by providers."""

    streaming: bool = True
    embeddings: bool = False
    tools: bool = True
    vision: bool = True
    json_mode: bool = False


@runtime_checkable
class Provider(Protocol):
    """The contract every vendor adapter satisfies."""

    name: str

    async def chat(
        self, messages: Sequence[MessageLike], options: ChatOptions | None = None
    ) -> ChatResponse:
        """Send a conversation and return the unified response."""
        ...

    async def chat_stream(
        self, messages: Sequence[MessageLike], options: ChatOptions | None = None
    ) -> StreamingResponse:
        """Send a conversation and return an incremental text stream."""
        ...

    async def complete(
        self, prompt: str, options: ChatOptions | None = None
    ) -> ChatResponse:
        """Single-prompt sugar over :meth:`chat`."""
        ...

    async def embed(
        self, input: str | Sequence[str], options: EmbeddingOptions | None = None
    ) -> EmbeddingResponse:
        """Embed one or more texts."""
        ...

    def get_models(self) -> tuple[str, ...]:
        """Known chat model identifiers."""
        ...

    def get_embedding_models(self) -> tuple[str, ...]:
        """Known embedding model identifiers."""
        ...

    def supports_streaming(self) -> bool:
        """Whether ``chat_stream`` is available."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature flags for this adapter."""
        ...

    async def aclose(self) -> None:
        """Release pooled connections."""
        ...


class HTTPProvider:
    """Common plumbing for JSON-over-HTTPS vendor adapters.

    Subclasses set the class attributes and implement the payload builders and
    parsers. The httpx client is created lazily and reused across calls;
    pass ``transport`` to substitute one (``httpx.MockTransport`` in tests).
    """

    name: ClassVar[str] = "unknown"
    error_cls: ClassVar[type[APIError]]
    models: ClassVar[tuple[str, ...]] = ()
    embedding_models: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        config: ProviderConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config!r})"

    # ------------------------------------------------------------------ #
    # Surface shared by every vendor
    # ------------------------------------------------------------------ #

    async def complete(
        self, prompt: str, options: ChatOptions | None = None
    ) -> ChatResponse:
        """Wrap ``prompt`` as a single user message and call :meth:`chat`.

        System text, if any, travels in ``options.system``.
        """
        return await self.chat([Message.user(prompt)], options)

    async def chat(
        self, messages: Sequence[MessageLike], options: ChatOptions | None = None
    ) -> ChatResponse:
        raise NotImplementedError

    def get_models(self) -> tuple[str, ...]:
        return self.models

    def get_embedding_models(self) -> tuple[str, ...]:
        return self.embedding_models

    def supports_streaming(self) -> bool:
        return self.capabilities.streaming

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities()

    async def aclose(self) -> None:
        """Close the pooled httpx client, if one was created."""
        client = self._client
        self._client = None
        if client is not None:
            await client.aclose()

    async def __aenter__(self) -> HTTPProvider:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Hooks
    # ------------------------------------------------------------------ #

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _params(self) -> dict[str, str]:
        return {}

    # ------------------------------------------------------------------ #
    # Transport
    # ------------------------------------------------------------------ #

    def _get_client(self) -> httpx.AsyncClient:
        """Lazily initialize and return the pooled async client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self.config.base_url}/",
                headers=self._headers(),
                timeout=httpx.Timeout(self.config.timeout_s),
                transport=self._transport,
            )
        return self._client

    def _merged_params(self, extra: Mapping[str, str] | None) -> dict[str, str] | None:
        params = {**self._params(), **(extra or {})}
        return params or None

    async def _post_json(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        phase: str = "chat",
        params: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        client = self._get_client()
        log.debug("%s %s: POST %s", self.name, phase, path)
        try:
            response = await client.post(
                path, json=payload, params=self._merged_params(params)
            )
        except httpx.RequestError as e:
            raise wrap_transport_error(e, provider=self.name, phase=phase) from e
        log.debug("%s %s: status=%s", self.name, phase, response.status_code)
        raise_for_status(response, self.error_cls)
        return decode_json_body(response, provider=self.name)

    async def _get_json(
        self, path: str, *, phase: str = "models"
    ) -> dict[str, Any]:
        client = self._get_client()
        log.debug("%s %s: GET %s", self.name, phase, path)
        try:
            response = await client.get(path, params=self._merged_params(None))
        except httpx.RequestError as e:
            raise wrap_transport_error(e, provider=self.name, phase=phase) from e
        raise_for_status(response, self.error_cls)
        return decode_json_body(response, provider=self.name)

    async def _open_stream(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        params: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """POST and return the response with its body still unread.

        Non-2xx statuses raise the vendor error before any event is read.
        """
        client = self._get_client()
        request = client.build_request(
            "POST", path, json=payload, params=self._merged_params(params)
        )
        log.debug("%s stream: POST %s", self.name, path)
        try:
            response = await client.send(request, stream=True)
        except httpx.RequestError as e:
            raise wrap_transport_error(e, provider=self.name, phase="stream") from e
        await araise_for_status(response, self.error_cls)
        return response


def coerce_messages(messages: Sequence[MessageLike]) -> list[Message]:
    """Accept :class:`Message` objects or OpenAI-style dicts."""
    return [m if isinstance(m, Message) else Message.from_dict(m) for m in messages]


def coerce_options(options: ChatOptions | None) -> ChatOptions:
    return options if options is not None else ChatOptions()


def coerce_embedding_options(options: EmbeddingOptions | None) -> EmbeddingOptions:
    return options if options is not None else EmbeddingOptions()
