"""Callback handlers answering the runtime's gRPC application callbacks."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from daprcallback.common import (
    API_TOKEN_KEY,
    APP_API_TOKEN_ENV_VAR,
    BindingEvent,
    BindingInvocationHandler,
    CallContext,
    HealthCheckHandler,
    InvocationEvent,
    ServiceError,
    ServiceInvocationHandler,
    Subscription,
    TopicEvent,
    TopicEventHandler,
)
from daprcallback.subscriptions import TopicRegistrar, TopicRoutes


@dataclass
class AnyData:
    """A serialized payload together with the URL naming its type."""

    value: bytes = b""
    type_url: str = ""


@dataclass
class HTTPExtension:
    """HTTP details of an invocation that arrived over HTTP."""

    verb: str = "NONE"
    querystring: str = ""


@dataclass
class InvokeRequest:
    """A service invocation delivered by the runtime."""

    method: str = ""
    data: Optional[AnyData] = None
    content_type: str = ""
    http_extension: Optional[HTTPExtension] = None


@dataclass
class InvokeResponse:
    """The reply to a service invocation."""

    content_type: str = ""
    data: Optional[AnyData] = None


@dataclass
class BindingEventRequest:
    """An event fired by an input binding."""

    name: str = ""
    data: Optional[bytes] = None
    metadata: Optional[dict[str, str]] = None


@dataclass
class BindingEventResponse:
    """The reply to a binding event."""

    data: Optional[bytes] = None


class TopicEventStatus(Enum):
    """How the runtime should treat a delivered topic message."""

    SUCCESS = 0
    RETRY = 1
    DROP = 2


@dataclass
class TopicEventRequest:
    """A topic message in its CloudEvents envelope."""

    id: str = ""
    source: str = ""
    type: str = ""
    spec_version: str = ""
    data_content_type: str = ""
    data: bytes = b""
    topic: str = ""
    pubsub_name: str = ""
    path: str = ""


@dataclass
class TopicEventResponse:
    """The handling status reported for a topic message."""

    status: TopicEventStatus = TopicEventStatus.SUCCESS


class TopicEventError(ServiceError):
    """A topic message could not be handled; ``response`` carries the status to report."""

    def __init__(self, message: str, response: TopicEventResponse) -> None:
        super().__init__(message, retry=response.status is TopicEventStatus.RETRY)
        self.response = response


@dataclass
class TopicRuleInfo:
    """A routing rule as reported to the runtime."""

    match: str = ""
    path: str = ""


@dataclass
class TopicRoutesInfo:
    """Routing rules and default route as reported to the runtime."""

    rules: list[TopicRuleInfo] = field(default_factory=list)
    default: str = ""


@dataclass
class TopicSubscriptionInfo:
    """A topic subscription as reported to the runtime."""

    pubsub_name: str = ""
    topic: str = ""
    metadata: Optional[dict[str, str]] = None
    routes: Optional[TopicRoutesInfo] = None


def _convert_routes(routes: Optional[TopicRoutes]) -> Optional[TopicRoutesInfo]:
    if routes is None:
        return None
    return TopicRoutesInfo(
        rules=[TopicRuleInfo(match=rule.match, path=rule.path) for rule in routes.rules],
        default=routes.default,
    )


def _media_type(content_type: str) -> Optional[str]:
    base = content_type.split(";", 1)[0].strip().lower()
    return base or None


def _decode_json(raw: bytes, fallback: Any) -> Any:
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return fallback


def _event_data(raw: bytes, content_type: str) -> Any:
    if not raw:
        return raw
    media_type = _media_type(content_type)
    if media_type is None:
        return raw
    if media_type == "application/json":
        return _decode_json(raw, raw)
    if media_type == "text/plain":
        return raw.decode("utf-8", errors="replace")
    if media_type.startswith("application/") and media_type.endswith("+json"):
        return _decode_json(raw, raw)
    return raw


class GrpcCallbacks:
    """Registers application handlers and serves the runtime's callback calls."""

    def __init__(self, auth_token: Optional[str] = None) -> None:
        self._invoke_handlers: dict[str, ServiceInvocationHandler] = {}
        self._binding_handlers: dict[str, BindingInvocationHandler] = {}
        self._topic_registrar = TopicRegistrar()
        self._health_check_handler: Optional[HealthCheckHandler] = None
        self._auth_token = (
            auth_token
            if auth_token is not None
            else os.environ.get(APP_API_TOKEN_ENV_VAR, "")
        )

    # Bindings

    def add_binding_invocation_handler(
        self, name: str, fn: Optional[BindingInvocationHandler]
    ) -> None:
        """Register an input binding handler under ``name``."""
        if not name:
            raise ServiceError("binding name required")
        if fn is None:
            raise ServiceError("binding handler required")
        self._binding_handlers[name] = fn

    def list_input_bindings(self) -> list[str]:
        """Return the names of the bindings the app wants to be invoked by."""
        return list(self._binding_handlers)

    def on_binding_event(
        self, ctx: Optional[CallContext], request: Optional[BindingEventRequest]
    ) -> BindingEventResponse:
        """Run the handler registered for the binding named in ``request``."""
        if request is None:
            raise ServiceError("nil binding event request")
        fn = self._binding_handlers.get(request.name)
        if fn is None:
            raise ServiceError(f"binding not implemented: {request.name}")
        event = BindingEvent(data=request.data, metadata=request.metadata)
        try:
            data = fn(ctx if ctx is not None else CallContext(), event)
        except Exception as exc:
            raise ServiceError(
                f"error executing {request.name} binding: {exc}"
            ) from exc
        return BindingEventResponse(data=data)

    # Health check

    def add_health_check_handler(
        self, name: str, fn: Optional[HealthCheckHandler]
    ) -> None:
        """Set the health check handler; ``name`` is ignored."""
        if fn is None:
            raise ServiceError("health check handler required")
        self._health_check_handler = fn

    def health_check(self, ctx: Optional[CallContext]) -> None:
        """Run the health check handler; raises if the app is unhealthy."""
        if self._health_check_handler is None:
            raise ServiceError("health check handler not implemented")
        self._health_check_handler(ctx if ctx is not None else CallContext())

    # Service invocation

    def add_service_invocation_handler(
        self, method: str, fn: Optional[ServiceInvocationHandler]
    ) -> None:
        """Register an invocation handler; a leading slash is dropped."""
        if method in ("", "/"):
            raise ServiceError("service name required")
        method = method.removeprefix("/")
        if fn is None:
            raise ServiceError("invocation handler required")
        self._invoke_handlers[method] = fn

    def _authenticate(self, ctx: Optional[CallContext]) -> None:
        if not self._auth_token:
            return
        if ctx is None:
            raise ServiceError("authentication failed")
        values = ctx.get(API_TOKEN_KEY)
        if not values:
            raise ServiceError("authentication failed. app token key not exist")
        if values[0] != self._auth_token:
            raise ServiceError("authentication failed: app token mismatch")

    def on_invoke(
        self, ctx: Optional[CallContext], request: Optional[InvokeRequest]
    ) -> InvokeResponse:
        """Run the handler registered for the invoked method."""
        if request is None:
            raise ServiceError("nil invoke request")
        self._authenticate(ctx)
        fn = self._invoke_handlers.get(request.method)
        if fn is None:
            raise ServiceError(f"method not implemented: {request.method}")

        event = InvocationEvent(content_type=request.content_type)
        if request.data is not None:
            event.data = request.data.value
            event.data_type_url = request.data.type_url
        if request.http_extension is not None:
            event.verb = request.http_extension.verb
            event.query_string = request.http_extension.querystring

        content = fn(ctx if ctx is not None else CallContext(), event)
        if content is None:
            return InvokeResponse()
        return InvokeResponse(
            content_type=content.content_type,
            data=AnyData(
                value=content.data if content.data is not None else b"",
                type_url=content.data_type_url,
            ),
        )

    # Topics

    def add_topic_event_handler(
        self, sub: Optional[Subscription], fn: Optional[TopicEventHandler]
    ) -> None:
        """Register a topic event handler for a subscription."""
        if sub is None:
            raise ServiceError("subscription required")
        self._topic_registrar.add_subscription(sub, fn)

    def list_topic_subscriptions(self) -> list[TopicSubscriptionInfo]:
        """Return the subscriptions the app wants to receive."""
        return [
            TopicSubscriptionInfo(
                pubsub_name=sub.pubsub_name,
                topic=sub.topic,
                metadata=sub.metadata,
                routes=_convert_routes(sub.routes),
            )
            for sub in self._topic_registrar.subscriptions()
        ]

    def on_topic_event(
        self, ctx: Optional[CallContext], request: Optional[TopicEventRequest]
    ) -> TopicEventResponse:
        """Deliver a topic message to its handler and report how it went.

        Raises ``TopicEventError`` when the message must be retried or cannot
        be matched; a handler failure without retry yields a DROP response.
        """
        if request is None or not request.topic or not request.pubsub_name:
            raise TopicEventError(
                "pub/sub and topic names required",
                TopicEventResponse(TopicEventStatus.DROP),
            )
        registration = self._topic_registrar.lookup(request.pubsub_name, request.topic)
        if registration is None:
            raise TopicEventError(
                "pub/sub and topic combination not configured: "
                f"{request.pubsub_name}/{request.topic}",
                TopicEventResponse(TopicEventStatus.RETRY),
            )

        event = TopicEvent(
            id=request.id,
            source=request.source,
            type=request.type,
            spec_version=request.spec_version,
            data_content_type=request.data_content_type,
            data=_event_data(request.data, request.data_content_type),
            raw_data=request.data,
            topic=request.topic,
            pubsub_name=request.pubsub_name,
        )

        handler = registration.default_handler
        if request.path and request.path in registration.route_handlers:
            handler = registration.route_handlers[request.path]
        if handler is None:
            raise TopicEventError(
                f"route {request.path} for pub/sub and topic combination not "
                f"configured: {request.pubsub_name}/{request.topic}",
                TopicEventResponse(TopicEventStatus.RETRY),
            )

        try:
            handler(ctx if ctx is not None else CallContext(), event)
        except Exception as exc:
            if getattr(exc, "retry", False):
                raise TopicEventError(
                    str(exc), TopicEventResponse(TopicEventStatus.RETRY)
                ) from exc
            return TopicEventResponse(TopicEventStatus.DROP)
        return TopicEventResponse(TopicEventStatus.SUCCESS)