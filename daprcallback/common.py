"""Shared types for application callback services: events, subscriptions and the service interface."""

from __future__ import annotations

import abc
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Union

APP_API_TOKEN_ENV_VAR = "APP_API_TOKEN"
"""Environment variable holding the token that callers must present."""

API_TOKEN_KEY = "dapr-api-token"
"""Metadata key (header name) that carries the app API token."""


class ServiceError(Exception):
    """Raised for invalid registrations and failed callbacks.

    Topic event handlers may raise it with ``retry=True`` to ask for the
    message to be delivered again; any other failure drops the message.
    """

    def __init__(self, message: str = "", *, retry: bool = False) -> None:
        super().__init__(message)
        self.retry = retry


class CallContext:
    """Per-call metadata with case-insensitive keys and multiple values per key."""

    def __init__(
        self, metadata: Optional[Mapping[str, Union[str, Iterable[str]]]] = None
    ) -> None:
        self._metadata: dict[str, list[str]] = {}
        for key, value in (metadata or {}).items():
            if isinstance(value, str):
                self.set(key, value)
            else:
                self.set(key, *value)

    def get(self, key: str) -> list[str]:
        """Return the values stored under ``key``; empty if there are none."""
        return list(self._metadata.get(key.lower(), ()))

    def set(self, key: str, *args: str) -> None:
        """Replace the values stored under ``key``."""
        self._metadata[key.lower()] = list(args)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._metadata

    def __iter__(self) -> Iterator[str]:
        return iter(self._metadata)

    def __len__(self) -> int:
        return len(self._metadata)

    def __repr__(self) -> str:
        return f"CallContext({self._metadata!r})"


@dataclass
class TopicEvent:
    """Content of an inbound topic message (a CloudEvents envelope)."""

    id: str = ""
    spec_version: str = ""
    type: str = ""
    source: str = ""
    data_content_type: str = ""
    data: Any = None
    raw_data: bytes = b""
    data_base64: str = ""
    subject: str = ""
    topic: str = ""
    pubsub_name: str = ""

    def decode(self) -> Any:
        """Parse the raw payload as JSON."""
        try:
            return json.loads(self.raw_data)
        except (ValueError, TypeError) as exc:
            raise ServiceError(f"cannot decode event data: {exc}") from exc


@dataclass
class InvocationEvent:
    """Input of a service invocation."""

    data: Optional[bytes] = None
    content_type: str = ""
    data_type_url: str = ""
    verb: str = ""
    query_string: str = ""


@dataclass
class Content:
    """Generic payload with its content type."""

    data: Optional[bytes] = None
    content_type: str = ""
    data_type_url: str = ""


@dataclass
class BindingEvent:
    """Input of a binding invocation handler."""

    data: Optional[bytes] = None
    metadata: Optional[dict[str, str]] = None


@dataclass
class Subscription:
    """A single topic subscription as requested by the application."""

    pubsub_name: str = ""
    topic: str = ""
    metadata: Optional[dict[str, str]] = None
    route: str = ""
    match: str = ""
    priority: int = 0
    disable_topic_validation: bool = False


class SubscriptionStatus(str, Enum):
    """How the runtime should treat a delivered message."""

    SUCCESS = "SUCCESS"
    RETRY = "RETRY"
    DROP = "DROP"


@dataclass
class SubscriptionResponse:
    """Handling hint returned by the subscriber."""

    status: SubscriptionStatus = SubscriptionStatus.SUCCESS

    def to_json(self) -> str:
        """Return the response as compact JSON."""
        return json.dumps(
            {"status": SubscriptionStatus(self.status).value}, separators=(",", ":")
        )


ServiceInvocationHandler = Callable[[CallContext, InvocationEvent], Optional[Content]]
TopicEventHandler = Callable[[CallContext, TopicEvent], None]
BindingInvocationHandler = Callable[[CallContext, BindingEvent], Optional[bytes]]
HealthCheckHandler = Callable[[CallContext], None]


class Service(abc.ABC):
    """A callback service that the runtime calls into."""

    @abc.abstractmethod
    def add_health_check_handler(self, name: str, fn: HealthCheckHandler) -> None:
        """Register the application health check handler."""

    @abc.abstractmethod
    def add_service_invocation_handler(
        self, name: str, fn: ServiceInvocationHandler
    ) -> None:
        """Register a service invocation handler under ``name``."""

    @abc.abstractmethod
    def add_topic_event_handler(self, sub: Subscription, fn: TopicEventHandler) -> None:
        """Register a topic event handler for a subscription."""

    @abc.abstractmethod
    def add_binding_invocation_handler(
        self, name: str, fn: BindingInvocationHandler
    ) -> None:
        """Register an input binding handler under ``name``."""

    @abc.abstractmethod
    def start(self) -> None:
        """Start serving."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop the previously started service."""

    @abc.abstractmethod
    def graceful_stop(self) -> None:
        """Stop the previously started service gracefully."""