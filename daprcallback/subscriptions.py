"""Topic subscriptions, routing rules and the registry of topic handlers."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from daprcallback.common import ServiceError, Subscription, TopicEventHandler


@dataclass
class TopicRule:
    """A single routing rule: a match expression and the path to deliver to."""

    match: str
    path: str
    priority: int = 0

    def _to_dict(self) -> dict[str, str]:
        return {"match": self.match, "path": self.path}


@dataclass
class TopicRoutes:
    """The default route together with prioritised routing rules."""

    rules: list[TopicRule] = field(default_factory=list)
    default: str = ""
    _priorities: set[int] = field(
        default_factory=set, init=False, compare=False, repr=False
    )

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form, leaving out empty fields."""
        out: dict[str, Any] = {}
        if self.rules:
            out["rules"] = [rule._to_dict() for rule in self.rules]
        if self.default:
            out["default"] = self.default
        return out


@dataclass
class TopicSubscription:
    """The subscription reported to the runtime for one pub/sub topic."""

    pubsub_name: str
    topic: str
    route: str = ""
    routes: Optional[TopicRoutes] = None
    metadata: Optional[dict[str, str]] = None

    def set_metadata(self, metadata: Optional[dict[str, str]]) -> None:
        """Set the metadata; raise if it is already set."""
        if self.metadata is not None:
            raise ServiceError(
                f"subscription for topic {self.topic} on pubsub {self.pubsub_name} "
                "already has metadata set"
            )
        self.metadata = metadata

    def set_default_route(self, path: str) -> None:
        """Set the default route; raise if it is already set."""
        if self.routes is None:
            if self.route:
                raise ServiceError(
                    f"subscription for topic {self.topic} on pubsub {self.pubsub_name} "
                    f"already has route {self.route}"
                )
            self.route = path
        else:
            if self.routes.default:
                raise ServiceError(
                    f"subscription for topic {self.topic} on pubsub {self.pubsub_name} "
                    f"already has route {self.routes.default}"
                )
            self.routes.default = path

    def add_routing_rule(self, path: str, match: str, priority: int) -> None:
        """Add a routing rule, keeping rules ordered by priority.

        Rules with equal priority keep the order they were added in; a
        positive priority may be used only once.
        """
        if not path:
            raise ServiceError("path is required for routing rules")
        if self.routes is None:
            self.routes = TopicRoutes(default=self.route)
            self.route = ""
        if priority > 0 and priority in self.routes._priorities:
            raise ServiceError(
                f"subscription for topic {self.topic} on pubsub {self.pubsub_name} "
                f"already has a routing rule with priority {priority}"
            )
        self.routes.rules.append(TopicRule(match=match, path=path, priority=priority))
        self.routes.rules.sort(key=lambda rule: rule.priority)
        if priority > 0:
            self.routes._priorities.add(priority)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form, leaving out empty fields."""
        out: dict[str, Any] = {"pubsubname": self.pubsub_name, "topic": self.topic}
        if self.route:
            out["route"] = self.route
        if self.routes is not None:
            out["routes"] = self.routes.to_dict()
        if self.metadata:
            out["metadata"] = dict(self.metadata)
        return out


@dataclass
class TopicRegistration:
    """A subscription together with its default and per-route handlers."""

    subscription: TopicSubscription
    default_handler: Optional[TopicEventHandler] = None
    route_handlers: dict[str, TopicEventHandler] = field(default_factory=dict)


class TopicRegistrar(Mapping[str, TopicRegistration]):
    """Registrations keyed by ``<pubsub>-<topic>``, or by ``<pubsub>`` alone
    when topic validation is disabled."""

    def __init__(self) -> None:
        self._registrations: dict[str, TopicRegistration] = {}

    def __getitem__(self, key: str) -> TopicRegistration:
        return self._registrations[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._registrations)

    def __len__(self) -> int:
        return len(self._registrations)

    def add_subscription(
        self, sub: Subscription, fn: Optional[TopicEventHandler]
    ) -> None:
        """Register ``fn`` for the subscription's route."""
        if not sub.topic:
            raise ServiceError("topic name required")
        if not sub.pubsub_name:
            raise ServiceError("pub/sub name required")
        if fn is None:
            raise ServiceError("topic handler required")

        if sub.disable_topic_validation:
            key = sub.pubsub_name
        else:
            key = f"{sub.pubsub_name}-{sub.topic}"

        registration = self._registrations.get(key)
        if registration is None:
            registration = TopicRegistration(
                subscription=TopicSubscription(sub.pubsub_name, sub.topic)
            )
            registration.subscription.set_metadata(sub.metadata)
            self._registrations[key] = registration

        if sub.match:
            registration.subscription.add_routing_rule(sub.route, sub.match, sub.priority)
        else:
            registration.subscription.set_default_route(sub.route)
            registration.default_handler = fn
        registration.route_handlers[sub.route] = fn

    def lookup(self, pubsub_name: str, topic: str) -> Optional[TopicRegistration]:
        """Find the registration for an incoming message, or ``None``."""
        registration = self._registrations.get(f"{pubsub_name}-{topic}")
        if registration is None:
            registration = self._registrations.get(pubsub_name)
        return registration

    def subscriptions(self) -> list[TopicSubscription]:
        """Return every registered subscription in registration order."""
        return [reg.subscription for reg in self._registrations.values()]