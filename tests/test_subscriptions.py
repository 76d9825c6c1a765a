import pytest

from daprcallback.common import ServiceError, Subscription
from daprcallback.subscriptions import (
    TopicRegistrar,
    TopicSubscription,
)


def _handler(ctx, event):
    return None


def _other_handler(ctx, event):
    return None


# --- TopicSubscription ---------------------------------------------------


def test_duplicate_metadata():
    sub = TopicSubscription("test", "mytopic")
    sub.set_metadata({"test": "test"})
    with pytest.raises(ServiceError) as exc:
        sub.set_metadata({"test": "test"})
    assert str(exc.value) == (
        "subscription for topic mytopic on pubsub test already has metadata set"
    )


def test_duplicate_route():
    sub = TopicSubscription("test", "mytopic")
    sub.set_default_route("/test")
    assert sub.route == "/test"
    with pytest.raises(ServiceError) as exc:
        sub.set_default_route("/test")
    assert str(exc.value) == (
        "subscription for topic mytopic on pubsub test already has route /test"
    )


def test_duplicate_route_after_routing_rule():
    sub = TopicSubscription("test", "mytopic")
    sub.add_routing_rule("/other", 'event.type == "test"', 0)
    sub.set_default_route("/test")
    with pytest.raises(ServiceError) as exc:
        sub.set_default_route("/test")
    assert str(exc.value) == (
        "subscription for topic mytopic on pubsub test already has route /test"
    )


def test_default_route_after_routing_rule():
    sub = TopicSubscription("test", "mytopic")
    sub.set_default_route("/test")
    assert sub.route == "/test"
    sub.add_routing_rule("/other", 'event.type == "test"', 0)
    assert sub.route == ""
    assert sub.routes.default == "/test"
    with pytest.raises(ServiceError) as exc:
        sub.set_default_route("/test")
    assert str(exc.value) == (
        "subscription for topic mytopic on pubsub test already has route /test"
    )


def test_duplicate_routing_rule_priority():
    sub = TopicSubscription("test", "mytopic")
    sub.add_routing_rule("/other", 'event.type == "other"', 1)
    with pytest.raises(ServiceError) as exc:
        sub.add_routing_rule("/test", 'event.type == "test"', 1)
    assert str(exc.value) == (
        "subscription for topic mytopic on pubsub test already has a routing rule "
        "with priority 1"
    )


def test_zero_priority_may_repeat_and_keeps_insertion_order():
    sub = TopicSubscription("test", "mytopic")
    sub.add_routing_rule("/a", "a", 0)
    sub.add_routing_rule("/b", "b", 0)
    assert [rule.path for rule in sub.routes.rules] == ["/a", "/b"]


def test_priority_ordering():
    sub = TopicSubscription("test", "mytopic")
    sub.add_routing_rule("/100", 'event.type == "100"', 100)
    sub.add_routing_rule("/1", 'event.type == "1"', 1)
    sub.add_routing_rule("/50", 'event.type == "50"', 50)
    sub.set_default_route("/default")
    assert sub.routes.default == "/default"
    rules = sub.routes.rules
    assert len(rules) == 3
    assert rules[0].path == "/1"
    assert rules[0].match == 'event.type == "1"'
    assert rules[1].path == "/50"
    assert rules[1].match == 'event.type == "50"'
    assert rules[2].path == "/100"
    assert rules[2].match == 'event.type == "100"'


def test_routing_rule_requires_path():
    sub = TopicSubscription("test", "mytopic")
    with pytest.raises(ServiceError, match="path is required for routing rules"):
        sub.add_routing_rule("", 'event.type == "test"', 0)


def test_subscription_to_dict_with_route_only():
    sub = TopicSubscription("test", "mytopic")
    sub.set_default_route("/test")
    assert sub.to_dict() == {"pubsubname": "test", "topic": "mytopic", "route": "/test"}


def test_subscription_to_dict_with_routes_and_metadata():
    sub = TopicSubscription("messages", "test")
    sub.set_metadata({"rawPayload": "true"})
    sub.set_default_route("/")
    sub.add_routing_rule("/other", 'event.type == "other"', 1)
    assert sub.to_dict() == {
        "pubsubname": "messages",
        "topic": "test",
        "routes": {
            "rules": [{"match": 'event.type == "other"', "path": "/other"}],
            "default": "/",
        },
        "metadata": {"rawPayload": "true"},
    }


def test_subscription_to_dict_omits_empty_metadata():
    sub = TopicSubscription("messages", "test")
    sub.set_metadata({})
    assert "metadata" not in sub.to_dict()


# --- TopicRegistrar ------------------------------------------------------


@pytest.mark.parametrize(
    "sub, fn, message",
    [
        (Subscription(pubsub_name="", topic="test"), _handler, "pub/sub name required"),
        (Subscription(pubsub_name="test", topic=""), _handler, "topic name required"),
        (Subscription(pubsub_name="test", topic="test"), None, "topic handler required"),
        (
            Subscription(
                pubsub_name="test", topic="test", route="", match='event.type == "test"'
            ),
            _handler,
            "path is required for routing rules",
        ),
    ],
    ids=[
        "pubsub required",
        "topic required",
        "handler required",
        "route required for routing rule",
    ],
)
def test_registrar_validation_errors(sub, fn, message):
    registrar = TopicRegistrar()
    with pytest.raises(ServiceError) as exc:
        registrar.add_subscription(sub, fn)
    assert str(exc.value) == message


def test_registrar_success_default_route():
    registrar = TopicRegistrar()
    registrar.add_subscription(Subscription(pubsub_name="test", topic="test"), _handler)
    registration = registrar["test-test"]
    assert registration.default_handler is _handler
    assert registration.route_handlers == {"": _handler}


def test_registrar_success_routing_rule():
    registrar = TopicRegistrar()
    registrar.add_subscription(
        Subscription(
            pubsub_name="test", topic="test", route="/test", match='event.type == "test"'
        ),
        _handler,
    )
    registration = registrar["test-test"]
    assert registration.default_handler is None
    assert registration.route_handlers == {"/test": _handler}
    assert [rule.path for rule in registration.subscription.routes.rules] == ["/test"]


def test_add_subscription_metadata():
    registrar = TopicRegistrar()
    sub = Subscription(pubsub_name="pubsubname", topic="topic", metadata={"key": "value"})
    registrar.add_subscription(sub, _handler)
    expected = TopicSubscription(
        pubsub_name=sub.pubsub_name, topic=sub.topic, metadata=sub.metadata
    )
    assert registrar["pubsubname-topic"].subscription == expected


def test_registrar_default_and_rule_share_registration():
    registrar = TopicRegistrar()
    registrar.add_subscription(
        Subscription(pubsub_name="messages", topic="test", route="/test"), _handler
    )
    registrar.add_subscription(
        Subscription(
            pubsub_name="messages",
            topic="test",
            route="/other",
            match='event.type == "other"',
        ),
        _other_handler,
    )
    assert len(registrar) == 1
    registration = registrar["messages-test"]
    assert registration.default_handler is _handler
    assert registration.route_handlers == {"/test": _handler, "/other": _other_handler}
    subscription = registration.subscription
    assert subscription.route == ""
    assert subscription.routes.default == "/test"
    assert [(r.path, r.match) for r in subscription.routes.rules] == [
        ("/other", 'event.type == "other"')
    ]


def test_registrar_lookup_with_validation_disabled():
    registrar = TopicRegistrar()
    registrar.add_subscription(
        Subscription(pubsub_name="messages", topic="*", disable_topic_validation=True),
        _handler,
    )
    assert list(registrar) == ["messages"]
    registration = registrar.lookup("messages", "test")
    assert registration is registrar["messages"]
    assert registrar.lookup("other", "test") is None


def test_registrar_lookup_prefers_exact_topic():
    registrar = TopicRegistrar()
    registrar.add_subscription(
        Subscription(pubsub_name="messages", topic="*", disable_topic_validation=True),
        _handler,
    )
    registrar.add_subscription(
        Subscription(pubsub_name="messages", topic="test"), _other_handler
    )
    assert registrar.lookup("messages", "test").default_handler is _other_handler
    assert registrar.lookup("messages", "else").default_handler is _handler


def test_registrar_subscriptions_in_order():
    registrar = TopicRegistrar()
    registrar.add_subscription(
        Subscription(pubsub_name="messages", topic="test", route="/"), _handler
    )
    registrar.add_subscription(
        Subscription(pubsub_name="messages", topic="errors", route="/errors"), _handler
    )
    subs = registrar.subscriptions()
    assert [(s.pubsub_name, s.topic) for s in subs] == [
        ("messages", "test"),
        ("messages", "errors"),
    ]


def test_registrar_duplicate_default_route_raises():
    registrar = TopicRegistrar()
    sub = Subscription(pubsub_name="messages", topic="test", route="/test")
    registrar.add_subscription(sub, _handler)
    with pytest.raises(ServiceError) as exc:
        registrar.add_subscription(sub, _other_handler)
    assert str(exc.value) == (
        "subscription for topic test on pubsub messages already has route /test"
    )
    assert registrar["messages-test"].default_handler is _handler