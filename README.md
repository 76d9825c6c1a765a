# daprcallback

Building blocks for the application side of a Dapr sidecar. Your app
registers handlers; the sidecar calls back into them for service
invocation, pub/sub topic events, input bindings and health checks.
The package has no dependencies outside the standard library.

Two front ends share one set of event types (`daprcallback.common`) and
one subscription model (`daprcallback.subscriptions`):

- `daprcallback.http_service.HttpServer` is an HTTP server for the
  app-callback protocol. It implements the `daprcallback.common.Service`
  interface, including `start`, `stop` and `graceful_stop`.
- `daprcallback.grpc_service.GrpcCallbacks` implements the gRPC
  app-callback operations (`on_invoke`, `on_topic_event`,
  `on_binding_event`, `list_input_bindings`,
  `list_topic_subscriptions`, `health_check`) on plain Python request
  and response dataclasses. It has no transport of its own and no
  `start`/`stop`; you call it from whatever server you run.

## Handlers

| Registration | Handler receives | Handler returns |
| --- | --- | --- |
| `add_service_invocation_handler(name, fn)` | a `CallContext` and an `InvocationEvent` | a `Content`, or `None` |
| `add_topic_event_handler(sub, fn)` | a `CallContext` and a `TopicEvent` | nothing |
| `add_binding_invocation_handler(name, fn)` | a `CallContext` and a `BindingEvent` | response bytes, or `None` |
| `add_health_check_handler(name, fn)` | a `CallContext` | nothing |

Handlers report failure by raising. A topic event handler that raises an
exception with a true `retry` attribute — for instance
`ServiceError("busy", retry=True)` — asks for the message to be
delivered again; any other exception drops it; returning normally
acknowledges it.

Registration problems — an empty route or name, a missing handler, a
subscription without a pub/sub name or topic, a routing rule without a
route, a second default route or a repeated routing-rule priority —
raise `daprcallback.common.ServiceError` at once.

`CallContext` holds per-call metadata with case-insensitive keys and
several values per key (`get(key)` returns a list, `set(key, *values)`
replaces them).

## HTTP server

```python
from daprcallback.common import Content, ServiceError, Subscription
from daprcallback.http_service import HttpServer

server = HttpServer(":8080")

def echo(ctx, event):
    return Content(data=event.data, content_type=event.content_type)

def on_order(ctx, event):
    if event.data is None:
        raise ServiceError("no data", retry=True)

server.add_service_invocation_handler("echo", echo)
server.add_topic_event_handler(
    Subscription(pubsub_name="messages", topic="orders", route="/orders"),
    on_order,
)
server.start()  # blocks until stop() is called from another thread
```

The address is `host:port`; an empty address listens on port 80.
`start` registers the base routes, serves until `stop` is called and then
raises `ServerClosedError`; starting a stopped server raises it at once.
`stop` waits up to five seconds for the server to shut down;
`graceful_stop` does the same.

Routes and responses:

- Routes without a leading slash get one. Every registered handler
  route answers `OPTIONS` with CORS preflight headers.
- Service invocation: the body, `Content-Type`, method and query string
  go into the `InvocationEvent`; the request headers go into the
  `CallContext`. If the handler returns `Content` with data, it is the
  response body, with the content's type when one is set. A handler
  error gives 500.
- Input bindings: the body and the request headers (one value per name)
  go into the `BindingEvent`. The response is the handler's bytes, or
  `{}` when it returns `None`, as `application/json`; a handler error
  gives 500.
- Health check: 204 when the handler returns, 500 when it raises.
- Topic events: the body must be a CloudEvents JSON envelope; an empty
  or invalid body gives 303 (drop). Otherwise the answer is 200 with a
  JSON body `{"status": "SUCCESS" | "RETRY" | "DROP"}`.
- `/dapr/subscribe` lists the registered subscriptions as JSON (see
  `TopicSubscription.to_dict()`), and `GET /healthz` answers 200. These
  two are added by `register_base_handlers()`, which `start` calls.

`HttpServer.dispatch(request)` runs a request through the routes without
a socket, which is handy in tests:

```python
from daprcallback.http_router import Request

response = server.dispatch(
    Request("POST", "/echo", body=b"hi", headers={"Content-Type": "text/plain"})
)
assert response.status == 200 and response.body == b"hi"
```

The router (`daprcallback.http_router.Router`) matches static paths
before `{name}` parameter patterns, answers 404 for unknown paths and
405 for unsupported methods. You can pass your own `Router` to
`HttpServer`.

## gRPC-style callbacks

```python
from daprcallback.common import Subscription
from daprcallback.grpc_service import (
    GrpcCallbacks, TopicEventError, TopicEventRequest, TopicEventStatus,
)

callbacks = GrpcCallbacks()
callbacks.add_topic_event_handler(
    Subscription(pubsub_name="messages", topic="orders"), lambda ctx, e: None
)
response = callbacks.on_topic_event(
    None,
    TopicEventRequest(pubsub_name="messages", topic="orders",
                      data=b'{"id": 1}', data_content_type="application/json"),
)
assert response.status is TopicEventStatus.SUCCESS
```

`on_topic_event` returns SUCCESS, or DROP when the handler fails without
a retry hint. It raises `TopicEventError`, whose `response` carries the
status to report, when the handler asks for a retry (RETRY), when no
subscription matches (RETRY), when no handler serves the requested path
(RETRY) and when the pub/sub or topic name is missing (DROP). A
subscription with `disable_topic_validation=True` receives every topic
of its pub/sub component. `on_invoke` and `on_binding_event` raise
`ServiceError` for unknown methods or bindings and for handler failures;
`health_check` raises when no handler is set or the handler fails.

## Subscriptions and routing rules

Subscriptions for the same pub/sub and topic are gathered into one
`TopicSubscription` by a `TopicRegistrar`:

- a subscription without a match expression sets the default route and
  the default handler;
- a subscription with a match expression adds a `TopicRule`; rules are
  kept in ascending priority order, and rules of equal priority keep the
  order they were added in;
- a priority above zero may be used only once per topic;
- metadata is taken from the first subscription for a topic.

## Topic event data

`TopicEvent.data` holds the decoded payload and `TopicEvent.raw_data` the
bytes it came from; `TopicEvent.decode()` parses `raw_data` as JSON.

- Over HTTP, JSON in the envelope's `data` is decoded, and a string in
  it that holds escaped JSON or base64-encoded JSON is unwrapped. Without
  `data`, `data_base64` is decoded to bytes, and parsed as JSON when the
  content type is `application/json`.
- In `GrpcCallbacks`, `application/json` and `application/*+json`
  payloads are parsed as JSON, `text/plain` becomes a string, and
  anything else stays bytes.

## App API token

When the `APP_API_TOKEN` environment variable is set (or an `auth_token`
is passed to `HttpServer` or `GrpcCallbacks`), service invocations must
carry a matching `dapr-api-token` header or metadata entry. Over HTTP a
missing or wrong token is answered with 203 before the handler runs;
`GrpcCallbacks.on_invoke` raises `ServiceError`.

## What this package does not do

- It does not host actors: there are no actor routes or actor
  registration.
- It does not run a gRPC server; `GrpcCallbacks` only implements the
  callback logic.
- It is not a client for calling the sidecar's APIs.

## Running the tests

```
pip install -e ".[test]"
pytest
```