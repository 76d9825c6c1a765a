"""HTTP callback service: routes for invocations, bindings, topics and health checks."""

from __future__ import annotations

import json
import os
import socketserver
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

from daprcallback.common import (
    API_TOKEN_KEY,
    APP_API_TOKEN_ENV_VAR,
    BindingEvent,
    BindingInvocationHandler,
    CallContext,
    HealthCheckHandler,
    InvocationEvent,
    Service,
    ServiceError,
    ServiceInvocationHandler,
    Subscription,
    SubscriptionResponse,
    SubscriptionStatus,
    TopicEvent,
    TopicEventHandler,
)
from daprcallback.http_events import TopicEventEnvelope
from daprcallback.http_router import Request, Response, Router, options_handler
from daprcallback.subscriptions import TopicRegistrar

PUBSUB_HANDLER_SUCCESS_STATUS_CODE = 200
"""Acknowledges a topic event."""

PUBSUB_HANDLER_RETRY_STATUS_CODE = 500
"""Asks the runtime to deliver a topic event again."""

PUBSUB_HANDLER_DROP_STATUS_CODE = 303
"""Tells the runtime to drop a topic event."""

_SHUTDOWN_TIMEOUT = 5.0
_DEFAULT_PORT = 80


class ServerClosedError(ServiceError):
    """Raised by ``start`` once the server has been stopped."""

    def __init__(self) -> None:
        super().__init__("http: Server closed")


def _with_slash(route: str) -> str:
    return route if route.startswith("/") else "/" + route


def _split_address(address: str) -> tuple[str, int]:
    if not address:
        return "", _DEFAULT_PORT
    if ":" not in address:
        raise ServiceError(f"address {address}: missing port in address")
    host, _, port_text = address.rpartition(":")
    host = host.removeprefix("[").removesuffix("]")
    if not port_text:
        return host, _DEFAULT_PORT
    try:
        port = int(port_text)
    except ValueError as exc:
        raise ServiceError(f"address {address}: invalid port") from exc
    return host, port


def _status_body(status: SubscriptionStatus) -> bytes:
    return (SubscriptionResponse(status).to_json() + "\n").encode("utf-8")


class _HTTPServer(ThreadingHTTPServer):
    def server_bind(self) -> None:
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = str(host)
        self.server_port = port


def _handler_for(server: "HttpServer") -> type[BaseHTTPRequestHandler]:
    class _CallbackRequestHandler(BaseHTTPRequestHandler):
        protocol_version = "HTTP/1.1"

        def _serve(self) -> None:
            try:
                length = int(self.headers.get("Content-Length") or 0)
            except ValueError:
                self._write(Response.error("invalid content length", 400))
                return
            body = self.rfile.read(length) if length > 0 else b""
            headers: dict[str, list[str]] = {}
            for name, value in self.headers.items():
                headers.setdefault(name, []).append(value)
            request = Request(
                method=self.command, path=self.path, body=body, headers=headers
            )
            self._write(server.dispatch(request))

        def _write(self, response: Response) -> None:
            self.send_response(response.status)
            for name in response.headers:
                for value in response.headers.get_all(name):
                    self.send_header(name, value)
            if response.status not in (204, 304) and "Content-Length" not in response.headers:
                self.send_header("Content-Length", str(len(response.body)))
            self.end_headers()
            if self.command != "HEAD" and response.body:
                self.wfile.write(response.body)

        do_GET = do_POST = do_PUT = do_DELETE = do_PATCH = do_OPTIONS = do_HEAD = _serve

        def log_message(self, format: str, *args: object) -> None:
            pass

    return _CallbackRequestHandler


class HttpServer(Service):
    """Serves the runtime's HTTP callbacks through a router."""

    def __init__(
        self,
        address: str = "",
        router: Optional[Router] = None,
        auth_token: Optional[str] = None,
    ) -> None:
        self.address = address
        self._router = router if router is not None else Router()
        self._topic_registrar = TopicRegistrar()
        self._auth_token = (
            auth_token
            if auth_token is not None
            else os.environ.get(APP_API_TOKEN_ENV_VAR, "")
        )
        self._lock = threading.Lock()
        self._closed = False
        self._httpd: Optional[_HTTPServer] = None

    # Bindings

    def add_binding_invocation_handler(
        self, route: str, fn: Optional[BindingInvocationHandler]
    ) -> None:
        """Serve an input binding at ``route``."""
        if not route:
            raise ServiceError("binding route required")
        if fn is None:
            raise ServiceError("binding handler required")

        def handle(request: Request) -> Response:
            metadata: dict[str, str] = {}
            for name in request.headers:
                values = request.headers.get_all(name)
                if values:
                    metadata[name] = values[-1]
            event = BindingEvent(data=request.body, metadata=metadata)
            try:
                out = fn(CallContext(), event)
            except Exception as exc:
                return Response.error(str(exc), 500)
            response = Response(body=out if out is not None else b"{}")
            response.headers.add("Content-Type", "application/json")
            return response

        self._router.handle(_with_slash(route), options_handler(handle))

    # Health check

    def add_health_check_handler(
        self, route: str, fn: Optional[HealthCheckHandler]
    ) -> None:
        """Serve the application health check at ``route``."""
        if fn is None:
            raise ServiceError("health check handler required")

        def handle(request: Request) -> Response:
            try:
                fn(CallContext())
            except Exception as exc:
                return Response.error(str(exc), 500)
            return Response(status=204)

        self._router.handle(_with_slash(route), options_handler(handle))

    # Service invocation

    def add_service_invocation_handler(
        self, route: str, fn: Optional[ServiceInvocationHandler]
    ) -> None:
        """Serve a service invocation handler at ``route``."""
        if route in ("", "/"):
            raise ServiceError("service route required")
        if fn is None:
            raise ServiceError("invocation handler required")

        def handle(request: Request) -> Response:
            if self._auth_token:
                token = request.headers.get(API_TOKEN_KEY, "")
                if not token or token != self._auth_token:
                    return Response.error("authentication failed.", 203)
            event = InvocationEvent(
                data=request.body,
                content_type=request.headers.get("Content-Type", ""),
                verb=request.method,
                query_string=request.query,
            )
            ctx = CallContext(
                {name: request.headers.get_all(name) for name in request.headers}
            )
            try:
                content = fn(ctx, event)
            except Exception as exc:
                return Response.error(str(exc), 500)
            response = Response()
            if content is not None and content.data is not None:
                if content.content_type:
                    response.headers["Content-Type"] = content.content_type
                response.body = content.data
            return response

        self._router.handle(_with_slash(route), options_handler(handle))

    # Topics

    def add_topic_event_handler(
        self, sub: Optional[Subscription], fn: Optional[TopicEventHandler]
    ) -> None:
        """Register a topic handler and serve it at the subscription's route."""
        if sub is None:
            raise ServiceError("subscription required")
        if not sub.route:
            raise ServiceError("handler route name")
        self._topic_registrar.add_subscription(sub, fn)
        assert fn is not None

        def handle(request: Request) -> Response:
            body = request.body or b""
            if not body:
                return Response.error("nil content", PUBSUB_HANDLER_DROP_STATUS_CODE)
            try:
                envelope = TopicEventEnvelope.from_json(body)
            except ServiceError as exc:
                return Response.error(str(exc), PUBSUB_HANDLER_DROP_STATUS_CODE)

            if not envelope.pubsub_name:
                envelope.topic = sub.pubsub_name
            if not envelope.topic:
                envelope.topic = sub.topic

            data, raw_data = envelope.get_data()
            event = TopicEvent(
                id=envelope.id,
                spec_version=envelope.spec_version,
                type=envelope.type,
                source=envelope.source,
                data_content_type=envelope.data_content_type,
                data=data,
                raw_data=raw_data,
                data_base64=envelope.data_base64,
                subject=envelope.subject,
                pubsub_name=envelope.pubsub_name,
                topic=envelope.topic,
            )

            try:
                fn(CallContext(), event)
            except Exception as exc:
                status = (
                    SubscriptionStatus.RETRY
                    if getattr(exc, "retry", False)
                    else SubscriptionStatus.DROP
                )
            else:
                status = SubscriptionStatus.SUCCESS
            response = Response(
                status=PUBSUB_HANDLER_SUCCESS_STATUS_CODE, body=_status_body(status)
            )
            response.headers.add("Content-Type", "application/json")
            return response

        self._router.handle(sub.route, options_handler(handle))

    # Base routes and dispatch

    def register_base_handlers(self) -> None:
        """Serve the subscription listing and the liveness probe."""

        def subscribe(request: Request) -> Response:
            subs = [s.to_dict() for s in self._topic_registrar.subscriptions()]
            body = json.dumps(subs, separators=(",", ":")) + "\n"
            response = Response(body=body.encode("utf-8"))
            response.headers["Content-Type"] = "application/json"
            return response

        def healthz(request: Request) -> Response:
            return Response(status=200)

        self._router.handle("/dapr/subscribe", subscribe)
        self._router.get("/healthz", healthz)

    def dispatch(self, request: Request) -> Response:
        """Route ``request`` to its handler and return the response."""
        return self._router.dispatch(request)

    # Lifecycle

    def start(self) -> None:
        """Serve HTTP on the configured address; blocks until stopped.

        Raises ``ServerClosedError`` when the server has been stopped.
        """
        self.register_base_handlers()
        with self._lock:
            if self._closed:
                raise ServerClosedError()
            if self._httpd is not None:
                raise ServiceError("server already started")
            httpd = _HTTPServer(_split_address(self.address), _handler_for(self))
            self._httpd = httpd
        httpd.serve_forever()
        raise ServerClosedError()

    def stop(self) -> None:
        """Stop serving, waiting up to five seconds for the server to shut down."""
        with self._lock:
            self._closed = True
            httpd = self._httpd
        if httpd is None:
            return
        worker = threading.Thread(target=httpd.shutdown, daemon=True)
        worker.start()
        worker.join(_SHUTDOWN_TIMEOUT)
        if worker.is_alive():
            raise ServiceError("server shutdown timed out")
        httpd.server_close()

    def graceful_stop(self) -> None:
        """Same as ``stop``."""
        self.stop()