"""Application callback handlers for a Dapr sidecar: an HTTP server and gRPC-style callbacks."""

__version__ = "1.0.0"