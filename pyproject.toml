[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "daprcallback"
version = "1.0.0"
description = "Application-side callbacks for a Dapr sidecar: service invocation, pub/sub topic events, input bindings and health checks over HTTP, plus transport-independent gRPC-style callback handlers."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "dapr",
    "pubsub",
    "cloudevents",
    "bindings",
    "service-invocation",
    "microservices",
    "callbacks",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["daprcallback"]

[tool.hatch.build.targets.sdist]
include = ["daprcallback", "tests", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
