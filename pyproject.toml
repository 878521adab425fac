[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ginctx"
version = "0.1.0"
description = "Per-request context for HTTP handler chains: parameters, query and form access, uploads, cookies, error collection, content negotiation and response rendering."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "http",
    "web",
    "context",
    "middleware",
    "request",
    "response",
    "content-negotiation",
    "multipart",
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
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ginctx"]

[tool.hatch.build.targets.sdist]
include = ["ginctx", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"
