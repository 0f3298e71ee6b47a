"""
OpenCode REST API client.

Usage:
    from ocstream.client.rest import AsyncRestClient
    rest = AsyncRestClient("http://localhost:4096")
"""

from ocstream.client.rest.client import (
    AsyncRestClient,
    FetchError,
    Project,
    Session,
    check_server_health,
    normalize_base_url,
    project_path,
    request_headers,
)

__all__ = [
    "AsyncRestClient",
    "FetchError",
    "Project",
    "Session",
    "check_server_health",
    "normalize_base_url",
    "project_path",
    "request_headers",
]
