from __future__ import annotations

import os
from urllib.parse import urlparse

from cdn_resolver.models import HostInfo

_DEFAULT_PORTS = {"http": 80, "https": 443}


def host_info_from_url(page_url: str | None) -> HostInfo:
    if not page_url:
        return HostInfo()
    parsed = urlparse(page_url)
    try:
        port = parsed.port
    except ValueError:
        port = None
    return HostInfo(
        hostname=parsed.hostname,
        port=port,
        scheme=parsed.scheme or "http",
        pathname=parsed.path or "/",
    )


def host_info_from_env() -> HostInfo:
    page_url = os.getenv("RESOLVER_PAGE_URL")
    if page_url:
        return host_info_from_url(page_url)

    hostname = os.getenv("RESOLVER_HOST")
    if not hostname:
        return HostInfo()
    port_raw = os.getenv("RESOLVER_PORT")
    try:
        port = int(port_raw) if port_raw else None
    except ValueError:
        port = None
    return HostInfo(hostname=hostname, port=port)


def derive_project_base_path(pathname: str, *, is_local: bool) -> str:
    """Directory part of the page path, e.g. ``/my-resume/docs/fullstack`` -> ``/my-resume/docs/``.

    Local development servers serve from the root, so the result is empty there.
    """

    if is_local:
        return ""
    segments = [segment for segment in pathname.split("/") if segment]
    base_segments = segments[:-1]
    if not base_segments:
        return ""
    return "/" + "/".join(base_segments) + "/"


def host_prefix(host: HostInfo) -> str:
    if not host.hostname:
        return ""
    port = host.port
    suffix = f":{port}" if port and port != _DEFAULT_PORTS.get(host.scheme) else ""
    return f"{host.scheme}://{host.hostname}{suffix}"
