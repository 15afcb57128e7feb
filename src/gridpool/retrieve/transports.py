"""Transports: one GET against one endpoint, returning the raw body.

A transport is any callable ``(endpoint, query) -> bytes``. Every failure
(connection error, non-2xx status, empty body, timeout, missing binary)
is raised as ``FetchError`` so the retriever can decide whether to fall back.

Security requirements:
- shell=False always; the query only ever travels as a URL-encoded argument.
- Explicit timeout on every request; external tools make a single attempt
  and are killed if they outlive it.
"""

from __future__ import annotations

import functools
import http.client
import logging
import shutil
import subprocess
import urllib.error
import urllib.parse
import urllib.request
from typing import Callable

from gridpool.errors import FetchError

log = logging.getLogger(__name__)

Transport = Callable[[str, str], bytes]

DEFAULT_TIMEOUT = 360  # seconds
_USER_AGENT = "gridpool/0.1"
# Extra seconds a curl/wget process gets past its own timeout before it is killed.
_TOOL_GRACE = 10


def request_url(endpoint: str, query: str) -> str:
    """Return ``endpoint?data=<urlencoded query>``."""
    return f"{endpoint}?{urllib.parse.urlencode({'data': query})}"


def urllib_transport(endpoint: str, query: str, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """Native HTTP client (stdlib urllib)."""
    request = urllib.request.Request(
        request_url(endpoint, query), headers={"User-Agent": _USER_AGENT}
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            body = response.read()
    except urllib.error.HTTPError as exc:
        raise FetchError(f"{endpoint} returned HTTP {exc.code}") from exc
    except TimeoutError as exc:
        raise FetchError(
            f"Request to {endpoint} timed out after {timeout:g}s. Try a smaller area."
        ) from exc
    except urllib.error.URLError as exc:
        if isinstance(exc.reason, TimeoutError):
            raise FetchError(
                f"Request to {endpoint} timed out after {timeout:g}s. Try a smaller area."
            ) from exc
        raise FetchError(f"Failed to reach {endpoint}: {exc.reason}") from exc
    except http.client.HTTPException as exc:
        # e.g. IncompleteRead when the connection drops mid-body.
        raise FetchError(f"Bad or truncated response from {endpoint}: {exc!r}") from exc
    except OSError as exc:
        raise FetchError(f"Failed to reach {endpoint}: {exc}") from exc
    if not body:
        raise FetchError(f"{endpoint} returned an empty body")
    return body


def curl_transport(endpoint: str, query: str, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """Shell out to ``curl``."""
    return _run_tool(
        ["curl", "-s", "--fail", "--max-time", f"{timeout:g}", request_url(endpoint, query)],
        endpoint,
        timeout,
    )


def wget_transport(endpoint: str, query: str, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """Shell out to ``wget``."""
    return _run_tool(
        ["wget", "-qO-", "--tries=1", f"--timeout={timeout:g}", request_url(endpoint, query)],
        endpoint,
        timeout,
    )


def _run_tool(argv: list[str], endpoint: str, timeout: float) -> bytes:
    tool = argv[0]
    if shutil.which(tool) is None:
        raise FetchError(f"'{tool}' is not installed or not on PATH")
    try:
        result = subprocess.run(
            argv,
            shell=False,
            capture_output=True,
            check=False,
            timeout=timeout + _TOOL_GRACE,
        )
    except subprocess.TimeoutExpired as exc:
        raise FetchError(
            f"{tool} did not finish within {timeout:g}s for {endpoint}. Try a smaller area."
        ) from exc
    except OSError as exc:
        raise FetchError(f"Failed to run {tool}: {exc}") from exc
    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise FetchError(
            f"{tool} exited with code {result.returncode} for {endpoint}"
            + (f": {stderr}" if stderr else "")
        )
    if not result.stdout:
        raise FetchError(f"{tool} returned an empty body for {endpoint}")
    return result.stdout


_TRANSPORTS: dict[str, Callable[..., bytes]] = {
    "requests": urllib_transport,
    "native": urllib_transport,
    "curl": curl_transport,
    "wget": wget_transport,
}


def get_transport(name: str, timeout: float = DEFAULT_TIMEOUT) -> Transport:
    """Return the transport for a download method name.

    Unknown names fall back to the native client.
    """
    fn = _TRANSPORTS.get(name.lower())
    if fn is None:
        log.warning("Unknown download method '%s'; using the native client", name)
        fn = urllib_transport
    return functools.partial(fn, timeout=timeout)
