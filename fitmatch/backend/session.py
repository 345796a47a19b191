"""HTTP session factory for backend and geocoder calls."""

from __future__ import annotations

import requests
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import HTTP_POOL_CONNECTIONS, HTTP_POOL_MAXSIZE

__all__ = ["create_default_session", "get_default_session"]


def _build_retry() -> Retry:
    # Only idempotent reads are retried at the adapter level; writes go through
    # the request loop, which carries an idempotency key.
    return Retry(
        total=3,
        backoff_factor=1.0,
        status_forcelist=[502, 503, 504],
        allowed_methods=["GET"],
        raise_on_status=False,
    )


def create_default_session(token: str | None = None) -> Session:
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=HTTP_POOL_CONNECTIONS,
        pool_maxsize=HTTP_POOL_MAXSIZE,
        max_retries=_build_retry(),
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update(
        {
            "Accept-Encoding": "gzip, deflate",
            "Accept": "application/json",
        }
    )
    if token:
        session.headers["Authorization"] = f"Bearer {token}"
    return session


_DEFAULT_SESSION: Session | None = None


def get_default_session() -> Session:
    """Return the shared default session, creating it on first use."""

    global _DEFAULT_SESSION
    if _DEFAULT_SESSION is None:
        _DEFAULT_SESSION = create_default_session()
    return _DEFAULT_SESSION
