"""HTTP client for the Orange Cyberdefense Datalake API.

Provides the two operations the matching pipeline needs:

    fetch(query_hash)  -> atom values returned by a saved query
    confirm(values)    -> {atom_value: record} for values Datalake knows

Credentials come from an injected provider; nothing here reads the process
environment or prompts the user. Failures surface as ApiError (the API
answered with an error status) or TransportError (no usable response). No
retries are attempted.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

from .config import RemoteConfig
from .errors import ApiError, MissingInputError, TransportError

logger = logging.getLogger(__name__)

Credentials = Tuple[str, str]
CredentialProvider = Callable[[], Credentials]

USERNAME_VAR = "OCD_DTL_USERNAME"
PASSWORD_VAR = "OCD_DTL_PASSWORD"


class EnvCredentialProvider:
    """Reads credentials from environment variables when called."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ

    def available(self) -> bool:
        return bool(self.environ.get(USERNAME_VAR)) and bool(self.environ.get(PASSWORD_VAR))

    def __call__(self) -> Credentials:
        username = self.environ.get(USERNAME_VAR)
        password = self.environ.get(PASSWORD_VAR)
        if not username or not password:
            raise MissingInputError(f"{USERNAME_VAR} and {PASSWORD_VAR} must both be set")
        return username, password


def _error_detail(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or None
    if isinstance(body, dict):
        for key in ("message", "detail", "error", "msg"):
            if body.get(key):
                return str(body[key])
    return str(body) if body else None


class DatalakeClient:
    """Synchronous Datalake client wrapping ``httpx.Client``."""

    def __init__(
        self,
        config: RemoteConfig,
        credentials: CredentialProvider,
        client: Optional[httpx.Client] = None,
    ):
        self.config = config
        self._credentials = credentials
        self._client = client or httpx.Client(base_url=config.url, timeout=config.request_timeout)
        self._token: Optional[str] = None
        self._auth_lock = threading.Lock()

    def __enter__(self) -> "DatalakeClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, *, authenticated: bool = True, **kwargs: Any) -> Any:
        if authenticated:
            kwargs["headers"] = {**kwargs.get("headers", {}), "Authorization": f"Token {self.authenticate()}"}
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ApiError(
                f"{method} {path} returned {e.response.status_code}",
                detail=_error_detail(e.response),
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(e) from e

        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"{method} {path} returned a non-JSON body", detail=response.text[:200]) from e

    def authenticate(self) -> str:
        """Exchange credentials for an access token, once per client."""
        with self._auth_lock:
            if self._token is None:
                username, password = self._credentials()
                body = self._request(
                    "POST",
                    "auth/token/",
                    authenticated=False,
                    json={"email": username, "password": password},
                )
                token = body.get("access_token") if isinstance(body, dict) else None
                if not token:
                    raise ApiError("authentication succeeded without an access token")
                self._token = token
                logger.debug("Authenticated against %s", self.config.url)
        return self._token

    def fetch(self, query_hash: str) -> List[str]:
        """Return the deduplicated atom values matched by ``query_hash``."""
        body = self._request(
            "POST",
            "mrti/bulk-search/",
            json={"query_hash": query_hash, "query_fields": ["atom_value"]},
        )
        rows = body.get("results", []) if isinstance(body, dict) else []
        values: Dict[str, None] = {}
        for row in rows:
            if isinstance(row, (list, tuple)):
                value = row[0] if row else None
            elif isinstance(row, dict):
                value = row.get("atom_value")
            else:
                value = row
            if value:
                values[str(value).strip()] = None
        logger.info("Query hash %s returned %d values", query_hash, len(values))
        return list(values)

    def confirm(self, values: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        """Look up ``values`` in batches and keep those Datalake knows."""
        found: Dict[str, Dict[str, Any]] = {}
        size = self.config.lookup_batch_size
        for start in range(0, len(values), size):
            batch = list(values[start:start + size])
            body = self._request(
                "POST",
                "mrti/threats/bulk-lookup/",
                json={"atom_values": batch, "hashkey_only": False},
            )
            for record in body.get("results", []) if isinstance(body, dict) else []:
                if not isinstance(record, dict) or not record.get("threat_found", True):
                    continue
                value = record.get("atom_value")
                if value:
                    found[str(value)] = record
            logger.debug("Looked up %d/%d values", min(start + size, len(values)), len(values))
        return found
