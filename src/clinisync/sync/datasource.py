"""Data source: the narrow interface to the remote FHIR server.

:class:`HttpDataSource` talks plain JSON over ``urllib.request``.  Error
responses whose body is an ``OperationOutcome`` are returned like any
other resource, so the caller sees the server's explanation.  Everything
else that goes wrong on the wire raises :class:`DataSourceError`.
"""

from __future__ import annotations

import json
import logging
from http.client import HTTPException
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urljoin
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"
JSON_PATCH = "application/json-patch+json"


class DataSourceError(Exception):
    """Raised for transport faults and unusable server responses."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class DataSource(Protocol):
    def load(self, path: str) -> dict: ...

    def insert(self, resource_type: str, resource_id: str, payload: str) -> dict: ...

    def update(self, resource_type: str, resource_id: str, patch_payload: str) -> dict: ...

    def delete(self, resource_type: str, resource_id: str) -> dict: ...

    def post_bundle(self, payload: str) -> dict: ...


def is_operation_outcome(resource: object) -> bool:
    return isinstance(resource, dict) and resource.get("resourceType") == "OperationOutcome"


class HttpDataSource:
    """:class:`DataSource` over HTTP(S) against a FHIR server base URL."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self.headers = dict(headers or {})

    def url_for(self, path: str) -> str:
        """Resolve *path* against the base URL; absolute URLs pass through."""
        return urljoin(self.base_url, path.lstrip("/")) if "://" not in path else path

    def _request(
        self,
        method: str,
        path: str,
        body: str | None = None,
        content_type: str = FHIR_JSON,
    ) -> dict:
        url = self.url_for(path)
        headers = {"Accept": FHIR_JSON, **self.headers}
        data = None
        if body is not None:
            data = body.encode("utf-8")
            headers["Content-Type"] = content_type
        logger.debug("%s %s", method, url)

        try:
            req = Request(url, data=data, headers=headers, method=method)
            with urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read()
        except HTTPError as exc:
            try:
                outcome = _decode(exc.read())
            except (OSError, HTTPException):
                outcome = None
            finally:
                exc.close()
            if is_operation_outcome(outcome):
                logger.warning("%s %s returned HTTP %d", method, url, exc.code)
                return outcome
            raise DataSourceError(
                f"{method} {url} failed with HTTP {exc.code}", status=exc.code
            ) from exc
        except (URLError, OSError, HTTPException) as exc:
            # HTTPException covers truncated bodies and malformed status lines.
            raise DataSourceError(f"{method} {url} failed: {exc}") from exc
        except ValueError as exc:
            raise DataSourceError(f"{method} {url} is not a usable URL: {exc}") from exc

        if not raw.strip():
            # DELETE and some PATCH responses carry no body.
            return {"resourceType": "OperationOutcome", "issue": []}
        result = _decode(raw)
        if not isinstance(result, dict):
            raise DataSourceError(f"{method} {url} returned a non-JSON-object body")
        return result

    def load(self, path: str) -> dict:
        return self._request("GET", path)

    def insert(self, resource_type: str, resource_id: str, payload: str) -> dict:
        return self._request("PUT", f"{resource_type}/{resource_id}", payload, FHIR_JSON)

    def update(self, resource_type: str, resource_id: str, patch_payload: str) -> dict:
        return self._request("PATCH", f"{resource_type}/{resource_id}", patch_payload, JSON_PATCH)

    def delete(self, resource_type: str, resource_id: str) -> dict:
        return self._request("DELETE", f"{resource_type}/{resource_id}")

    def post_bundle(self, payload: str) -> dict:
        return self._request("POST", "", payload, FHIR_JSON)


def _decode(raw: bytes) -> object:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
