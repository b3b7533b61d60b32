from __future__ import annotations

import base64
import binascii
import os
import ssl
import tempfile
from dataclasses import dataclass
from typing import Any

import httpx

from .models import Endpoint, InstanceConfig
from .settings import settings


class SourceError(Exception):
    """The endpoint list could not be retrieved (network, auth or payload)."""


@dataclass(frozen=True)
class KubeCredentials:
    """PEM material for mutual TLS against the Kubernetes API."""

    client_cert: str | None = None
    client_key: str | None = None
    ca_cert: str | None = None

    @classmethod
    def from_base64(
        cls, client_cert: str | None, client_key: str | None, ca_cert: str | None
    ) -> "KubeCredentials":
        """Decode base64-encoded PEM blobs. Raises ValueError on bad input."""
        return cls(
            client_cert=_b64decode(client_cert, "client_cert"),
            client_key=_b64decode(client_key, "client_key"),
            ca_cert=_b64decode(ca_cert, "ca_cert"),
        )


def _b64decode(raw: str | None, field: str) -> str | None:
    if not raw:
        return None
    try:
        return base64.b64decode(raw, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"{field} is not valid base64-encoded PEM: {e}") from e


def _ssl_context(creds: KubeCredentials | None) -> ssl.SSLContext | bool:
    if creds is None or not (creds.ca_cert or creds.client_cert):
        return True
    ctx = ssl.create_default_context(cadata=creds.ca_cert) if creds.ca_cert else ssl.create_default_context()
    if creds.client_cert and creds.client_key:
        # load_cert_chain only accepts paths.
        with tempfile.TemporaryDirectory() as tmp:
            cert_path = os.path.join(tmp, "client.crt")
            key_path = os.path.join(tmp, "client.key")
            with open(cert_path, "w") as f:
                f.write(creds.client_cert)
            with open(key_path, "w") as f:
                f.write(creds.client_key)
            ctx.load_cert_chain(cert_path, key_path)
    return ctx


def parse_endpoints(payload: Any) -> frozenset[Endpoint]:
    """Turn a v1 Endpoints object into the set of ready address/port pairs.

    Every ready address is paired with every port of its subset; an object
    without subsets (no ready pods) yields an empty set.
    """
    if not isinstance(payload, dict):
        raise SourceError(f"Unexpected endpoints payload: {payload!r}")
    out: set[Endpoint] = set()
    try:
        for subset in payload.get("subsets") or []:
            for addr in subset.get("addresses") or []:
                for port in subset.get("ports") or []:
                    out.add(Endpoint(address=addr["ip"], port=int(port["port"])))
    except (KeyError, TypeError, ValueError) as e:
        raise SourceError(f"Malformed endpoints payload: {type(e).__name__}: {e}") from e
    return frozenset(out)


class KubeEndpointSource:
    """Reads the ready endpoints of one service from the Kubernetes API."""

    def __init__(
        self,
        api_url: str,
        namespace: str,
        service_name: str,
        credentials: KubeCredentials | None = None,
        timeout_s: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.namespace = namespace
        self.service_name = service_name
        self.credentials = credentials
        self.timeout_s = timeout_s if timeout_s is not None else settings.source_timeout_s
        self._transport = transport

    @classmethod
    def from_config(cls, config: InstanceConfig) -> "KubeEndpointSource":
        return cls(
            api_url=config.endpoint,
            namespace=config.namespace,
            service_name=config.service_name,
            credentials=config.credentials,
        )

    @property
    def path(self) -> str:
        return f"/api/v1/namespaces/{self.namespace}/endpoints/{self.service_name}"

    def list_endpoints(self) -> frozenset[Endpoint]:
        try:
            with httpx.Client(
                base_url=self.api_url,
                timeout=self.timeout_s,
                verify=_ssl_context(self.credentials),
                transport=self._transport,
            ) as client:
                resp = client.get(self.path)
        except (httpx.HTTPError, httpx.InvalidURL, ssl.SSLError, OSError) as e:
            raise SourceError(f"Kubernetes API unreachable: {type(e).__name__}: {e}") from e
        if resp.status_code != 200:
            raise SourceError(f"GET {self.path} returned HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise SourceError("Kubernetes API returned invalid JSON") from e
        return parse_endpoints(data)
