from __future__ import annotations

from typing import Any, Iterable

import httpx

from .models import Endpoint, PoolConfig
from .settings import settings


class StoreError(Exception):
    """A BIG-IP call failed (transport error or unexpected status)."""


def split_pool(pool: str) -> tuple[str, str]:
    """``/Common/web`` -> (``Common``, ``web``); a bare name lives in ``Common``."""
    parts = [p for p in pool.strip().split("/") if p]
    if not parts:
        raise ValueError("Empty pool name.")
    if len(parts) == 1:
        return "Common", parts[0]
    return parts[0], "/".join(parts[1:])


def _uri_name(partition: str, name: str) -> str:
    return f"~{partition}~{name.replace('/', '~')}"


def member_name(ep: Endpoint) -> str:
    # BIG-IP separates IPv6 address and port with a dot.
    sep = "." if ":" in ep.address else ":"
    return f"{ep.address}{sep}{ep.port}"


def parse_member(item: dict[str, Any]) -> Endpoint:
    name = str(item["name"]).rsplit("/", 1)[-1]
    sep = ":" if name.count(":") == 1 else "."
    host, _, port = name.rpartition(sep)
    address = str(item.get("address") or host).split("%", 1)[0]
    return Endpoint(address=address, port=int(port))


class BigIPPoolStore:
    """LTM pool access through iControl REST.

    Membership changes go through the pool's ``members`` subcollection one
    member at a time, so each call is idempotent on its own.
    """

    def __init__(
        self,
        base_url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        verify: bool | None = None,
        timeout_s: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.bigip_url).rstrip("/")
        self.username = username if username is not None else settings.bigip_user
        self.password = password if password is not None else (settings.bigip_password or "")
        self.verify = settings.bigip_verify_tls if verify is None else verify
        self.timeout_s = timeout_s if timeout_s is not None else settings.store_timeout_s
        self._transport = transport

    def _request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        try:
            with httpx.Client(
                base_url=self.base_url,
                auth=(self.username, self.password),
                verify=self.verify,
                timeout=self.timeout_s,
                transport=self._transport,
            ) as client:
                return client.request(method, path, json=json)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise StoreError(f"{method} {path} failed: {type(e).__name__}: {e}") from e

    @staticmethod
    def _fail(resp: httpx.Response, what: str) -> StoreError:
        detail = ""
        try:
            detail = resp.json().get("message", "")
        except (ValueError, AttributeError):
            detail = resp.text[:200]
        return StoreError(f"{what}: HTTP {resp.status_code} {detail}".rstrip())

    def _pool_path(self, pool: str) -> str:
        partition, name = split_pool(pool)
        return f"/mgmt/tm/ltm/pool/{_uri_name(partition, name)}"

    def exists(self, pool: str) -> bool:
        resp = self._request("GET", self._pool_path(pool))
        if resp.status_code == 404:
            return False
        if resp.status_code != 200:
            raise self._fail(resp, f"read pool {pool}")
        return True

    def read_members(self, pool: str) -> frozenset[Endpoint] | None:
        """Current members, or None when the pool does not exist."""
        resp = self._request("GET", f"{self._pool_path(pool)}/members")
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise self._fail(resp, f"read members of {pool}")
        try:
            items = resp.json().get("items") or []
            return frozenset(parse_member(i) for i in items)
        except (ValueError, KeyError, AttributeError) as e:
            raise StoreError(f"Unexpected member list for {pool}: {type(e).__name__}: {e}") from e

    def create(self, pool: str, pool_config: PoolConfig, members: Iterable[Endpoint] = ()) -> None:
        partition, name = split_pool(pool)
        body: dict[str, Any] = {
            "name": name,
            "partition": partition,
            "loadBalancingMode": pool_config.load_balancing_mode,
            "members": [
                {"name": member_name(ep), "address": ep.address, "partition": partition}
                for ep in sorted(members)
            ],
        }
        if pool_config.monitor:
            body["monitor"] = pool_config.monitor
        resp = self._request("POST", "/mgmt/tm/ltm/pool", json=body)
        if resp.status_code not in (200, 201):
            raise self._fail(resp, f"create pool {pool}")

    def add_members(self, pool: str, members: Iterable[Endpoint]) -> None:
        partition, _ = split_pool(pool)
        path = f"{self._pool_path(pool)}/members"
        for ep in sorted(members):
            body = {"name": member_name(ep), "address": ep.address, "partition": partition}
            resp = self._request("POST", path, json=body)
            # 409: already a member.
            if resp.status_code not in (200, 201, 409):
                raise self._fail(resp, f"add {ep} to {pool}")

    def remove_members(self, pool: str, members: Iterable[Endpoint]) -> None:
        partition, _ = split_pool(pool)
        for ep in sorted(members):
            path = f"{self._pool_path(pool)}/members/{_uri_name(partition, member_name(ep))}"
            resp = self._request("DELETE", path)
            if resp.status_code not in (200, 204, 404):
                raise self._fail(resp, f"remove {ep} from {pool}")

    def delete(self, pool: str) -> bool:
        """Delete the pool; False when it was already gone."""
        resp = self._request("DELETE", self._pool_path(pool))
        if resp.status_code == 404:
            return False
        if resp.status_code not in (200, 204):
            raise self._fail(resp, f"delete pool {pool}")
        return True
