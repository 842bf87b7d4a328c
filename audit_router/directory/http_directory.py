"""
compliance-audit-router: HTTP Directory Resolver
================================================
Looks users up through a REST front of the corporate directory.

  GET {directory_base_url}/users/{username}
      200 → {"username"|"uid", "display_name"|"displayName"|"cn",
             "email"|"mail", "manager"}
      404 → unknown user

``manager`` may be a bare username or an LDAP DN such as
``uid=msmith,ou=users,dc=example,dc=com``.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import httpx

from ..pipeline.models import Identity
from .base import IdentityNotFound, IdentityResolver, IdentityUnavailable

logger = logging.getLogger(__name__)


def manager_username(value: Any) -> Optional[str]:
    """Normalise a manager link to a username."""
    if isinstance(value, dict):
        value = value.get("username") or value.get("uid")
    if not isinstance(value, str) or not value.strip():
        return None
    value = value.strip()
    if "=" in value:
        first_rdn = value.split(",", 1)[0]
        attr, _, rdn_value = first_rdn.partition("=")
        if attr.strip().lower() in ("uid", "cn") and rdn_value.strip():
            return rdn_value.strip()
        return None
    return value


def identity_from_record(record: Dict[str, Any], requested: str) -> Identity:
    username = record.get("username") or record.get("uid") or requested
    return Identity(
        username=str(username),
        display_name=str(record.get("display_name") or record.get("displayName") or record.get("cn") or username),
        email=str(record.get("email") or record.get("mail") or ""),
        manager=manager_username(record.get("manager")),
    )


class HttpDirectoryResolver(IdentityResolver):
    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 5.0,
        require_manager: bool = False,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._token = token
        self._require_manager = require_manager
        self._client = client or httpx.AsyncClient(base_url=self._base, timeout=timeout)

    def is_configured(self) -> bool:
        return bool(self._base)

    def _headers(self) -> Dict[str, str]:
        h: Dict[str, str] = {"Accept": "application/json"}
        if self._token:
            h["Authorization"] = f"Bearer {self._token}"
        return h

    async def _fetch(self, username: str) -> Identity:
        try:
            resp = await self._client.get(f"/users/{quote(username, safe='')}", headers=self._headers())
        except httpx.TimeoutException as exc:
            raise IdentityUnavailable(username, "directory request timed out") from exc
        except httpx.HTTPError as exc:
            raise IdentityUnavailable(username, f"directory request failed: {exc}") from exc

        if resp.status_code == 404:
            raise IdentityNotFound(username, "no directory entry")
        if resp.status_code != 200:
            raise IdentityUnavailable(username, f"directory returned HTTP {resp.status_code}")
        try:
            record = resp.json()
        except ValueError as exc:
            raise IdentityUnavailable(username, "directory response was not valid JSON") from exc
        if not isinstance(record, dict):
            raise IdentityUnavailable(username, "directory response was not an object")
        return identity_from_record(record, username)

    async def resolve(self, username: str) -> Tuple[Identity, Optional[Identity]]:
        if not self.is_configured():
            raise IdentityUnavailable(username, "directory is not configured")

        user = await self._fetch(username)
        if not user.manager:
            if self._require_manager:
                raise IdentityNotFound(username, "user has no manager on record")
            logger.info("directory: %s has no manager link", username)
            return user, None

        try:
            manager = await self._fetch(user.manager)
        except IdentityNotFound:
            if self._require_manager:
                raise IdentityNotFound(username, f"manager {user.manager} not found")
            logger.warning("directory: manager %s of %s not found, continuing without manager", user.manager, username)
            return user, None
        return user, manager

    async def aclose(self) -> None:
        await self._client.aclose()
