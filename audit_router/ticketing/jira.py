"""
compliance-audit-router: Jira Ticket Dispatcher
===============================================
Opens an issue through the Jira REST API v2:

  POST {jira_base_url}/rest/api/2/issue
  POST {jira_base_url}/rest/api/2/issue/{key}/watchers   (manager, if any)

The issue is assigned to the alerted user. ``add_watchers`` adds the
manager in a separate call made after the issue key is known; its failures
are logged and never undo the created issue.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..pipeline.models import TicketRequest
from .base import DispatchError, TicketDispatcher

logger = logging.getLogger(__name__)

_SUMMARY_MAX = 255


def _mention(identity) -> str:
    label = f"[~{identity.username}]"
    extra = ", ".join(p for p in (identity.display_name, identity.email) if p and p != identity.username)
    return f"{label} ({extra})" if extra else label


def build_summary(request: TicketRequest) -> str:
    subject = request.search_name or "Splunk alert"
    summary = f"Compliance alert for {request.user.username}: {subject}"
    return summary[:_SUMMARY_MAX]


def build_description(request: TicketRequest) -> str:
    lines: List[str] = [
        f"A compliance alert was raised for {_mention(request.user)}.",
        "",
        f"*Manager:* {_mention(request.manager) if request.manager else 'none on record'}",
        f"*Search ID:* {request.sid}",
    ]
    if request.search_name:
        lines.append(f"*Search:* {request.search_name}")
    if request.results_link:
        lines.append(f"*Results:* {request.results_link}")

    lines += ["", "h3. Raw event", "{noformat}", request.result.raw, "{noformat}"]

    extra = request.result.extra_fields()
    if extra:
        lines += ["", "h3. Result fields", "||Field||Value||"]
        for key in sorted(extra):
            value = str(extra[key]).replace("|", "\\|").replace("\n", " ")
            lines.append(f"|{key}|{value}|")
    return "\n".join(lines)


def build_issue_fields(
    request: TicketRequest,
    project_key: str,
    issue_type: str,
    labels: Sequence[str] = (),
) -> Dict[str, Any]:
    return {
        "project": {"key": project_key},
        "issuetype": {"name": issue_type},
        "summary": build_summary(request),
        "description": build_description(request),
        "assignee": {"name": request.user.username},
        "labels": list(labels),
    }


class JiraTicketDispatcher(TicketDispatcher):
    def __init__(
        self,
        base_url: str,
        token: str = "",
        project_key: str = "OHSS",
        issue_type: str = "Task",
        labels: Sequence[str] = ("compliance-audit",),
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._token = token
        self._project_key = project_key
        self._issue_type = issue_type
        self._labels = list(labels)
        self._client = client or httpx.AsyncClient(base_url=self._base, timeout=timeout)

    def is_configured(self) -> bool:
        return bool(self._base and self._project_key)

    def _headers(self) -> Dict[str, str]:
        h: Dict[str, str] = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._token:
            h["Authorization"] = f"Bearer {self._token}"
        return h

    async def create_ticket(self, request: TicketRequest) -> str:
        if not self.is_configured():
            raise DispatchError("Jira integration is not configured")

        payload = {"fields": build_issue_fields(request, self._project_key, self._issue_type, self._labels)}
        try:
            resp = await self._client.post("/rest/api/2/issue", json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise DispatchError("Jira request timed out") from exc
        except httpx.HTTPError as exc:
            raise DispatchError(f"Jira request failed: {exc}") from exc

        if resp.status_code not in (200, 201):
            raise DispatchError(f"Jira returned HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            key = resp.json().get("key")
        except (ValueError, AttributeError) as exc:
            raise DispatchError("Jira response was not a JSON object") from exc
        if not key:
            raise DispatchError("Jira response missing issue key")

        logger.info("[JiraTicketDispatcher] Created %s for %s", key, request.user.username)
        return key

    async def add_watchers(self, ticket_id: str, request: TicketRequest) -> None:
        if request.manager is not None:
            await self._add_watcher(ticket_id, request.manager.username)

    async def _add_watcher(self, key: str, username: str) -> None:
        try:
            resp = await self._client.post(
                f"/rest/api/2/issue/{key}/watchers",
                json=username,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.warning("[JiraTicketDispatcher] Adding watcher %s to %s failed: %s", username, key, exc)
            return
        if resp.status_code >= 400:
            logger.warning(
                "[JiraTicketDispatcher] Adding watcher %s to %s returned HTTP %s: %s",
                username, key, resp.status_code, resp.text[:200],
            )

    async def aclose(self) -> None:
        await self._client.aclose()
