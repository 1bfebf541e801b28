"""Jira REST v2 HTTP client with retry.

Responsibilities:
- HTTP requests to one Jira instance with a bearer PAT
- Retry on connection errors and 5xx (3 attempts, exponential backoff)
- Logging all API calls
- Jira error handling

Does NOT know about business logic.
"""
import asyncio
import logging

import httpx

from services.jira.config import SEARCH_PAGE_SIZE

logger = logging.getLogger("relay.jira.client")


class JiraError(Exception):
    """Jira API error."""
    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(f"[{status}] {message}")


class JiraAuthError(JiraError):
    """Rejected credentials. The source stays unusable until the PAT is fixed."""
    pass


class JiraClient:

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self.is_connected: bool = False

    def _headers(self, token: str | None = None) -> dict:
        return {
            "Authorization": f"Bearer {token or self.token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        json: dict | None = None,
        token: str | None = None,
    ) -> dict:
        """Single API call with retry. Returns decoded JSON ({} for empty bodies)."""
        url = f"{self.base_url}/rest/api/2/{path.lstrip('/')}"
        last_exc = None

        for attempt in range(3):
            try:
                resp = await self._client.request(
                    method, url, params=params, json=json,
                    headers=self._headers(token),
                )
                if resp.status_code in (401, 403):
                    self.is_connected = False
                    raise JiraAuthError(resp.status_code, resp.text[:200])
                resp.raise_for_status()
                self.is_connected = True
                if not resp.content:
                    return {}
                try:
                    data = resp.json()
                except ValueError as exc:
                    # HTML error page from a proxy, truncated body
                    raise JiraError(
                        resp.status_code, f"invalid JSON from {method} {path}: {resp.text[:200]}",
                    ) from exc
                if not isinstance(data, dict):
                    raise JiraError(resp.status_code, f"unexpected {type(data).__name__} body from {method} {path}")
                return data

            except JiraAuthError:
                raise
            except httpx.HTTPStatusError as exc:
                last_exc = exc
                status = exc.response.status_code
                if status >= 500:
                    backoff = 2 ** attempt
                    logger.warning(
                        "Jira HTTP %d on %s %s, retry %d/3 in %ds",
                        status, method, path, attempt + 1, backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise JiraError(status, exc.response.text[:200]) from exc
            except (httpx.ConnectError, httpx.TimeoutException) as exc:
                last_exc = exc
                backoff = 2 ** attempt
                logger.warning(
                    "Jira connection error: %s, retry %d/3 in %ds",
                    exc, attempt + 1, backoff,
                )
                await asyncio.sleep(backoff)
                continue

        self.is_connected = False
        raise JiraError(0, f"{method} {path} failed after 3 retries: {last_exc}")

    async def search(self, jql: str, fields: list[str] | None = None) -> list[dict]:
        """Run a JQL search, following startAt pagination."""
        issues: list[dict] = []
        start = 0

        while True:
            params = {"jql": jql, "startAt": start, "maxResults": SEARCH_PAGE_SIZE}
            if fields:
                params["fields"] = ",".join(fields)
            data = await self.request("GET", "search", params=params)
            page = data.get("issues", [])
            issues.extend(page)
            total = data.get("total", 0)
            start += len(page)
            if not page or start >= total:
                break

        return issues

    async def get_comments(self, issue_key: str) -> list[dict]:
        data = await self.request("GET", f"issue/{issue_key}/comment")
        return data.get("comments", [])

    # Mutations report success as a bool; the caller decides what the user sees.

    async def assign(self, issue_key: str, login: str) -> bool:
        try:
            await self.request("PUT", f"issue/{issue_key}/assignee", json={"name": login})
            logger.info("Jira %s assigned to %s", issue_key, login)
            return True
        except (JiraError, httpx.HTTPError) as exc:
            logger.error("Jira assign %s failed: %s", issue_key, exc)
            return False

    async def add_comment(self, issue_key: str, body: str, token: str | None = None) -> bool:
        try:
            await self.request(
                "POST", f"issue/{issue_key}/comment", json={"body": body}, token=token,
            )
            logger.info("Jira comment added to %s", issue_key)
            return True
        except (JiraError, httpx.HTTPError) as exc:
            logger.error("Jira comment on %s failed: %s", issue_key, exc)
            return False

    async def transition(
        self, issue_key: str, transition_id: str, resolution: str | None = None,
    ) -> bool:
        payload: dict = {"transition": {"id": transition_id}}
        if resolution:
            payload["fields"] = {"resolution": {"name": resolution}}
        try:
            await self.request("POST", f"issue/{issue_key}/transitions", json=payload)
            logger.info("Jira %s transitioned via %s", issue_key, transition_id)
            return True
        except (JiraError, httpx.HTTPError) as exc:
            logger.error("Jira transition %s -> %s failed: %s", issue_key, transition_id, exc)
            return False

    async def test_connection(self) -> dict:
        """Test connection via myself method."""
        try:
            result = await self.request("GET", "myself")
            return {"success": True, "data": result}
        except (JiraError, httpx.HTTPError) as exc:
            self.is_connected = False
            return {"success": False, "error": str(exc)}

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
