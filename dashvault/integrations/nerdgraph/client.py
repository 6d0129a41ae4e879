"""New Relic NerdGraph (GraphQL) client for dashboard entities."""
import logging
from typing import Any

import httpx

from dashvault.config import settings
from dashvault.exceptions import ExternalServiceError, InvalidInputError
from dashvault.integrations.resilience import (
    CircuitBreaker,
    get_circuit_breaker,
    is_retryable,
    retry_with_backoff,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "NewRelic"

ACCOUNTS_QUERY = """
{
  actor {
    accounts {
      id
      name
    }
  }
}
"""

LIST_DASHBOARDS_QUERY = """
query ($query: String!, $cursor: String) {
  actor {
    entitySearch(query: $query, options: { limit: 200 }) {
      results(cursor: $cursor) {
        entities {
          ... on DashboardEntityOutline {
            guid
            name
            accountId
            owner {
              email
            }
            updatedAt
          }
        }
        nextCursor
      }
    }
  }
}
"""

GET_DASHBOARD_QUERY = """
query ($guid: EntityGuid!) {
  actor {
    entity(guid: $guid) {
      ... on DashboardEntity {
        guid
        name
        description
        accountId
        owner {
          email
        }
        permissions
        pages {
          guid
          name
          description
          widgets {
            id
            title
            layout {
              column
              row
              width
              height
            }
            visualization {
              id
            }
            configuration
            rawConfiguration
          }
        }
        variables {
          name
          title
          type
          defaultValues {
            value {
              string
            }
          }
          items {
            value
            title
          }
          nrqlQuery {
            accountIds
            query
          }
          replacementStrategy
          isMultiSelection
        }
        createdAt
        updatedAt
      }
    }
  }
}
"""

CREATE_DASHBOARD_MUTATION = """
mutation ($accountId: Int!, $dashboard: DashboardInput!) {
  dashboardCreate(accountId: $accountId, dashboard: $dashboard) {
    entityResult {
      guid
      name
    }
    errors {
      description
      type
    }
  }
}
"""

UPDATE_DASHBOARD_MUTATION = """
mutation ($guid: EntityGuid!, $dashboard: DashboardInput!) {
  dashboardUpdate(guid: $guid, dashboard: $dashboard) {
    entityResult {
      guid
    }
    errors {
      description
      type
    }
  }
}
"""


def _parse_account_id(account_id: str | int) -> int:
    try:
        return int(account_id)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"Invalid account id: {account_id!r}") from exc


class NerdGraphClient:
    """Async client for the NerdGraph API, bound to one user API key.

    Reads (listing, fetching, validation) are retried with backoff on
    transport errors and 429/5xx. Dashboard create/update are sent once.
    """

    def __init__(
        self,
        api_key: str,
        account_ids: list[str] | None = None,
        *,
        url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_backoff: float = 1.0,
        breaker: CircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.account_ids = list(account_ids or [])
        self.url = url or settings.NERDGRAPH_URL
        self.max_retries = settings.NERDGRAPH_MAX_RETRIES if max_retries is None else max_retries
        self.retry_backoff = retry_backoff
        self._breaker = breaker or get_circuit_breaker("newrelic")
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.NERDGRAPH_TIMEOUT,
            headers={"API-Key": api_key, "Content-Type": "application/json"},
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    # ── Transport ──

    async def _send(self, payload: dict[str, Any]) -> httpx.Response:
        resp = await self._client.post(self.url, json=payload)
        resp.raise_for_status()
        return resp

    async def _query(
        self, query: str, variables: dict[str, Any] | None = None, *, idempotent: bool = True,
    ) -> dict[str, Any]:
        if not self._breaker.allow_request():
            raise ExternalServiceError(
                SERVICE_NAME, "NerdGraph is temporarily unavailable", retryable=True,
            )

        payload = {"query": query, "variables": variables or {}}
        try:
            if idempotent:
                resp = await retry_with_backoff(
                    self._send, payload,
                    max_retries=self.max_retries, backoff_base=self.retry_backoff,
                )
            else:
                resp = await self._send(payload)
        except httpx.HTTPStatusError as exc:
            if is_retryable(exc):
                self._breaker.record_failure()
            status = exc.response.status_code
            logger.warning("NerdGraph HTTP %d: %s", status, exc.response.reason_phrase)
            raise ExternalServiceError(
                SERVICE_NAME, f"API returned {status}: {exc.response.reason_phrase}",
                retryable=is_retryable(exc),
            ) from exc
        except httpx.TransportError as exc:
            self._breaker.record_failure()
            logger.error("NerdGraph request failed: %s", exc)
            raise ExternalServiceError(
                SERVICE_NAME, "Failed to communicate with NewRelic API", retryable=True,
            ) from exc
        self._breaker.record_success()

        try:
            body = resp.json()
        except ValueError as exc:
            raise ExternalServiceError(SERVICE_NAME, "Malformed response from NerdGraph") from exc
        if not isinstance(body, dict):
            raise ExternalServiceError(SERVICE_NAME, "Malformed response from NerdGraph")

        errors = body.get("errors")
        if errors:
            message = ", ".join(str(e.get("message", "unknown error")) for e in errors)
            logger.warning("NerdGraph returned errors: %s", message)
            raise ExternalServiceError(SERVICE_NAME, message)

        data = body.get("data")
        if not data:
            raise ExternalServiceError(SERVICE_NAME, "No data returned from NerdGraph")
        return data

    # ── Credentials ──

    async def validate_credential(self) -> dict[str, Any]:
        """Check the key and list the accounts it can reach.

        An unusable key is a normal outcome here, reported as ``valid=False``.
        """
        try:
            data = await self._query(ACCOUNTS_QUERY)
            accounts = [
                {"id": str(account["id"]), "name": account.get("name", "")}
                for account in data["actor"]["accounts"]
            ]
        except (ExternalServiceError, KeyError, TypeError) as exc:
            logger.warning("Credential validation failed: %s", exc)
            return {"valid": False, "accounts": []}
        return {"valid": True, "accounts": accounts}

    # ── Dashboards ──

    async def list_dashboards(self, account_id: str) -> list[dict[str, Any]]:
        """All dashboards in an account, following ``nextCursor`` to the end."""
        search = f"type = 'DASHBOARD' AND accountId = {_parse_account_id(account_id)}"
        dashboards: list[dict[str, Any]] = []
        cursor: str | None = None

        while True:
            data = await self._query(LIST_DASHBOARDS_QUERY, {"query": search, "cursor": cursor})
            try:
                results = data["actor"]["entitySearch"]["results"]
                entities = results["entities"] or []
            except (KeyError, TypeError) as exc:
                raise ExternalServiceError(SERVICE_NAME, "Unexpected entity search response") from exc

            for entity in entities:
                if not entity or "guid" not in entity:
                    continue
                dashboards.append({
                    "guid": entity["guid"],
                    "name": entity.get("name", ""),
                    "account_id": str(entity.get("accountId", account_id)),
                    "owner_email": (entity.get("owner") or {}).get("email"),
                    "updated_at": entity.get("updatedAt"),
                })

            cursor = results.get("nextCursor")
            if not cursor:
                return dashboards

    async def get_dashboard(self, guid: str) -> dict[str, Any] | None:
        """Full dashboard detail, or ``None`` when no such dashboard exists."""
        data = await self._query(GET_DASHBOARD_QUERY, {"guid": guid})
        try:
            entity = data["actor"]["entity"]
        except (KeyError, TypeError) as exc:
            raise ExternalServiceError(SERVICE_NAME, "Unexpected entity response") from exc
        # a non-dashboard entity matches no inline fragment and comes back empty
        if not entity or "guid" not in entity:
            return None
        return entity

    async def create_dashboard(self, account_id: str, dashboard: dict[str, Any]) -> str:
        data = await self._query(
            CREATE_DASHBOARD_MUTATION,
            {"accountId": _parse_account_id(account_id), "dashboard": dashboard},
            idempotent=False,
        )
        result = data.get("dashboardCreate") or {}
        errors = result.get("errors") or []
        if errors:
            message = ", ".join(str(e.get("description", "unknown error")) for e in errors)
            raise ExternalServiceError(SERVICE_NAME, f"Dashboard creation failed: {message}")
        entity = result.get("entityResult")
        if not entity or not entity.get("guid"):
            raise ExternalServiceError(SERVICE_NAME, "Dashboard creation returned no result")
        return entity["guid"]

    async def update_dashboard(self, guid: str, dashboard: dict[str, Any]) -> None:
        data = await self._query(
            UPDATE_DASHBOARD_MUTATION, {"guid": guid, "dashboard": dashboard}, idempotent=False,
        )
        result = data.get("dashboardUpdate") or {}
        errors = result.get("errors") or []
        if errors:
            message = ", ".join(str(e.get("description", "unknown error")) for e in errors)
            raise ExternalServiceError(SERVICE_NAME, f"Dashboard update failed: {message}")
