"""Minimal Supabase PostgREST client used by backend repositories only."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from shared.errors import TransportError


logger = logging.getLogger(__name__)

Query = dict[str, str | int] | list[tuple[str, str | int]]


@dataclass(slots=True)
class SupabaseSettings:
    url: str
    service_role_key: str
    anon_key: str | None = None
    timeout_seconds: float = 10.0


class SupabaseRequestError(RuntimeError):
    """PostgREST rejected the request with a client-side (4xx) status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Supabase request failed with status {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class SupabaseClient:
    def __init__(self, settings: SupabaseSettings) -> None:
        self.settings = settings

    def healthcheck(self) -> bool:
        return bool(self.settings.url and self.settings.service_role_key)

    def _api_key(self, use_anon_key: bool) -> str:
        api_key = self.settings.anon_key if use_anon_key else self.settings.service_role_key
        if not api_key:
            raise ValueError("Missing Supabase API key for requested mode")
        return api_key

    def _request(
        self,
        *,
        table: str,
        method: str,
        query: Query | None = None,
        payload: object | None = None,
        prefer: str = "return=representation",
        use_anon_key: bool = False,
    ) -> tuple[Any, Any]:
        """Send one PostgREST request and return the decoded body and response headers."""

        api_key = self._api_key(use_anon_key)
        url = f"{self.settings.url}/rest/v1/{table}"
        if query:
            url = f"{url}?{urlencode(query, doseq=True)}"
        data = json.dumps(payload, default=str).encode("utf-8") if payload is not None else None
        request = Request(
            url=url,
            data=data,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Prefer": prefer,
            },
            method=method,
        )
        try:
            with urlopen(request, timeout=self.settings.timeout_seconds) as response:  # noqa: S310 - URL comes from trusted env config
                raw_body = response.read().decode("utf-8")
                return (json.loads(raw_body) if raw_body else []), response.headers
        except HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace")[:500]
            if exc.code >= 500:
                logger.warning("supabase_server_error table=%s method=%s status=%s", table, method, exc.code)
                raise TransportError(
                    f"Supabase request failed with status {exc.code}",
                    details={"table": table, "status": exc.code},
                ) from exc
            raise SupabaseRequestError(exc.code, body) from exc
        except (URLError, TimeoutError) as exc:
            logger.warning("supabase_unreachable table=%s method=%s error=%s", table, method, exc)
            raise TransportError(
                "Supabase is unreachable or timed out",
                details={"table": table},
            ) from exc

    def get_rows(
        self,
        *,
        table: str,
        query: Query,
        with_count: bool,
        use_anon_key: bool = False,
    ) -> tuple[list[dict[str, Any]], int | None]:
        """Fetch rows from PostgREST and optionally parse exact row count."""

        rows, headers = self._request(
            table=table,
            method="GET",
            query=query,
            prefer="count=exact" if with_count else "return=representation",
            use_anon_key=use_anon_key,
        )
        total: int | None = None
        if with_count:
            content_range = headers.get("content-range") if headers else None
            if content_range and "/" in content_range:
                _, total_str = content_range.split("/", maxsplit=1)
                total = int(total_str)
        return rows, total

    def post_rows(
        self,
        *,
        table: str,
        payload: dict[str, Any] | list[dict[str, Any]],
        query: Query | None = None,
        prefer: str = "return=representation",
        use_anon_key: bool = False,
    ) -> list[dict[str, Any]]:
        rows, _ = self._request(
            table=table,
            method="POST",
            query=query,
            payload=payload,
            prefer=prefer,
            use_anon_key=use_anon_key,
        )
        return rows

    def upsert_row(
        self,
        *,
        table: str,
        payload: dict[str, Any],
        on_conflict: str,
        ignore_duplicates: bool = False,
        use_anon_key: bool = False,
    ) -> list[dict[str, Any]]:
        resolution = "ignore-duplicates" if ignore_duplicates else "merge-duplicates"
        return self.post_rows(
            table=table,
            payload=payload,
            query={"on_conflict": on_conflict},
            prefer=f"resolution={resolution},return=representation",
            use_anon_key=use_anon_key,
        )

    def patch_rows(
        self,
        *,
        table: str,
        query: Query,
        payload: dict[str, Any],
        use_anon_key: bool = False,
    ) -> list[dict[str, Any]]:
        """Update rows matching `query` and return the rows actually changed."""

        rows, _ = self._request(
            table=table,
            method="PATCH",
            query=query,
            payload=payload,
            use_anon_key=use_anon_key,
        )
        return rows

    def call_rpc(
        self,
        *,
        function: str,
        payload: dict[str, Any],
        use_anon_key: bool = False,
    ) -> list[dict[str, Any]]:
        """Call a Postgres function exposed at `/rest/v1/rpc/<function>`; it runs in one transaction."""

        rows, _ = self._request(
            table=f"rpc/{function}",
            method="POST",
            payload=payload,
            use_anon_key=use_anon_key,
        )
        if isinstance(rows, dict):
            return [rows]
        return rows

    def delete_rows(
        self,
        *,
        table: str,
        query: Query,
        use_anon_key: bool = False,
    ) -> list[dict[str, Any]]:
        rows, _ = self._request(
            table=table,
            method="DELETE",
            query=query,
            use_anon_key=use_anon_key,
        )
        return rows
