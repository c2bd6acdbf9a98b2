"""
Client for the Dune analytics API.

Two ways to read a query:
- get_query_results: latest cached results of a saved query
- execute_and_wait: execute, poll status through a QueryExecution state
  machine, then fetch the execution's rows (bounded by max_wait_ms)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from daoscope.connectors.base import SourceClient
from daoscope.connectors.errors import (
    AuthenticationError,
    QueryFailedError,
    QueryTimeoutError,
    ResponseFormatError,
    SourceResult,
)
from daoscope.connectors.query_state import QueryExecution, QueryState
from daoscope.contracts.models import PartialSourceFailure, Source, TreasurySnapshot

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.dune.com/api/v1"
API_KEY_HEADER = "X-Dune-API-Key"

DEFAULT_POLL_INTERVAL_MS = 2000
DEFAULT_MAX_WAIT_MS = 60000


@dataclass(frozen=True)
class DuneQueryIds:
    """Saved query ids for the standard datasets."""

    treasury: str = "3700123"
    revenue: str = "3700123"
    solver_rewards: str = "5270914"
    solver_info: str = "5533118"


@dataclass
class DuneOverview:
    """Rows of the four standard datasets; a failed dataset has empty rows."""

    treasury: list[dict[str, Any]] = field(default_factory=list)
    revenue: list[dict[str, Any]] = field(default_factory=list)
    solver_rewards: list[dict[str, Any]] = field(default_factory=list)
    solver_info: list[dict[str, Any]] = field(default_factory=list)
    failures: list[PartialSourceFailure] = field(default_factory=list)

    @property
    def total_treasury_usd(self) -> float:
        return float(self.treasury[0].get("total_value_usd") or 0) if self.treasury else 0.0

    @property
    def total_revenue_usd(self) -> float:
        return sum(float(row.get("revenue_usd") or 0) for row in self.revenue)

    @property
    def total_solver_rewards(self) -> float:
        return sum(float(row.get("rewards") or 0) for row in self.solver_rewards)

    @property
    def active_solvers(self) -> int:
        return len(self.solver_info)


def _rows(payload: Any, source: str) -> list[dict[str, Any]]:
    if not isinstance(payload, dict) or not isinstance(payload.get("result"), dict):
        raise ResponseFormatError("Results payload has no result object", source=source)
    rows = payload["result"].get("rows")
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise ResponseFormatError("Result rows is not a list", source=source)
    return rows


class DuneClient(SourceClient):
    """Analytics-query source with asynchronous execution support."""

    source = Source.DUNE.value

    def __init__(
        self,
        *args: Any,
        api_key: str | None = None,
        query_ids: DuneQueryIds | None = None,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_wait_ms: int = DEFAULT_MAX_WAIT_MS,
        time_fn: Callable[[], int] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        **kwargs: Any,
    ) -> None:
        headers = dict(kwargs.pop("headers", None) or {})
        if api_key:
            headers[API_KEY_HEADER] = api_key
        super().__init__(*args, headers=headers, **kwargs)
        self._api_key = api_key
        self.query_ids = query_ids or DuneQueryIds()
        self._poll_interval_ms = poll_interval_ms
        self._max_wait_ms = max_wait_ms
        self._time_fn = time_fn
        self._sleep = sleep or asyncio.sleep

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    def _require_key(self) -> None:
        if not self._api_key:
            raise AuthenticationError("Dune API key not configured", source=self.source)

    async def get_query_results(self, query_id: str) -> list[dict[str, Any]]:
        """Fetch the latest results of a saved query."""
        self._require_key()
        payload = await self._request("GET", f"/query/{query_id}/results")
        return _rows(payload, self.source)

    async def execute_query(
        self,
        query_id: str,
        parameters: dict[str, Any] | None = None,
    ) -> str:
        """Start an execution and return its id."""
        self._require_key()
        payload = await self._request(
            "POST",
            f"/query/{query_id}/execute",
            json={"query_parameters": parameters or {}},
        )
        execution_id = payload.get("execution_id") if isinstance(payload, dict) else None
        if not execution_id:
            raise ResponseFormatError("Execute response has no execution_id", source=self.source)
        return str(execution_id)

    async def get_execution_status(self, execution_id: str) -> dict[str, Any]:
        """Fetch the raw status object of an execution."""
        self._require_key()
        payload = await self._request("GET", f"/execution/{execution_id}/status")
        if not isinstance(payload, dict) or "state" not in payload:
            raise ResponseFormatError("Status response has no state", source=self.source)
        return payload

    async def get_execution_results(self, execution_id: str) -> list[dict[str, Any]]:
        self._require_key()
        payload = await self._request("GET", f"/execution/{execution_id}/results")
        return _rows(payload, self.source)

    async def execute_and_wait(
        self,
        query_id: str,
        parameters: dict[str, Any] | None = None,
        max_wait_ms: int | None = None,
    ) -> list[dict[str, Any]]:
        """
        Execute a query and wait for its rows.

        Args:
            query_id: Saved query id.
            parameters: Query parameters.
            max_wait_ms: Wall-clock budget (defaults to the client setting).

        Returns:
            Result rows.

        Raises:
            QueryFailedError: If the execution ends failed, cancelled or expired.
            QueryTimeoutError: If it does not complete within the budget.
        """
        budget_ms = max_wait_ms if max_wait_ms is not None else self._max_wait_ms
        execution_id = await self.execute_query(query_id, parameters)
        execution = QueryExecution(
            execution_id=execution_id,
            query_id=query_id,
            max_wait_ms=budget_ms,
            _time_fn=self._time_fn,
        )

        while execution.check_deadline():
            status = await self.get_execution_status(execution_id)
            error = status.get("error")
            state = execution.apply_status(
                str(status["state"]),
                error=str(error.get("message", "")) if isinstance(error, dict) else "",
            )
            if state == QueryState.COMPLETED:
                return await self.get_execution_results(execution_id)
            if state == QueryState.FAILED:
                raise QueryFailedError(
                    f"Query {query_id} execution failed: {execution.error}",
                    source=self.source,
                )
            sleep_ms = min(self._poll_interval_ms, execution.remaining_ms)
            if sleep_ms > 0:
                await self._sleep(sleep_ms / 1000)

        logger.warning(
            "Query execution timed out",
            extra={
                "source": self.source,
                "query_id": query_id,
                "execution_id": execution_id,
                "polls": execution.polls,
            },
        )
        raise QueryTimeoutError(execution.error, source=self.source)

    async def fetch_treasury_value(self) -> TreasurySnapshot:
        """Treasury value from the first row's `total_value_usd`."""
        rows = await self.get_query_results(self.query_ids.treasury)
        with self._parsing("treasury rows"):
            total = float(rows[0].get("total_value_usd") or 0) if rows else 0.0
        return TreasurySnapshot(
            total_usd=total,
            source_url=self.url(f"/query/{self.query_ids.treasury}/results"),
        )

    async def fetch_overview(self) -> DuneOverview:
        """
        Fetch the four standard datasets concurrently.

        A dataset that fails is left empty and recorded in `failures`.
        """
        names = ("treasury", "revenue", "solver_rewards", "solver_info")
        results = await asyncio.gather(
            *(
                SourceResult.capture(
                    self.source, self.get_query_results(getattr(self.query_ids, name))
                )
                for name in names
            )
        )
        overview = DuneOverview()
        for name, result in zip(names, results, strict=True):
            if result.ok:
                setattr(overview, name, result.value or [])
            else:
                failure = result.to_failure(item=name)
                if failure is not None:
                    overview.failures.append(failure)
                logger.warning(
                    "Dune dataset unavailable",
                    extra={"source": self.source, "dataset": name, "error_kind": result.error_kind},
                )
        return overview
