# data_client.py
"""Hosted data service client and its throttling adapter.

Queries are composed with a chainable builder and resolve to a
``QueryResult`` carrying ``data`` and ``error``. Service failures are
returned in ``error``, never raised:

    result = await client.table("leads").select("*").eq("startup_id", sid).execute()
    if result.error:
        ...

``GuardedDataClient`` wraps a ``DataClient`` with the same surface and asks
the request governor for admission before each chain executes.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import config
from .logging_utils import get_logger
from .throttle import GuardedCallError, RequestGovernor
from .throttle.policies import DATA_READ, DATA_WRITE

NOT_CONNECTED_MESSAGE = "Supabase not connected. Check environment variables."

WRITE_OPERATIONS = frozenset({"insert", "update", "delete"})

_CONTENT_RANGE = re.compile(r"/(\d+)$")


class DataClientError(Exception):
    """Raised by ``QueryResult.raise_for_error`` for failed queries."""

    def __init__(self, message: str, error: Optional["DataError"] = None):
        super().__init__(message)
        self.error = error


@dataclass
class DataError:
    """Failure reported by the data service."""

    message: str
    code: Optional[str] = None
    details: Optional[str] = None
    status: Optional[int] = None


@dataclass
class QueryResult:
    """Resolved value of a query chain."""

    data: Any = None
    error: Optional[DataError] = None
    count: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> "QueryResult":
        """Raise ``DataClientError`` if the query failed, else return self."""
        if self.error is not None:
            raise DataClientError(self.error.message, self.error)
        return self


@dataclass
class QueryRequest:
    """Everything a transport needs to run one query chain."""

    table: str
    operation: str = "select"
    columns: Optional[str] = None
    payload: Any = None
    filters: List[Tuple[str, Any]] = field(default_factory=list)
    ordering: List[Tuple[str, bool]] = field(default_factory=list)
    limit: Optional[int] = None
    single: bool = False
    count: Optional[str] = None
    head: bool = False

    @property
    def is_write(self) -> bool:
        return self.operation in WRITE_OPERATIONS


Transport = Callable[[QueryRequest], QueryResult]


class QueryBuilder:
    """Chainable query against one table.

    Each builder method returns the builder. A mutation followed by
    ``select()`` keeps the mutation and asks for the written rows back.
    """

    def __init__(self, table: str, transport: Transport):
        self.request = QueryRequest(table=table)
        self._transport = transport

    def select(
        self,
        columns: str = "*",
        count: Optional[str] = None,
        head: bool = False,
    ) -> "QueryBuilder":
        self.request.columns = columns
        self.request.count = count
        self.request.head = head
        return self

    def insert(self, rows: Any) -> "QueryBuilder":
        self.request.operation = "insert"
        self.request.payload = rows
        return self

    def update(self, values: Dict[str, Any]) -> "QueryBuilder":
        self.request.operation = "update"
        self.request.payload = values
        return self

    def delete(self) -> "QueryBuilder":
        self.request.operation = "delete"
        return self

    def eq(self, column: str, value: Any) -> "QueryBuilder":
        self.request.filters.append((column, value))
        return self

    def order(self, column: str, desc: bool = False) -> "QueryBuilder":
        self.request.ordering.append((column, desc))
        return self

    def limit(self, count: int) -> "QueryBuilder":
        self.request.limit = count
        return self

    def single(self) -> "QueryBuilder":
        self.request.single = True
        return self

    async def execute(self) -> QueryResult:
        """Run the chain off the event loop and return its result."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._transport, self.request)

    def __await__(self):
        return self.execute().__await__()


class RestTransport:
    """PostgREST transport for the hosted data service."""

    MAX_RETRIES = 3
    BASE_RETRY_DELAY = 0.5

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: int = 30,
    ):
        """Initialize the REST transport.

        Args:
            url: Data service base URL.
            api_key: Anonymous (or service) API key.
            timeout: Request timeout in seconds.
        """
        self.logger = get_logger(__name__)
        self.base_url = url.rstrip("/")
        self.timeout = timeout
        self._api_key = api_key
        self._session: Optional[requests.Session] = None

    def _get_session(self) -> requests.Session:
        """Get or create a requests session with retry configuration.

        Only idempotent reads are retried on gateway errors.
        """
        if self._session is None:
            self._session = requests.Session()

            retry_strategy = Retry(
                total=self.MAX_RETRIES,
                backoff_factor=self.BASE_RETRY_DELAY,
                status_forcelist=[502, 503, 504],
                allowed_methods=["GET", "HEAD"],
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            self._session.mount("https://", adapter)
            self._session.mount("http://", adapter)

        return self._session

    def _build_headers(self, request: QueryRequest) -> Dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        prefer = []
        if request.is_write:
            prefer.append(
                "return=representation" if request.columns is not None else "return=minimal"
            )
        if request.count:
            prefer.append(f"count={request.count}")
        if prefer:
            headers["Prefer"] = ",".join(prefer)

        if request.single:
            headers["Accept"] = "application/vnd.pgrst.object+json"

        return headers

    @staticmethod
    def _build_params(request: QueryRequest) -> List[Tuple[str, str]]:
        params: List[Tuple[str, str]] = []

        if request.columns is not None:
            params.append(("select", request.columns))
        elif not request.is_write:
            params.append(("select", "*"))

        for column, value in request.filters:
            params.append((column, _filter_value(value)))

        if request.ordering:
            params.append((
                "order",
                ",".join(
                    f"{column}.{'desc' if desc else 'asc'}"
                    for column, desc in request.ordering
                ),
            ))

        if request.limit is not None:
            params.append(("limit", str(request.limit)))

        return params

    def _http_method(self, request: QueryRequest) -> str:
        if request.operation == "insert":
            return "POST"
        if request.operation == "update":
            return "PATCH"
        if request.operation == "delete":
            return "DELETE"
        return "HEAD" if request.head else "GET"

    def __call__(self, request: QueryRequest) -> QueryResult:
        url = f"{self.base_url}/rest/v1/{request.table}"
        method = self._http_method(request)

        self.logger.debug(
            "Data service request",
            extra={"table": request.table, "operation": request.operation},
        )

        try:
            response = self._get_session().request(
                method,
                url,
                params=self._build_params(request),
                json=request.payload if request.is_write and request.payload is not None else None,
                headers=self._build_headers(request),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            self.logger.error(
                f"Data service request failed: {e}",
                extra={"table": request.table, "operation": request.operation},
            )
            return QueryResult(error=DataError(message=str(e)))

        count = _parse_count(response.headers.get("Content-Range"))

        if response.status_code >= 400:
            return QueryResult(error=_parse_error(response), count=count)

        data = None
        if method != "HEAD" and response.content:
            try:
                data = response.json()
            except ValueError:
                return QueryResult(
                    error=DataError(
                        message="Invalid JSON in data service response",
                        status=response.status_code,
                    ),
                    count=count,
                )

        return QueryResult(data=data, count=count)

    def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            self._session.close()
            self._session = None


def _filter_value(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


def _parse_count(content_range: Optional[str]) -> Optional[int]:
    if not content_range:
        return None
    match = _CONTENT_RANGE.search(content_range)
    return int(match.group(1)) if match else None


def _parse_error(response: requests.Response) -> DataError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    return DataError(
        message=body.get("message") or response.text[:500] or f"HTTP {response.status_code}",
        code=body.get("code"),
        details=body.get("details") or body.get("hint"),
        status=response.status_code,
    )


def not_connected_transport(request: QueryRequest) -> QueryResult:
    """Transport used when the data service is not configured."""
    return QueryResult(
        data=None if request.single else [],
        error=DataError(message=NOT_CONNECTED_MESSAGE),
    )


class DataClient:
    """Entry point for query chains against the data service."""

    def __init__(self, transport: Transport, connected: bool = True):
        self._transport = transport
        self.connected = connected

    def table(self, name: str) -> QueryBuilder:
        return QueryBuilder(name, self._transport)

    def from_(self, name: str) -> QueryBuilder:
        return self.table(name)

    def close(self) -> None:
        """Release transport resources, if the transport holds any."""
        close = getattr(self._transport, "close", None)
        if close is not None:
            close()


def create_data_client(settings=None) -> DataClient:
    """Build a data client from configuration.

    When the data service is not configured, every chain resolves to an
    error result instead of failing at import or call time.
    """
    settings = settings or config
    if not settings.is_supabase_configured():
        get_logger(__name__).warning(
            "Data service not configured, queries will return errors"
        )
        return DataClient(not_connected_transport, connected=False)

    transport = RestTransport(
        settings.SUPABASE_URL,
        settings.SUPABASE_ANON_KEY,
        timeout=settings.DATA_TIMEOUT_SECONDS,
    )
    return DataClient(transport)


class GuardedQueryBuilder:
    """Query chain that is admitted by the governor before it executes.

    Implements the same builder methods as ``QueryBuilder``. Any mutation call
    makes the whole chain a write; otherwise it is a read.
    """

    def __init__(self, inner: QueryBuilder, governor: RequestGovernor):
        self._inner = inner
        self._governor = governor
        self._is_write = False

    @property
    def action_id(self) -> str:
        return DATA_WRITE if self._is_write else DATA_READ

    def select(
        self,
        columns: str = "*",
        count: Optional[str] = None,
        head: bool = False,
    ) -> "GuardedQueryBuilder":
        self._inner.select(columns, count=count, head=head)
        return self

    def insert(self, rows: Any) -> "GuardedQueryBuilder":
        self._is_write = True
        self._inner.insert(rows)
        return self

    def update(self, values: Dict[str, Any]) -> "GuardedQueryBuilder":
        self._is_write = True
        self._inner.update(values)
        return self

    def delete(self) -> "GuardedQueryBuilder":
        self._is_write = True
        self._inner.delete()
        return self

    def eq(self, column: str, value: Any) -> "GuardedQueryBuilder":
        self._inner.eq(column, value)
        return self

    def order(self, column: str, desc: bool = False) -> "GuardedQueryBuilder":
        self._inner.order(column, desc=desc)
        return self

    def limit(self, count: int) -> "GuardedQueryBuilder":
        self._inner.limit(count)
        return self

    def single(self) -> "GuardedQueryBuilder":
        self._inner.single()
        return self

    async def execute(self) -> QueryResult:
        """Admit the chain, then run it unchanged.

        Raises:
            GuardedCallError: If the governor rejects the chain. The wrapped
                query is not issued.
        """
        action_id = self.action_id
        decision = self._governor.check_and_consume(action_id)
        if not decision.allowed:
            raise GuardedCallError.from_decision(action_id, decision)
        return await self._inner.execute()

    def __await__(self):
        return self.execute().__await__()


class GuardedDataClient:
    """``DataClient`` wrapper routing every chain through the governor."""

    def __init__(self, client: DataClient, governor: RequestGovernor):
        self._client = client
        self._governor = governor

    @property
    def connected(self) -> bool:
        return self._client.connected

    def table(self, name: str) -> GuardedQueryBuilder:
        return GuardedQueryBuilder(self._client.table(name), self._governor)

    def from_(self, name: str) -> GuardedQueryBuilder:
        return self.table(name)
