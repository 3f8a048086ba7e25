"""Client for the testing query servlet (``/system/testing/query``)."""

from __future__ import annotations

import enum
import logging
from typing import Any, Dict

from .client import SlingClient
from .errors import ValidationError
from .osgi import OsgiConsoleClient

logger = logging.getLogger(__name__)

__all__ = ["QueryClient", "QueryType", "SERVLET_PATH"]

SERVLET_PATH = "/system/testing/query"
SERVLET_BUNDLE_BSN = "org.apache.sling.testing.clients.query"


class QueryType(str, enum.Enum):
    SQL2 = "JCR-SQL2"
    SQL = "sql"
    XPATH = "xpath"
    JQOM = "JCR-JQOM"

    def __str__(self) -> str:
        return self.value


class QueryClient(SlingClient):
    """Run repository queries through the query servlet.

    The servlet bundle must already be installed on the instance.
    """

    def _query(self, query: str, query_type: QueryType, *, show_results: bool, explain: bool) -> Dict[str, Any]:
        params = {
            "query": query,
            "type": str(query_type),
            "showresults": "true" if show_results else "false",
            "explain": "true" if explain else "false",
        }
        result = self.get_json(SERVLET_PATH, expected_status=200, params=params)
        if not isinstance(result, dict):
            raise ValidationError(f"Unexpected query servlet payload for {query!r}")
        return result

    def do_query(self, query: str, query_type: QueryType = QueryType.SQL2) -> Dict[str, Any]:
        """Execute ``query`` and return the servlet payload including the results."""
        return self._query(query, query_type, show_results=True, explain=False)

    def do_count(self, query: str, query_type: QueryType = QueryType.SQL2) -> int:
        result = self._query(query, query_type, show_results=False, explain=False)
        if "total" not in result:
            raise ValidationError(f"Query servlet did not return 'total' for {query!r}")
        return int(result["total"])

    def get_plan(self, query: str, query_type: QueryType = QueryType.SQL2) -> str:
        """Return the query plan; useful to check which index a query uses."""
        result = self._query(query, query_type, show_results=False, explain=True)
        if "plan" not in result:
            raise ValidationError(f"Query servlet did not return 'plan' for {query!r}")
        return str(result["plan"])

    def uninstall_servlet(self) -> "QueryClient":
        self.adapt_to(OsgiConsoleClient).uninstall_bundle(SERVLET_BUNDLE_BSN)
        return self
