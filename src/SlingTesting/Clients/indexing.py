"""Wait for Oak's asynchronous indexing lanes to catch up.

:meth:`IndexingClient.wait_for_async_indexing` installs one small Lucene
index per async lane below ``/tmp/testing/waitForAsyncIndexing``, writes a
sentinel node with a unique value for each lane and polls the query servlet
until every lane finds its sentinel through its own index.  Once that
happens, everything written before the call is indexed as well.  The
sentinel content is always removed afterwards; the indexes are kept until
:meth:`IndexingClient.uninstall` is called.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import uuid
from typing import Any, Dict, List, Optional, Sequence

from .client import SlingClient
from .errors import ClientError
from .osgi import OsgiConsoleClient
from .polling import PollOutcome
from .query import QueryClient, QueryType

logger = logging.getLogger(__name__)

__all__ = ["IndexingClient", "total_waited_ms"]

WAIT_FOR_ASYNC_INDEXING_ROOT = "/tmp/testing/waitForAsyncIndexing"
INDEX_PATH = WAIT_FOR_ASYNC_INDEXING_ROOT + "/oak:index"
CONTENT_PATH = WAIT_FOR_ASYNC_INDEXING_ROOT + "/content"

INDEX_PREFIX = "testIndexingLane-"
PROPERTY_PREFIX = "testProp-"
VALUE_PREFIX = "testasyncval-"
TAG_PREFIX = "testTag"

ASYNC_INDEXER_PID = "org.apache.jackrabbit.oak.plugins.index.AsyncIndexerService"

DEFAULT_TIMEOUT_MS = 60_000
DEFAULT_DELAY_MS = 500

#: XPath queries tried per lane, most specific first; older Oak versions reject index tags.
QUERY_TEMPLATES = (
    "/jcr:root" + WAIT_FOR_ASYNC_INDEXING_ROOT + "//*[jcr:contains(@{prop}, '{value}')] "
    "option(traversal ok, index tag {tag})",
    "/jcr:root" + WAIT_FOR_ASYNC_INDEXING_ROOT + "//*[jcr:contains(@{prop}, '{value}')] option(traversal ok)",
)

_total_waited_ms = 0
_total_waited_lock = threading.Lock()


def _add_waited(waited_ms: int) -> int:
    global _total_waited_ms
    with _total_waited_lock:
        _total_waited_ms += waited_ms
        return _total_waited_ms


def total_waited_ms() -> int:
    """Time spent in :meth:`IndexingClient.wait_for_async_indexing` by this process."""
    with _total_waited_lock:
        return _total_waited_ms


def index_name(lane: str) -> str:
    return INDEX_PREFIX + lane


def _tag(lane: str) -> str:
    alnum = re.sub(r"[^A-Za-z0-9]", "", lane)
    return TAG_PREFIX + alnum[:1].upper() + alnum[1:]


def index_definition(lane: str) -> Dict[str, Any]:
    prop = PROPERTY_PREFIX + lane
    return {
        index_name(lane): {
            "jcr:primaryType": "oak:QueryIndexDefinition",
            "type": "lucene",
            "async": lane,
            "tags": _tag(lane),
            "indexRules": {
                "jcr:primaryType": "nt:unstructured",
                "nt:base": {
                    "jcr:primaryType": "nt:unstructured",
                    "properties": {
                        "jcr:primaryType": "nt:unstructured",
                        prop: {"jcr:primaryType": "nt:unstructured", "name": prop, "analyzed": True},
                    },
                },
            },
        }
    }


def content_definition(lane: str, unique_value: str) -> Dict[str, Any]:
    value = VALUE_PREFIX + unique_value
    return {
        f"testContent-{lane}-{value}": {
            "jcr:primaryType": "nt:unstructured",
            PROPERTY_PREFIX + lane: value,
        }
    }


def lane_queries(lane: str, unique_value: str) -> List[str]:
    return [
        template.format(prop=PROPERTY_PREFIX + lane, value=VALUE_PREFIX + unique_value, tag=_tag(lane))
        for template in QUERY_TEMPLATES
    ]


class IndexingClient(SlingClient):
    """Blocks until all async indexes are up to date.

    Requires administrative rights: it writes below ``/tmp`` and reads the
    OSGi configuration of the async indexer.
    """

    def get_lane_names(self) -> List[str]:
        """Configured lanes (``index_lanes`` extension), else those of the async indexer."""

        configured = self.config.extensions.index_lanes
        if configured:
            return list(configured)
        try:
            config = self.adapt_to(OsgiConsoleClient).get_osgi_configuration(ASYNC_INDEXER_PID)
        except ClientError as exc:
            raise ClientError("Failed to retrieve lanes") from exc
        async_configs = (config or {}).get("asyncConfigs")
        if not isinstance(async_configs, list):
            raise ClientError("Cannot retrieve config from AsyncIndexerService, asyncConfigs is not a list")
        return [entry.split(":")[0] for entry in async_configs]

    def install(self, lanes: Optional[Sequence[str]] = None) -> None:
        """Create the per-lane indexes unless they already exist."""

        if self.exists(WAIT_FOR_ASYNC_INDEXING_ROOT):
            logger.debug("skipping install, root exists", extra={"path": WAIT_FOR_ASYNC_INDEXING_ROOT})
            return
        self.create_node_recursive(WAIT_FOR_ASYNC_INDEXING_ROOT, "sling:Folder")
        self.create_node(INDEX_PATH, "nt:unstructured")
        self.create_node(CONTENT_PATH, "sling:Folder")
        for lane in lanes if lanes is not None else self.get_lane_names():
            logger.info("creating index", extra={"index": index_name(lane), "path": INDEX_PATH})
            self.import_content(INDEX_PATH, "json", json.dumps(index_definition(lane)))
            self.set_property_string(f"{INDEX_PATH}/{index_name(lane)}", "reindex", "true")

    def uninstall(self) -> None:
        self.delete_path(WAIT_FOR_ASYNC_INDEXING_ROOT, expected_status=200)

    def wait_for_async_indexing(
        self, timeout_ms: int = DEFAULT_TIMEOUT_MS, delay_ms: int = DEFAULT_DELAY_MS
    ) -> PollOutcome:
        """Block until every async lane has indexed a freshly written sentinel.

        Raises:
            PollTimeoutError: If some lane did not catch up within ``timeout_ms``.
        """
        lanes = self.get_lane_names()
        self.install(lanes)
        unique_value = str(uuid.uuid4())
        poller = self.poller(lambda: self._search_content(lanes, unique_value))
        try:
            self._create_content(lanes, unique_value)
            return poller.poll(timeout_ms, delay_ms)
        finally:
            total = _add_waited(poller.waited_ms)
            logger.info("Waited for async index %s ms (overall: %s ms)", poller.waited_ms, total)
            try:
                self.delete_path(f"{CONTENT_PATH}/{unique_value}", expected_status=200)
            except ClientError:
                logger.warning("failed to delete temporary content", exc_info=True)

    def _create_content(self, lanes: Sequence[str], unique_value: str) -> None:
        holder = f"{CONTENT_PATH}/{unique_value}"
        self.create_node(holder, "sling:Folder")
        for lane in lanes:
            self.import_content(holder, "json", json.dumps(content_definition(lane, unique_value)))

    def _search_content(self, lanes: Sequence[str], unique_value: str) -> bool:
        return all(self._search_lane(lane, unique_value) for lane in lanes)

    def _search_lane(self, lane: str, unique_value: str) -> bool:
        queries = self.adapt_to(QueryClient)
        name = index_name(lane)
        for query in lane_queries(lane, unique_value):
            try:
                plan = queries.get_plan(query, QueryType.XPATH)
                if name not in plan:
                    logger.debug("index not in plan, trying next query", extra={"index": name, "plan": plan})
                    continue
                if queries.do_count(query, QueryType.XPATH) > 0:
                    return True
            except ClientError as exc:
                if exc.http_status != 400:
                    raise
                logger.debug("unsupported query, trying next one", extra={"query": query})
        return False
