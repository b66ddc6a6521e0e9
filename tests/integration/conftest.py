"""Integration test fixtures — live search clusters.

Point the tests at a cluster with:
    CATALOGSYNC_TEST_ES_URL=http://localhost:9200
    CATALOGSYNC_TEST_OS_URL=http://localhost:9201

Tests are skipped when the cluster does not answer. Each session starts
from a freshly deleted test index.
"""

from __future__ import annotations

import os
import time

import httpx
import pytest

TEST_INDEX = "catalogsync-it"


def _wait_for_service(url: str, timeout: float = 10.0) -> bool:
    """Block until *url* returns HTTP 200, or timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            r = httpx.get(url, timeout=5)
            if r.status_code == 200:
                return True
        except httpx.HTTPError:
            pass
        time.sleep(1)
    return False


def _drop_index(host: str, index: str = TEST_INDEX) -> None:
    httpx.delete(f"{host}/{index}", params={"ignore_unavailable": "true"}, timeout=30)


@pytest.fixture(scope="session")
def elasticsearch_url() -> str:
    """Ensure Elasticsearch is running and the test index is gone."""
    host = os.environ.get("CATALOGSYNC_TEST_ES_URL", "")
    if not host:
        pytest.skip("CATALOGSYNC_TEST_ES_URL not set")
    if not _wait_for_service(host):
        pytest.skip(f"Elasticsearch not available at {host}")
    _drop_index(host)
    return host


@pytest.fixture(scope="session")
def opensearch_url() -> str:
    """Ensure OpenSearch is running and the test index is gone."""
    host = os.environ.get("CATALOGSYNC_TEST_OS_URL", "")
    if not host:
        pytest.skip("CATALOGSYNC_TEST_OS_URL not set")
    if not _wait_for_service(host):
        pytest.skip(f"OpenSearch not available at {host}")
    _drop_index(host)
    return host
