"""
Shared test fixtures for the creator earnings analytics test suite.

The autouse fixture `offline_video_store` patches the video store's client
factory so no test can reach a real store: any fetch that a test did not
mock explicitly gets a 404 and surfaces as an AccountFetchError.
"""

import os
import sys

import httpx
import pytest
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(autouse=True)
def offline_video_store():
    """
    Auto-mock the video store client for ALL tests.

    Tests that exercise the store client pass their own AsyncClient built
    on httpx.MockTransport; everything else hits this 404 transport.
    """
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(404, text="offline")

    def make_client() -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="http://video-store.test",
        )

    with patch("services.video_store._make_client", side_effect=make_client), \
         patch("services.video_store.RETRY_BACKOFF_BASE", 0):
        yield requests
