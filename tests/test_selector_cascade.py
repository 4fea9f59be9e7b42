"""Tests for the selector cascade."""

import pytest

from fakes import FakeDriver, FakeNode, FakePage, FakeSession
from grocery_scraper.ingest.base import SessionCrashedError
from grocery_scraper.ingest.selector_cascade import selector_cascade


def _session(page: FakePage) -> FakeSession:
    return FakeSession(current=page)


@pytest.mark.asyncio
async def test_first_matching_selector_wins():
    """Later selectors are never tried once one matches."""
    page = FakePage(nodes={
        ".a": [],
        ".b": [FakeNode("b1"), FakeNode("b2")],
        ".c": [FakeNode("c1")],
    })
    driver = FakeDriver()

    result = await selector_cascade.resolve_product_nodes(driver, _session(page), [".a", ".b", ".c"])

    assert result.selector == ".b"
    assert [n.text for n in result.nodes] == ["b1", "b2"]
    assert driver.queries == [".a", ".b"]


@pytest.mark.asyncio
async def test_no_match_returns_empty_result():
    driver = FakeDriver()

    result = await selector_cascade.resolve_product_nodes(driver, _session(FakePage()), [".a", ".b"])

    assert not result
    assert result.selector is None
    assert result.nodes == []


@pytest.mark.asyncio
async def test_selector_error_falls_through():
    page = FakePage(nodes={".b": [FakeNode("b1")]}, failing_selectors=["[bad"])
    driver = FakeDriver()

    result = await selector_cascade.resolve_product_nodes(driver, _session(page), ["[bad", ".b"])

    assert result.selector == ".b"


@pytest.mark.asyncio
async def test_session_crash_propagates():
    class CrashingDriver(FakeDriver):
        async def query_all(self, session, selector):
            raise SessionCrashedError("Target closed")

    with pytest.raises(SessionCrashedError):
        await selector_cascade.resolve_product_nodes(CrashingDriver(), _session(FakePage()), [".a"])


@pytest.mark.asyncio
async def test_empty_selector_list():
    result = await selector_cascade.resolve_product_nodes(FakeDriver(), _session(FakePage()), [])

    assert not result
