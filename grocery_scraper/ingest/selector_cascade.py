"""Ordered selector cascade for locating product nodes."""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from grocery_scraper.ingest.base import BrowserDriver, SessionCrashedError

logger = logging.getLogger(__name__)


@dataclass
class CascadeResult:
    """Nodes found by the winning selector."""

    selector: Optional[str] = None
    nodes: List[Any] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.nodes)


class SelectorCascade:
    """
    Resolves product nodes by trying selectors in priority order.

    The first selector with at least one match wins and the rest are never
    tried, so node shapes from different selectors are never mixed on one
    page. An early selector matching stray elements is an accepted cost.
    """

    async def resolve_product_nodes(
        self,
        driver: BrowserDriver,
        session: Any,
        candidate_selectors: Sequence[str],
    ) -> CascadeResult:
        """
        Try each selector in order and commit to the first hit.

        Args:
            driver: Browser driver
            session: Driver session handle
            candidate_selectors: Selectors in priority order

        Returns:
            CascadeResult; empty when nothing matched

        Raises:
            SessionCrashedError: If the session died while querying
        """
        total = len(candidate_selectors)
        for i, selector in enumerate(candidate_selectors):
            try:
                nodes = await driver.query_all(session, selector)
            except SessionCrashedError:
                raise
            except Exception as e:
                logger.debug(f"Selector {i+1}/{total} error: {selector[:50]} - {e}")
                continue

            if nodes:
                logger.debug(f"Selector {i+1}/{total} matched {len(nodes)} nodes: {selector[:50]}")
                return CascadeResult(selector=selector, nodes=list(nodes))

        return CascadeResult()


selector_cascade = SelectorCascade()
