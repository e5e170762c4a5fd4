"""Discover the destination's model catalog in an open tab and persist it."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Protocol

from thread_relay.browser.tabs import AutomationTab
from thread_relay.errors import DiscoveryFailure
from thread_relay.models import ModelCatalog, ModelOption
from thread_relay.store.settings import CatalogRepository
from thread_relay.timing import with_timeout

logger = logging.getLogger(__name__)


class CatalogDiscovery(Protocol):
    async def discover(self, tab: AutomationTab) -> list[ModelOption]:
        """Read model options from the page."""


async def refresh_catalog(
    tab: AutomationTab,
    discovery: CatalogDiscovery,
    repository: CatalogRepository,
    now: datetime,
    *,
    timeout_seconds: float,
) -> ModelCatalog:
    """Run discovery under a timeout and persist a non-empty result.

    An empty or failed discovery raises ``DiscoveryFailure`` and leaves the stored
    catalog untouched.
    """
    try:
        models = await with_timeout(
            discovery.discover(tab),
            timeout_seconds,
            lambda: DiscoveryFailure(f"Model discovery did not finish within {timeout_seconds:.0f}s."),
        )
    except DiscoveryFailure:
        raise
    except Exception as exc:
        raise DiscoveryFailure(f"Model discovery failed: {exc}") from exc

    if not models:
        raise DiscoveryFailure("No models were found on the destination page; keeping the previous catalog.")
    catalog = repository.save(models, now)
    logger.info("Saved %s models to the catalog", len(models))
    return catalog
