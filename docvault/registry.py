# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Record-Set Registry - Runtime discovery of record sets.

The set of record kinds changes between deployments, so nothing here is
cached: every call asks the store driver for its live state.
"""

from typing import List

import structlog

from docvault.exceptions import RegistryUnavailable
from docvault.store import StoreDriver

logger = structlog.get_logger()


async def list_set_names(driver: StoreDriver) -> List[str]:
    """
    List every record set currently known to the store.

    Args:
        driver: Store driver to query

    Returns:
        Set names in discovery order, without duplicates

    Raises:
        RegistryUnavailable: If the driver cannot be queried
    """
    try:
        names = await driver.list_set_names()
    except Exception as e:
        logger.error("registry_unavailable", error=str(e))
        raise RegistryUnavailable(
            f"Record-set registry unavailable: {e}",
            details={"error_type": type(e).__name__},
        ) from e

    # dict preserves discovery order while dropping repeats
    unique = list(dict.fromkeys(names))

    logger.debug("record_sets_discovered", count=len(unique), names=unique)
    return unique
