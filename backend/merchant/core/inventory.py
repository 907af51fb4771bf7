"""Inventory Matching — resolves requested items against platform inventories.

Invariants:
    - All functions are PURE: no IO, no async, no DB
    - Every returned item is a distinct inventory unit (an asset id is never used twice)
    - Name matching consumes exactly one unit per requested name
    - No partial substitution: select_by_asset_ids raises when anything is missing
"""

from typing import Iterable, Sequence

from merchant.core.domain_types import InventoryItem
from merchant.core.errors import InventoryMismatchError


def select_by_asset_ids(
    inventory: Iterable[InventoryItem], asset_ids: Sequence[str],
) -> list[InventoryItem]:
    """Inventory units for exactly the requested asset ids, in request order."""
    by_id = {item.asset_id: item for item in inventory}
    missing = [asset_id for asset_id in asset_ids if asset_id not in by_id]
    if missing or len(set(asset_ids)) != len(asset_ids):
        raise InventoryMismatchError(missing)
    return [by_id[asset_id] for asset_id in asset_ids]


def match_by_names(
    inventory: Iterable[InventoryItem], names: Sequence[str],
) -> list[InventoryItem]:
    """One inventory unit per requested name; unmatched names are skipped."""
    pool = list(inventory)
    matched: list[InventoryItem] = []
    for name in names:
        for index, item in enumerate(pool):
            if item.market_hash_name == name:
                matched.append(pool.pop(index))
                break
    return matched


def exclude_committed(
    inventory: Iterable[InventoryItem], committed_names: Iterable[str],
) -> list[InventoryItem]:
    """Inventory left after reserving one unit per name committed elsewhere."""
    pool = list(inventory)
    for name in committed_names:
        for index, item in enumerate(pool):
            if item.market_hash_name == name:
                del pool[index]
                break
    return pool


def split_direct_and_missing(
    inventory: Iterable[InventoryItem],
    requested: Sequence[tuple[str, str]],
) -> tuple[list[InventoryItem], list[str]]:
    """Partition (asset_id, name) requests into held units and names to source."""
    by_id = {item.asset_id: item for item in inventory}
    direct: list[InventoryItem] = []
    missing: list[str] = []
    for asset_id, name in requested:
        item = by_id.pop(asset_id, None)
        if item is not None and item.market_hash_name == name:
            direct.append(item)
        else:
            missing.append(name)
    return direct, missing
