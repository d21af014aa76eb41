"""
Retention policy enforcement for backup tiers.

Selection is pure: it only decides which archives go. Deleting them is
left to the caller, which is how dry runs reuse the same selection.
"""

import logging
from typing import Dict, Iterable, List, Set

from rotabackup.models import Archive, RetentionTier


logger = logging.getLogger(__name__)


def sort_newest_first(archives: Iterable[Archive]) -> List[Archive]:
    """
    Order archives newest first.

    The key is the timestamp parsed from the filename, then the collision
    suffix, then the filename itself, which makes the order total and
    independent of directory listing order.
    """
    return sorted(archives, key=lambda a: a.sort_key, reverse=True)


def select_for_deletion(archives: Iterable[Archive], keep_count: int) -> Set[Archive]:
    """
    Select the archives a tier does not keep.

    Args:
        archives: Archives of one tier, in any order
        keep_count: Number of newest archives to keep (0 drops all)

    Returns:
        Set of archives to delete; empty when keep_count >= len(archives)

    Raises:
        ValueError: If keep_count is negative
    """
    if keep_count < 0:
        raise ValueError(f"keep_count must be >= 0, got {keep_count}")

    ordered = sort_newest_first(archives)
    return set(ordered[keep_count:])


class RetentionManager:
    """
    Plans retention for all tiers of a backup root.

    Each tier is evaluated independently against its own keep count.
    """

    def __init__(self, tiers: List[RetentionTier]):
        """
        Initialize retention manager.

        Args:
            tiers: RetentionTier per tier name
        """
        self.tiers = {tier.name: tier for tier in tiers}

    def plan_tier(self, tier: str, archives: Iterable[Archive]) -> List[Archive]:
        """
        Deletion list for one tier, newest first.

        Raises:
            KeyError: If the tier is unknown
        """
        keep_count = self.tiers[tier].keep_count
        doomed = select_for_deletion(archives, keep_count)
        return sort_newest_first(doomed)

    def plan(self, inventory: Dict[str, List[Archive]]) -> Dict[str, List[Archive]]:
        """
        Deletion lists for every configured tier.

        Args:
            inventory: Archives per tier name; missing tiers count as empty

        Returns:
            Dict of tier name to deletion list (newest first)
        """
        plan = {}

        for name in self.tiers:
            plan[name] = self.plan_tier(name, inventory.get(name, []))
            logger.debug(
                f"Retention plan for {name}: keep {self.tiers[name].keep_count}, "
                f"delete {len(plan[name])}"
            )

        return plan
