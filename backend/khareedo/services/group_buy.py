"""
Group-buy progress for a property.

A property unlocks its group price once ``min_group_members`` distinct
buyers have joined. Participants are deduplicated by buyer id, so the same
buyer joining twice (or holding two leads) counts once.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass
class GroupBuyProgress:
    min_members: int
    joined: int
    progress_percentage: int
    is_minimum_met: bool
    remaining: int
    message: str

    def to_dict(self) -> dict:
        return {
            "minGroupMembers": self.min_members,
            "joinedCount": self.joined,
            "progressPercentage": self.progress_percentage,
            "isMinimumMet": self.is_minimum_met,
            "remainingMembers": self.remaining,
            "message": self.message,
        }


def _buyer_id(participant) -> Optional[str]:
    if isinstance(participant, str):
        return participant
    if isinstance(participant, dict):
        return participant.get("user_id") or participant.get("userId")
    return getattr(participant, "user_id", None)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def group_buy_progress(min_members: Optional[int], participants: Iterable) -> GroupBuyProgress:
    """
    Progress towards the group-buy threshold.

    ``participants`` may be Lead rows, dicts with a user id, or bare user ids.
    A zero (or missing) threshold reports 0% rather than dividing by zero.
    """
    buyers = {b for b in (_buyer_id(p) for p in participants) if b}
    return progress_for_count(min_members, len(buyers))


def progress_for_count(min_members: Optional[int], count: int) -> GroupBuyProgress:
    """Progress for an already deduplicated participant count."""
    threshold = max(int(min_members or 0), 0)

    if threshold > 0:
        progress = min(100, _round_half_up(count / threshold * 100))
    else:
        progress = 0

    is_met = count >= threshold
    remaining = max(threshold - count, 0)

    if is_met:
        message = f"Group price unlocked! {count} buyers have joined this group."
    elif remaining == 1:
        message = f"{count} of {threshold} joined. 1 more buyer needed to unlock the group price."
    else:
        message = f"{count} of {threshold} joined. {remaining} more buyers needed to unlock the group price."

    return GroupBuyProgress(
        min_members=threshold,
        joined=count,
        progress_percentage=progress,
        is_minimum_met=is_met,
        remaining=remaining,
        message=message,
    )
