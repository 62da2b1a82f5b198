from typing import Iterable, Optional

from .schemas import ReactionCount, ReactionOut, ReactionSummary


def aggregate(reactions: Iterable[ReactionOut]) -> list[ReactionCount]:
    """Collapse per-user reactions into counts per emoji, most used first."""
    counts: dict[str, ReactionCount] = {}
    for reaction in reactions:
        entry = counts.setdefault(reaction.emoji, ReactionCount(emoji=reaction.emoji, count=0))
        entry.count += 1
        if reaction.user is not None:
            entry.users.append(reaction.user.display_name)
        elif reaction.user_id:
            entry.users.append(reaction.user_id)
    # stable sort keeps encounter order between equal counts
    return sorted(counts.values(), key=lambda c: c.count, reverse=True)


def current_reaction(reactions: Iterable[ReactionOut], user_id: Optional[str]) -> Optional[ReactionOut]:
    if user_id is None:
        return None
    for reaction in reactions:
        if reaction.user_id == user_id:
            return reaction
    return None


def summarize(reactions: list[ReactionOut], user_id: Optional[str] = None) -> ReactionSummary:
    mine = current_reaction(reactions, user_id)
    return ReactionSummary(
        reactions=aggregate(reactions),
        my_reaction=mine.emoji if mine else None,
    )


def is_toggle_off(reactions: Iterable[ReactionOut], user_id: str, emoji: str) -> bool:
    """Choosing the emoji you already reacted with removes the reaction."""
    mine = current_reaction(reactions, user_id)
    return mine is not None and mine.emoji == emoji
