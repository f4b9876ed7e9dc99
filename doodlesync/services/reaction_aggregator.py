from typing import Dict, Iterable, List
from uuid import UUID

from doodlesync.schemas.reaction import AggregatedReaction, ReactionSummary


TOP_EMOJI_LIMIT = 3


def summarize(reactions: Iterable[AggregatedReaction]) -> Dict[UUID, ReactionSummary]:
    """
    Build per-doodle reaction summaries from a flat reaction list.

    Emojis are ranked by descending count; ties keep the order in which each
    emoji was first seen. Only the top three are kept, but `total_count`
    covers every reaction for the doodle. Pure: no I/O, no shared state.
    """
    grouped: Dict[UUID, List[AggregatedReaction]] = {}
    for reaction in reactions:
        grouped.setdefault(reaction.doodle_id, []).append(reaction)

    summaries: Dict[UUID, ReactionSummary] = {}
    for doodle_id, group in grouped.items():
        counts: Dict[str, int] = {}
        for reaction in group:
            # dict preserves insertion order = first-seen order
            counts[reaction.emoji] = counts.get(reaction.emoji, 0) + 1
        ranked = sorted(counts, key=lambda emoji: counts[emoji], reverse=True)
        summaries[doodle_id] = ReactionSummary(
            top_emojis=ranked[:TOP_EMOJI_LIMIT],
            total_count=len(group),
            reactions=group,
        )
    return summaries
