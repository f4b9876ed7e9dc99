"""
Tests for per-doodle reaction summaries.
"""

from uuid import uuid4

from doodlesync.schemas.reaction import ReactionSummary
from doodlesync.services.reaction_aggregator import summarize

from factories import make_aggregated


class TestSummarize:
    def test_ranks_by_count_and_totals_everything(self):
        doodle_id = uuid4()
        rows = [make_aggregated(doodle_id, e) for e in ["❤️", "❤️", "😂", "😂", "😂", "🔥"]]

        summary = summarize(rows)[doodle_id]

        assert summary.top_emojis == ["😂", "❤️", "🔥"]
        assert summary.total_count == 6
        assert len(summary.reactions) == 6

    def test_keeps_only_top_three(self):
        doodle_id = uuid4()
        rows = [make_aggregated(doodle_id, e) for e in ["👍", "😮", "😮", "😢", "😢", "😢", "🔥", "🔥", "🔥", "🔥"]]

        summary = summarize(rows)[doodle_id]

        assert summary.top_emojis == ["🔥", "😢", "😮"]
        assert summary.total_count == 10

    def test_ties_keep_first_seen_order(self):
        doodle_id = uuid4()
        rows = [make_aggregated(doodle_id, e) for e in ["🔥", "❤️", "❤️", "🔥", "👍"]]

        assert summarize(rows)[doodle_id].top_emojis == ["🔥", "❤️", "👍"]

    def test_groups_per_doodle(self):
        first, second = uuid4(), uuid4()
        rows = [
            make_aggregated(first, "❤️"),
            make_aggregated(second, "😂"),
            make_aggregated(first, "❤️"),
        ]

        summaries = summarize(rows)

        assert summaries[first].total_count == 2
        assert summaries[second].top_emojis == ["😂"]

    def test_empty_input(self):
        assert summarize([]) == {}

    def test_same_input_same_output(self):
        doodle_id = uuid4()
        rows = [make_aggregated(doodle_id, e) for e in ["😂", "❤️", "😂", "👍", "❤️"]]

        assert summarize(rows) == summarize(list(rows))


class TestEmptySummary:
    def test_empty_summary(self):
        summary = ReactionSummary.empty()
        assert summary.is_empty
        assert summary.total_count == 0
        assert summary.top_emojis == []
