"""Tests for shared budget and formatting constants."""

import multiblock.constants as constants


class TestMemoryBudget:
    def test_header_overhead_matches_formatted_header(self):
        """Header overhead is the length of the smallest header."""
        assert constants.MEMORY_HEADER_OVERHEAD == len("## Memory\n\n### Facts\n") == 21

    def test_default_budget(self):
        assert constants.DEFAULT_MAX_MEMORY_CHARS == 8000
        assert constants.MEMORY_ITEM_OVERHEAD == 20


class TestPriorities:
    def test_type_priority_order(self):
        ordered = sorted(constants.TYPE_PRIORITY, key=constants.TYPE_PRIORITY.get)
        assert ordered == ["constraint", "decision", "fact", "note"]

    def test_scope_priority_order(self):
        ordered = sorted(constants.SCOPE_PRIORITY, key=constants.SCOPE_PRIORITY.get)
        assert ordered == ["board", "block", "chat"]

    def test_every_type_has_a_section(self):
        assert set(constants.TYPE_SECTION_ORDER) == set(constants.TYPE_PRIORITY)
        assert set(constants.TYPE_LABELS) == set(constants.TYPE_PRIORITY)


class TestResolution:
    def test_summary_limits(self):
        assert constants.SUMMARY_MAX_CHARS == 200
        assert constants.SUMMARY_ELLIPSIS == "..."

    def test_placeholder(self):
        assert constants.TEMPLATE_PLACEHOLDER == "{{output}}"
