"""Tests for keyword tagging of archived batches."""

from __future__ import annotations

from datetime import datetime

import pytest

from tagging import FALLBACK_TAG, TAG_VOCABULARY, generate_tags, time_of_day_tag

MORNING = datetime(2024, 5, 1, 9, 30)
AFTERNOON = datetime(2024, 5, 1, 14, 0)
EVENING = datetime(2024, 5, 1, 21, 15)


class TestTimeOfDayTag:
    """Test time-of-day boundaries."""

    @pytest.mark.parametrize(
        "hour, expected",
        [
            (0, "morning"),
            (11, "morning"),
            (12, "afternoon"),
            (17, "afternoon"),
            (18, "evening"),
            (23, "evening"),
        ],
    )
    def test_boundaries(self, hour, expected):
        assert time_of_day_tag(datetime(2024, 5, 1, hour, 59)) == expected


class TestGenerateTags:
    """Test vocabulary matching and fallback."""

    def test_matches_follow_vocabulary_order_then_time(self):
        """Tags come out in vocabulary order with the time tag last."""
        tags = generate_tags(["We need a new API", "and the design doc for it"], now=AFTERNOON)
        assert tags == ["api", "design", "afternoon"]

    def test_substring_matching(self):
        """Terms match as substrings, so 'database' also yields 'data'."""
        tags = generate_tags(["Refactor the Database schema"], now=MORNING)
        assert tags == ["database", "data", "morning"]

    def test_no_match_falls_back_to_general_only(self):
        """Without a vocabulary match the result is 'general' alone, without a time tag."""
        assert generate_tags(["hello there"], now=EVENING) == [FALLBACK_TAG]

    def test_empty_batch_is_general(self):
        assert generate_tags([], now=EVENING) == [FALLBACK_TAG]

    def test_terms_across_messages_are_combined(self):
        tags = generate_tags(["some research", "a business plan"], now=EVENING)
        assert tags == ["research", "business", "evening"]

    def test_every_tag_is_known(self):
        tags = generate_tags(["code review of the frontend and backend"], now=MORNING)
        assert tags[-1] == "morning"
        assert all(tag in TAG_VOCABULARY for tag in tags[:-1])
