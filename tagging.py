"""Keyword tagging for batches of archived messages."""

from datetime import datetime
from typing import List, Optional

TAG_VOCABULARY = (
    "code",
    "programming",
    "technical",
    "api",
    "database",
    "frontend",
    "backend",
    "design",
    "ui",
    "ux",
    "user",
    "interface",
    "data",
    "analysis",
    "research",
    "writing",
    "content",
    "creative",
    "business",
    "strategy",
    "planning",
)

FALLBACK_TAG = "general"


def time_of_day_tag(now: datetime) -> str:
    if now.hour < 12:
        return "morning"
    if now.hour < 18:
        return "afternoon"
    return "evening"


def generate_tags(messages: List[str], now: Optional[datetime] = None) -> List[str]:
    """Tag a batch of messages by the vocabulary terms it mentions.

    Terms are matched as substrings of the lowercased batch text, so 'database'
    also yields 'data'. Matched terms keep vocabulary order and are followed by a
    time-of-day tag. A batch that matches nothing is tagged 'general' alone.
    """
    all_text = " ".join(messages).lower()
    tags = [keyword for keyword in TAG_VOCABULARY if keyword in all_text]

    if not tags:
        return [FALLBACK_TAG]

    tags.append(time_of_day_tag(now or datetime.now()))
    return tags
