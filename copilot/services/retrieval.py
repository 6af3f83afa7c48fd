"""
Retrieval contract used by the search_rag tool and the context builder.
"""
import re
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from copilot.core.logging import logger
from copilot.db.models import utcnow


class Snippet(BaseModel):
    """A piece of indexed user data returned by a search."""
    text: str
    source: str
    source_id: str
    score: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)


# Which sources each search type looks at; None means all
SEARCH_TYPE_SOURCES = {
    "general": None,
    "person": ["gmail", "hubspot"],
    "contact": ["hubspot", "gmail"],
    "temporal": None,
    "scheduling": ["calendar", "gmail"],
}

_STOPWORDS = {
    "a", "an", "and", "are", "about", "did", "do", "for", "from", "how", "i", "in",
    "is", "it", "me", "my", "of", "on", "or", "the", "to", "was", "what", "when",
    "who", "with",
}


def time_range_bounds(time_range: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Translate a named time range into a (start, end) window."""
    now = now or utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if time_range == "this_week":
        start = midnight - timedelta(days=now.weekday())
        return start, start + timedelta(days=7)
    if time_range == "this_month":
        start = midnight.replace(day=1)
        next_month = (start + timedelta(days=32)).replace(day=1)
        return start, next_month
    if time_range == "this_year":
        start = midnight.replace(month=1, day=1)
        return start, start.replace(year=start.year + 1)
    # "recent" and anything unknown: the last seven days
    return now - timedelta(days=7), now


def extract_keywords(text: str) -> List[str]:
    words = re.findall(r"[\w@.+-]+", text.lower())
    return [w.strip(".") for w in words if w.strip(".") and w not in _STOPWORDS]


class Retriever(ABC):
    """Semantic search over the user's indexed emails, events and contacts."""

    @abstractmethod
    async def search(self, user_id: str, query: str, filters: Dict[str, Any]) -> List[Snippet]:
        """
        Search the user's data.

        Args:
            user_id: Owner of the data
            query: Free-text query
            filters: Optional keys `sources` (list of str), `date_range`
                ((start, end) datetimes) and `limit` (int)

        Returns:
            Snippets ordered by descending score
        """


class KeywordRetriever(Retriever):
    """
    Keyword-overlap retriever over snippets indexed in process.

    Snippets are scored by the share of query keywords they contain; a
    snippet must contain at least one keyword to be returned.
    """

    def __init__(self):
        self._snippets: Dict[str, List[Snippet]] = defaultdict(list)

    def index(self, user_id: str, snippet: Snippet) -> None:
        self._snippets[user_id].append(snippet)

    async def search(self, user_id: str, query: str, filters: Dict[str, Any]) -> List[Snippet]:
        keywords = extract_keywords(query)
        if not keywords:
            return []

        sources = filters.get("sources")
        date_range = filters.get("date_range")
        limit = filters.get("limit", 10)

        results = []
        for snippet in self._snippets.get(user_id, []):
            if sources and snippet.source not in sources:
                continue
            if date_range and not (date_range[0] <= snippet.created_at <= date_range[1]):
                continue

            text = snippet.text.lower()
            hits = sum(1 for keyword in keywords if keyword in text)
            if hits:
                results.append(snippet.model_copy(update={"score": hits / len(keywords)}))

        results.sort(key=lambda s: (s.score, s.created_at), reverse=True)
        logger.debug(f"Keyword search for user {user_id} matched {len(results)} snippets")
        return results[:limit]
