from __future__ import annotations

import logging
import os
from typing import Optional

import requests

from ..domain.chat_models import SearchResult

logger = logging.getLogger(__name__)

SERPAPI_URL = "https://serpapi.com/search"
NO_RESULTS_TEXT = "No relevant results found."
UNAVAILABLE_TEXT = "Search unavailable; proceeding with internal knowledge."


class SearchClient:
    """Google results through SerpAPI, flattened to one line per hit."""

    def __init__(self, api_key: Optional[str] = None, session: Optional[requests.Session] = None, num: int = 5) -> None:
        self.api_key = api_key
        self.num = num
        self._session = session or requests.Session()

    @classmethod
    def from_env(cls) -> "SearchClient":
        return cls(api_key=os.getenv("SERPAPI_API_KEY") or None)

    def search(self, query: str) -> SearchResult:
        """Never raises: failures yield a placeholder result so the turn can proceed."""
        if not self.api_key:
            logger.debug("search_skipped_no_key")
            return SearchResult(query=query, results=UNAVAILABLE_TEXT)
        try:
            resp = self._session.get(
                SERPAPI_URL,
                params={"engine": "google", "q": query, "api_key": self.api_key, "num": str(self.num)},
                timeout=10,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("search_failed", extra={"err": str(exc)})
            return SearchResult(query=query, results=UNAVAILABLE_TEXT)
        lines = [
            f"{r.get('title')}: {r.get('snippet')} ({r.get('link')})"
            for r in (data.get("organic_results") or [])[: self.num]
        ]
        return SearchResult(query=query, results="\n".join(lines) if lines else NO_RESULTS_TEXT)
