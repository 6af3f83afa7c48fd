"""
RAG tool: semantic search over the user's emails, calendar and CRM data.
"""
from typing import Any, Dict

from copilot.core.logging import logger
from copilot.services.retrieval import SEARCH_TYPE_SOURCES, Retriever, time_range_bounds
from copilot.tools.dispatcher import Target


def build_filters(args: Dict[str, Any]) -> Dict[str, Any]:
    """Translate validated search_rag arguments into retriever filters."""
    filters: Dict[str, Any] = {"limit": args.get("max_results") or 10}

    sources = SEARCH_TYPE_SOURCES.get(args.get("search_type") or "general")
    if sources:
        filters["sources"] = sources

    if args.get("time_range"):
        filters["date_range"] = time_range_bounds(args["time_range"])

    return filters


def make_search_rag(retriever: Retriever) -> Target:
    """
    Build the search_rag capability target around a retriever.

    Args:
        retriever: The retrieval backend to query

    Returns:
        An async target returning `results`, `count` and a `summary`
    """

    async def search_rag(user_id: str, args: Dict[str, Any]) -> Dict[str, Any]:
        query = args["query"]
        logger.debug(f"Executing RAG search: {query} (type: {args.get('search_type', 'general')})")

        snippets = await retriever.search(user_id, query, build_filters(args))

        return {
            "query": query,
            "results": [s.model_dump(mode="json", exclude={"metadata"}) for s in snippets],
            "count": len(snippets),
            "summary": f"Found {len(snippets)} results for '{query}'" if snippets else "No results found.",
        }

    return search_rag
