"""
Document retrieval for turn context.

A DocumentSearch backend answers similarity queries with ranked documents;
ContextRetriever joins the top results into the context text that the chat
store splices into its system instruction.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import logfire
from pydantic import BaseModel, Field

from config.settings import settings


class Document(BaseModel):
    """A retrieved document."""
    page_content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    score: Optional[float] = None


class DocumentSearch(ABC):
    """Similarity search over an external document index."""

    @abstractmethod
    async def similarity_search(self, query: str, k: int) -> List[Document]:
        """Return up to k documents, best match first."""
        ...


class ContextRetriever:
    """Turns a user query into context text via a DocumentSearch backend."""

    def __init__(self, search: DocumentSearch, top_k: Optional[int] = None) -> None:
        self.search = search
        self.top_k = settings.RETRIEVAL_TOP_K if top_k is None else top_k

    async def build_context(self, query: str) -> str:
        """
        Fetch the top documents for query and join their text.

        Search failures are logged and yield an empty context so the turn can
        still be sent.
        """
        if not query.strip():
            return ""
        try:
            documents = await self.search.similarity_search(query, self.top_k)
        except Exception as e:
            logfire.error(f"Document search failed for query {query[:50]!r}: {e!r}")
            return ""

        logfire.info(f"Retrieved {len(documents)} documents for context")
        return "\n\n".join(doc.page_content.strip() for doc in documents if doc.page_content.strip())
