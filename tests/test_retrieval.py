"""Tests for the retrieval context builder."""

from services.retrieval import ContextRetriever, Document, DocumentSearch


class FakeSearch(DocumentSearch):
    def __init__(self, documents=None, error=None):
        self.documents = documents or []
        self.error = error
        self.queries = []

    async def similarity_search(self, query, k):
        self.queries.append((query, k))
        if self.error is not None:
            raise self.error
        return self.documents[:k]


async def test_context_joins_top_documents():
    search = FakeSearch([Document(page_content=f"doc {i}") for i in range(5)])
    retriever = ContextRetriever(search, top_k=3)

    context = await retriever.build_context("refund policy")

    assert context == "doc 0\n\ndoc 1\n\ndoc 2"
    assert search.queries == [("refund policy", 3)]


async def test_blank_documents_are_skipped():
    search = FakeSearch([Document(page_content="  "), Document(page_content="useful\n")])

    assert await ContextRetriever(search, top_k=5).build_context("q") == "useful"


async def test_search_failure_yields_empty_context():
    retriever = ContextRetriever(FakeSearch(error=ConnectionError("index offline")))

    assert await retriever.build_context("anything") == ""


async def test_empty_query_skips_search():
    search = FakeSearch([Document(page_content="doc")])

    assert await ContextRetriever(search).build_context("   ") == ""
    assert search.queries == []
