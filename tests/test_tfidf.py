import math

import pytest

from anvesha.algorithms.tfidf import TfIdfCalculator, TfIdfSearch, tokenize
from anvesha.storage.models import Page, PageFilter


CORPUS = [
    (1, "web crawler crawls the web"),
    (2, "web design for modern websites"),
    (3, "search engine crawler technology"),
]


@pytest.fixture
def calculator():
    calc = TfIdfCalculator()
    calc.build_from_corpus(CORPUS)
    return calc


def test_tokenize_drops_stop_words_short_words_and_punctuation():
    assert tokenize("The Web-Crawler, crawls!! a web.") == ["web-crawler", "crawls", "web"]
    assert tokenize(None) == []


class TestTfIdfCalculator:
    def test_weights(self, calculator):
        assert calculator.tf("web", 1) == pytest.approx(0.5)
        assert calculator.idf("crawler") == pytest.approx(math.log(3 / 2))
        assert calculator.tfidf("web", 1) == pytest.approx(0.5 * math.log(3 / 2))
        assert calculator.tfidf("web", 3) == 0
        assert calculator.idf("unknown") == 0

    def test_term_in_every_document_has_no_weight(self):
        calc = TfIdfCalculator()
        calc.build_from_corpus([(1, "shared alpha"), (2, "shared beta")])
        assert calc.idf("shared") == 0
        assert calc.top_terms(1) == [("alpha", pytest.approx(0.5 * math.log(2)))]

    def test_top_terms_ordered_by_weight(self, calculator):
        assert [term for term, _ in calculator.top_terms(1)] == ["crawls", "web", "crawler"]
        assert len(calculator.top_terms(1, n=2)) == 2

    def test_query_similarity(self, calculator):
        first = calculator.query_similarity("crawler", 1)
        third = calculator.query_similarity("crawler", 3)

        assert first > third > 0
        assert calculator.query_similarity("crawler", 2) == 0
        assert calculator.query_similarity("the", 1) == 0
        assert calculator.query_similarity("crawls", 1) <= 1

    def test_rebuild_replaces_corpus(self, calculator):
        calculator.build_from_corpus([(9, "fresh corpus")])
        assert calculator.get_stats().total_documents == 1
        assert calculator.tf("web", 1) == 0

    def test_stats(self, calculator):
        stats = calculator.get_stats()
        assert stats.total_documents == 3
        assert stats.unique_terms == 9
        assert stats.avg_doc_length == pytest.approx(4.0)

    def test_empty_corpus(self):
        calc = TfIdfCalculator()
        calc.build_from_corpus([])
        assert calc.get_stats().avg_doc_length == 0
        assert calc.query_similarity("anything", 1) == 0


class TestTfIdfSearch:
    @pytest.mark.asyncio
    async def test_search_ranks_stored_pages(self, storage):
        for path, content in [("a", "web crawler crawls the web"),
                              ("b", "web design for modern websites"),
                              ("c", "search engine crawler technology")]:
            await storage.save_page(Page(url=f"https://example.com/{path}", domain="example.com",
                                         content=content))

        engine = TfIdfSearch(storage)
        stats = await engine.build()
        results = engine.search("crawler")

        assert stats.total_documents == 3
        assert [r.page.url for r in results] == ["https://example.com/a", "https://example.com/c"]
        assert results[0].score > results[1].score
        assert engine.search("crawler", limit=1)[0].page.url == "https://example.com/a"
        assert engine.search("nothing matches") == []

    @pytest.mark.asyncio
    async def test_title_is_indexed_and_filter_applies(self, storage):
        await storage.save_page(Page(url="https://example.com/", domain="example.com",
                                     title="Gardening tips", content="soil and water", quality_score=0.9))
        await storage.save_page(Page(url="https://example.com/kitchen", domain="example.com",
                                     title="Cooking", content="recipes and spices"))
        await storage.save_page(Page(url="https://other.org/", domain="other.org",
                                     title="Gardening news", content="plants", quality_score=0.9))

        engine = TfIdfSearch(storage)
        await engine.build(PageFilter(domain="example.com"))

        assert [r.page.url for r in engine.search("soil gardening")] == ["https://example.com/"]
        assert engine.search("plants") == []
