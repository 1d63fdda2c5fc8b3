"""
TF-IDF term weighting and ranked retrieval over stored page content.
"""

import logging
import math
import re
import time
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from ..storage.models import Page, PageFilter


STOP_WORDS = frozenset("""
    the a an and or but in on at to for of as by is was are were been be have
    has had do does did will would should could may might can this that these
    those it its with from into out over under about which who where when why
    how all each any some more than not only such here there also their them
    his her using
""".split())

_EDGE_PUNCTUATION = re.compile(r'^[\W_]+|[\W_]+$')


def tokenize(text: Optional[str]) -> List[str]:
    """Lowercase, split on whitespace, trim punctuation, drop short and stop words."""
    terms = []
    for word in (text or "").lower().split():
        word = _EDGE_PUNCTUATION.sub('', word)
        if len(word) > 2 and word not in STOP_WORDS:
            terms.append(word)
    return terms


@dataclass
class TfIdfStats:
    total_documents: int
    unique_terms: int
    avg_doc_length: float


class TfIdfCalculator:
    """
    TF-IDF over a fixed corpus.

    tf(t, d) = count(t, d) / len(d) and idf(t) = ln(N / df(t)), so a term
    found in every document carries no weight.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._reset()

    def _reset(self):
        self.term_doc_freq: Dict[str, Dict[int, int]] = {}
        self.document_freq: Dict[str, int] = {}
        self.doc_lengths: Dict[int, int] = {}
        self.total_docs = 0
        self._doc_norms: Dict[int, float] = {}

    def build_from_corpus(self, documents: Iterable[Tuple[int, str]]):
        """Index (doc_id, text) pairs, replacing any previous corpus."""
        self._reset()

        for doc_id, text in documents:
            terms = tokenize(text)
            self.doc_lengths[doc_id] = len(terms)
            for term, count in Counter(terms).items():
                self.document_freq[term] = self.document_freq.get(term, 0) + 1
                self.term_doc_freq.setdefault(term, {})[doc_id] = count

        self.total_docs = len(self.doc_lengths)

        norms: Dict[int, float] = {doc_id: 0.0 for doc_id in self.doc_lengths}
        for term, postings in self.term_doc_freq.items():
            for doc_id in postings:
                norms[doc_id] += self.tfidf(term, doc_id) ** 2
        self._doc_norms = {doc_id: math.sqrt(total) for doc_id, total in norms.items()}

        self.logger.info(f"TF-IDF index built: {self.total_docs} documents, "
                         f"{len(self.term_doc_freq)} unique terms")

    def tf(self, term: str, doc_id: int) -> float:
        count = self.term_doc_freq.get(term, {}).get(doc_id, 0)
        length = self.doc_lengths.get(doc_id, 0)
        return count / length if length else 0.0

    def idf(self, term: str) -> float:
        df = self.document_freq.get(term, 0)
        return math.log(self.total_docs / df) if df else 0.0

    def tfidf(self, term: str, doc_id: int) -> float:
        return self.tf(term, doc_id) * self.idf(term)

    def top_terms(self, doc_id: int, n: int = 10) -> List[Tuple[str, float]]:
        """The n highest weighted terms of a document; ties break alphabetically."""
        scores = [
            (term, self.tfidf(term, doc_id))
            for term, postings in self.term_doc_freq.items() if doc_id in postings
        ]
        scores = [item for item in scores if item[1] > 0]
        scores.sort(key=lambda item: (-item[1], item[0]))
        return scores[:n]

    def query_similarity(self, query: str, doc_id: int) -> float:
        """Cosine similarity between the query's and the document's TF-IDF vectors."""
        terms = tokenize(query)
        doc_norm = self._doc_norms.get(doc_id, 0.0)
        if not terms or doc_norm == 0:
            return 0.0

        dot_product = query_norm = 0.0
        for term, count in Counter(terms).items():
            query_weight = count / len(terms) * self.idf(term)
            dot_product += query_weight * self.tfidf(term, doc_id)
            query_norm += query_weight ** 2

        if query_norm == 0:
            return 0.0
        return dot_product / (math.sqrt(query_norm) * doc_norm)

    def get_stats(self) -> TfIdfStats:
        lengths = self.doc_lengths.values()
        return TfIdfStats(
            total_documents=self.total_docs,
            unique_terms=len(self.term_doc_freq),
            avg_doc_length=sum(lengths) / len(lengths) if lengths else 0.0,
        )


@dataclass
class SearchResult:
    page: Page
    score: float


class TfIdfSearch:
    """Loads stored pages, indexes title and content, and ranks them for queries."""

    def __init__(self, storage):
        self.storage = storage
        self.calculator = TfIdfCalculator()
        self.pages: Dict[int, Page] = {}
        self.logger = logging.getLogger(__name__)

    async def build(self, page_filter: Optional[PageFilter] = None) -> TfIdfStats:
        start_time = time.time()
        pages = await self.storage.get_pages(page_filter)
        self.pages = {page.id: page for page in pages}
        self.calculator.build_from_corpus(
            (page.id, f"{page.title or ''} {page.content or ''}") for page in pages
        )
        self.logger.info(f"Indexed {len(pages)} pages in {time.time() - start_time:.2f}s")
        return self.calculator.get_stats()

    def search(self, query: str, limit: int = 10) -> List[SearchResult]:
        """Pages with a positive score, best first; equal scores keep page id order."""
        results = []
        for page_id, page in self.pages.items():
            score = self.calculator.query_similarity(query, page_id)
            if score > 0:
                results.append(SearchResult(page=page, score=score))

        results.sort(key=lambda result: (-result.score, result.page.id))
        return results[:limit]
