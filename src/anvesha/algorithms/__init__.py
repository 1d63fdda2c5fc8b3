"""
Ranking algorithms run over the stored link graph and page content.
"""

from .pagerank import PageRankCalculator, PageRankEngine, PageRankResult, top_pages
from .tfidf import SearchResult, TfIdfCalculator, TfIdfSearch, tokenize

__all__ = [
    'PageRankCalculator', 'PageRankEngine', 'PageRankResult', 'top_pages',
    'SearchResult', 'TfIdfCalculator', 'TfIdfSearch', 'tokenize',
]
