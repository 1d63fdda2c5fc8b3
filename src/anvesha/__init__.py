"""
Anvesha Crawler

A polite, prioritized web crawler that stores a link graph and ranks it with PageRank.
"""

__version__ = "1.0.0"
__description__ = "A concurrent web crawler with link-graph storage and PageRank ranking"
