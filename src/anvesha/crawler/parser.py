"""
Page processor: turns fetched HTML into text, metadata, outbound links and a quality score.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple, Union
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Comment

from .errors import ParseError
from .urls import try_normalize_url


ACCEPTED_CONTENT_TYPES = ('text/html', 'application/xhtml+xml', 'text/plain')

SKIP_EXTENSIONS = (
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.zip', '.rar', '.tar', '.gz', '.exe', '.dmg', '.iso',
    '.mp3', '.mp4', '.avi', '.mov', '.wmv', '.flv',
    '.css', '.js', '.ico', '.woff', '.woff2', '.ttf', '.eot',
)

DESCRIPTION_EXCERPT_LENGTH = 160


@dataclass
class ExtractedLink:
    """An outbound anchor found on a page."""
    url: str
    anchor_text: Optional[str]
    position: int


@dataclass
class ProcessedPage:
    """Container for processed page content."""
    url: str
    depth: int
    content_type: str
    content_length: int
    title: Optional[str] = None
    description: Optional[str] = None
    content: str = ""
    keywords: List[str] = field(default_factory=list)
    language: str = "en"
    links: List[ExtractedLink] = field(default_factory=list)
    links_to_enqueue: List[str] = field(default_factory=list)
    word_count: int = 0
    quality_score: float = 0.0
    content_hash: str = ""


def hash_content(content: str) -> str:
    """Digest of whitespace-collapsed, lowercased content."""
    normalized = ' '.join(content.lower().split())
    return hashlib.sha256(normalized.encode('utf-8')).hexdigest()


class PageProcessor:
    """
    Parses HTML content to extract text, metadata and links.

    Every anchor (including links back to the page itself, such as
    fragment-only hrefs) is reported in
    `links` so the link graph stays complete; only `links_to_enqueue` is
    filtered for self-links and blocked domains.
    """

    def __init__(self, max_links_per_page: int = 1000,
                 allowed_domains: Optional[Iterable[str]] = None,
                 blocked_domains: Optional[Iterable[str]] = None):
        self.max_links_per_page = max_links_per_page
        self.allowed_domains = set(allowed_domains) if allowed_domains else set()
        self.blocked_domains = set(blocked_domains) if blocked_domains else set()
        self.logger = logging.getLogger(__name__)

        self.whitespace_pattern = re.compile(r'\s+')

    def process(self, url: str, depth: int, raw_html: Union[bytes, str],
                content_type: Optional[str]) -> ProcessedPage:
        """
        Process a fetched page.

        Args:
            url: The URL of the page
            depth: Crawl depth of the page
            raw_html: Response body
            content_type: Response Content-Type header (may carry a charset)

        Returns:
            ProcessedPage with extracted data

        Raises:
            ParseError: for binary content or unsupported content types
        """
        media_type, charset = self._split_content_type(content_type)
        if media_type not in ACCEPTED_CONTENT_TYPES:
            raise ParseError(f"Unsupported content type: {media_type}", url)

        text = self._decode(raw_html, charset, url)
        page_url = try_normalize_url(url) or url
        content_length = len(raw_html) if isinstance(raw_html, bytes) else len(text.encode('utf-8'))

        page = ProcessedPage(url=page_url, depth=depth, content_type=media_type,
                             content_length=content_length)

        if media_type == 'text/plain':
            page.content = self._clean_text(text)
        else:
            self._process_html(page, text)

        if not page.description and page.content:
            page.description = self._excerpt(page.content)

        page.word_count = len(page.content.split())
        page.content_hash = hash_content(page.content)
        page.quality_score = self.calculate_quality(
            page.content, page.title, len(text), self._anchor_word_count(page.links))

        self.logger.debug(f"Processed {page_url}: {page.word_count} words, "
                          f"{len(page.links)} links, quality={page.quality_score:.2f}")
        return page

    def _process_html(self, page: ProcessedPage, text: str):
        try:
            soup = BeautifulSoup(text, 'lxml')
        except Exception as e:
            raise ParseError(f"Unparseable markup: {e}", page.url) from e

        for element in soup(["script", "style", "noscript", "template"]):
            element.decompose()
        for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
            comment.extract()

        page.language = self._extract_language(soup)
        page.title = self._extract_title(soup)
        page.description = self._extract_description(soup)
        page.keywords = self._extract_keywords(soup)

        base_url = self._extract_base_url(soup, page.url)
        page.links = self._extract_links(soup, base_url)
        page.links_to_enqueue = [link.url for link in page.links
                                 if link.url != page.url and self._should_enqueue(link.url)]

        body = soup.body or soup
        page.content = self._clean_text(body.get_text(separator=' '))

    @staticmethod
    def _split_content_type(content_type: Optional[str]) -> Tuple[str, Optional[str]]:
        if not content_type:
            return 'text/html', None
        parts = [p.strip() for p in content_type.split(';')]
        media_type = parts[0].lower() or 'text/html'
        charset = None
        for part in parts[1:]:
            if part.lower().startswith('charset='):
                charset = part.split('=', 1)[1].strip('"\' ') or None
        return media_type, charset

    def _decode(self, raw: Union[bytes, str], charset: Optional[str], url: str) -> str:
        if isinstance(raw, str):
            return raw
        if b'\x00' in raw[:1024]:
            raise ParseError("Binary content", url)

        encodings = [charset] if charset else []
        encodings += ['utf-8', 'cp1252', 'latin-1']
        for encoding in encodings:
            try:
                return raw.decode(encoding)
            except (UnicodeDecodeError, LookupError):
                continue
        raise ParseError("Content cannot be decoded as text", url)

    def _extract_title(self, soup: BeautifulSoup) -> Optional[str]:
        title_tag = soup.find('title')
        if title_tag:
            title = self._clean_text(title_tag.get_text())
            return title or None
        return None

    def _extract_description(self, soup: BeautifulSoup) -> Optional[str]:
        meta_desc = soup.find('meta', attrs={'name': 'description'}) or \
            soup.find('meta', attrs={'property': 'og:description'})
        if meta_desc:
            description = self._clean_text(meta_desc.get('content', ''))
            return description or None
        return None

    def _extract_keywords(self, soup: BeautifulSoup) -> List[str]:
        meta_keywords = soup.find('meta', attrs={'name': 'keywords'})
        if not meta_keywords:
            return []
        return [k.strip() for k in meta_keywords.get('content', '').split(',') if k.strip()]

    def _extract_language(self, soup: BeautifulSoup) -> str:
        html_tag = soup.find('html')
        if html_tag:
            lang = html_tag.get('lang') or html_tag.get('xml:lang')
            if lang and lang.strip():
                return lang.strip().lower()[:10]
        return 'en'

    def _extract_base_url(self, soup: BeautifulSoup, page_url: str) -> str:
        base = soup.find('base', href=True)
        if base and base['href'].strip():
            return urljoin(page_url, base['href'].strip())
        return page_url

    def _extract_links(self, soup: BeautifulSoup, base_url: str) -> List[ExtractedLink]:
        """Extract, resolve and normalize anchor links in document order."""
        links: List[ExtractedLink] = []
        seen: Set[str] = set()

        for anchor in soup.find_all('a', href=True):
            if len(links) >= self.max_links_per_page:
                break

            href = anchor['href'].strip()
            if not href:
                continue

            normalized = try_normalize_url(urljoin(base_url, href))
            if normalized is None or normalized in seen:
                continue
            if urlsplit(normalized).path.lower().endswith(SKIP_EXTENSIONS):
                continue

            seen.add(normalized)
            anchor_text = self._clean_text(anchor.get_text(separator=' ')) or None
            links.append(ExtractedLink(url=normalized, anchor_text=anchor_text,
                                       position=len(links)))

        return links

    def _should_enqueue(self, url: str) -> bool:
        domain = urlsplit(url).hostname or ''

        if any(blocked in domain for blocked in self.blocked_domains):
            return False
        if self.allowed_domains and not any(allowed in domain for allowed in self.allowed_domains):
            return False
        return True

    def _clean_text(self, text: str) -> str:
        """Collapse whitespace."""
        if not text:
            return ""
        return self.whitespace_pattern.sub(' ', text).strip()

    @staticmethod
    def _excerpt(content: str) -> str:
        if len(content) <= DESCRIPTION_EXCERPT_LENGTH:
            return content
        cut = content[:DESCRIPTION_EXCERPT_LENGTH].rsplit(' ', 1)[0]
        return cut + '...'

    @staticmethod
    def _anchor_word_count(links: List[ExtractedLink]) -> int:
        return sum(len(link.anchor_text.split()) for link in links if link.anchor_text)

    @staticmethod
    def calculate_quality(content: str, title: Optional[str], markup_size: int,
                          anchor_words: int = 0) -> float:
        """
        Heuristic content quality in [0, 1].

        Combines a word-count bucket, title presence, lexical diversity, the
        share of text not inside links (link density) and the ratio of
        extracted text to markup size.
        """
        words = content.split()
        word_count = len(words)
        if word_count == 0:
            return 0.1 if title else 0.0

        if word_count <= 50:
            length_score = 0.1
        elif word_count <= 200:
            length_score = 0.5
        elif word_count <= 500:
            length_score = 0.8
        elif word_count <= 2000:
            length_score = 1.0
        elif word_count <= 5000:
            length_score = 0.9
        else:
            length_score = 0.7

        diversity = min(len({w.lower() for w in words}) / word_count, 1.0)
        link_density = min(anchor_words / word_count, 1.0)
        text_ratio = min((len(content) / markup_size) / 0.25, 1.0) if markup_size > 0 else 0.0

        score = (length_score * 0.3
                 + (0.1 if title else 0.0)
                 + diversity * 0.2
                 + (1.0 - link_density) * 0.2
                 + text_ratio * 0.2)
        return round(min(max(score, 0.0), 1.0), 4)
