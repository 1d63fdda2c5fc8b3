"""
Export of stored pages to JSON and CSV files.
"""

import csv
import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .models import Page, PageFilter


CSV_COLUMNS = ['id', 'url', 'domain', 'title', 'quality_score', 'word_count',
               'crawled_at', 'pagerank']


def page_to_dict(page: Page) -> Dict[str, Any]:
    """All page fields with datetimes as ISO-8601 strings."""
    data = asdict(page)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return data


class DataExporter:
    """Writes pages selected by a PageFilter to disk."""

    def __init__(self, storage):
        self.storage = storage
        self.logger = logging.getLogger(__name__)

    async def _pages(self, page_filter: Optional[PageFilter]) -> List[Page]:
        return await self.storage.get_pages(page_filter)

    async def pages_to_json(self, path: Union[str, Path],
                            page_filter: Optional[PageFilter] = None) -> int:
        """Write matching pages as a JSON array. Returns the number written."""
        pages = await self._pages(page_filter)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump([page_to_dict(page) for page in pages], f, indent=2, ensure_ascii=False)

        self.logger.info(f"Exported {len(pages)} pages to {path}")
        return len(pages)

    async def pages_to_csv(self, path: Union[str, Path],
                           page_filter: Optional[PageFilter] = None) -> int:
        """Write one summary row per matching page. Returns the number written."""
        pages = await self._pages(page_filter)
        with open(path, 'w', encoding='utf-8', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS, extrasaction='ignore')
            writer.writeheader()
            for page in pages:
                row = page_to_dict(page)
                row['title'] = row['title'] or ''
                writer.writerow(row)

        self.logger.info(f"Exported {len(pages)} pages to {path}")
        return len(pages)
