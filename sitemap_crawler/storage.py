"""
Page Stores
===========
Persistence sinks for visited pages.

A store exposes ``insert_page(job_id, url, depth, parent_url, title,
status_code) -> page_id``, either as a plain method or a coroutine.  Stores
signal a rejected write by raising ``PersistenceFailure``; the crawl logs
it and carries on without that record.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Union

from .errors import PersistenceFailure
from .models import PageRecord

logger = logging.getLogger(__name__)


class PageStore(Protocol):
    def insert_page(
        self,
        job_id: str,
        url: str,
        depth: int,
        parent_url: Optional[str],
        title: str,
        status_code: int,
    ) -> Any:
        ...


class InMemoryPageStore:
    """Keeps rows in a list. Page ids are 1-based insertion counters."""

    def __init__(self):
        self.rows: List[Dict[str, Any]] = []

    def insert_page(self, job_id, url, depth, parent_url, title, status_code) -> int:
        page_id = len(self.rows) + 1
        self.rows.append({
            'id': page_id,
            'job_id': job_id,
            'url': url,
            'depth': depth,
            'parent_url': parent_url,
            'title': title,
            'status_code': status_code,
        })
        return page_id

    def records(self, job_id: Optional[str] = None) -> List[PageRecord]:
        return [
            _row_to_record(row) for row in self.rows
            if job_id is None or row['job_id'] == job_id
        ]


class JsonlPageStore:
    """
    Appends one JSON object per page to a ``.jsonl`` file.

    Args:
        path: Output file (parent directories are created)
        append: Keep existing lines and continue their id sequence
    """

    def __init__(self, path: Union[str, Path], append: bool = False):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._next_id = 1
        if append and self.path.exists():
            self._next_id = sum(1 for _ in iter_records(self.path)) + 1
        else:
            self.path.write_text("", encoding="utf-8")

    def insert_page(self, job_id, url, depth, parent_url, title, status_code) -> int:
        page_id = self._next_id
        row = {
            'id': page_id,
            'job_id': job_id,
            'url': url,
            'depth': depth,
            'parent_url': parent_url,
            'title': title,
            'status_code': status_code,
        }
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(row, ensure_ascii=False) + "\n")
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceFailure(url, e) from e
        self._next_id += 1
        return page_id


def _row_to_record(row: Dict[str, Any]) -> PageRecord:
    return PageRecord(
        id=row.get('id'),
        url=row['url'],
        depth=int(row.get('depth', 0)),
        parent_url=row.get('parent_url'),
        title=row.get('title') or '',
        status_code=int(row.get('status_code', 200)),
    )


def iter_records(path: Union[str, Path]) -> Iterator[PageRecord]:
    """Read ``PageRecord``s back from a JSON-lines file, skipping blank lines."""
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield _row_to_record(json.loads(line))
            except (ValueError, KeyError) as e:
                raise ValueError(f"{path}:{line_no}: invalid page record ({e})") from e
