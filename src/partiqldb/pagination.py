"""
Forward-only, page-at-a-time result cursors.

A `PageCursor` holds exactly one `ResultPage` plus the continuation token
needed to fetch the next one. Pages are fetched on demand; the cursor never
holds more than one page.

Examples
    cursor = PageCursor(('id', 'name'), first_page, fetch)
    for row in cursor:
        ...
"""
import logging
import threading
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from partiqldb.types import from_attribute_value

logger = logging.getLogger(__name__)

__all__ = [
    'ResultPage',
    'Scanner',
    'FetchFunc',
    'PageCursor',
    'TransactionPageCursor',
    'identity',
]


@dataclass(slots=True)
class ResultPage:
    """Ordered backend records plus an optional continuation token."""
    records: list[Mapping[str, Any]] = field(default_factory=list)
    next_token: str | None = None

    def __len__(self) -> int:
        return len(self.records)


@runtime_checkable
class Scanner(Protocol):
    """Destination slot that decodes values itself."""

    def scan(self, value: Any) -> None: ...


# fetch(continuation_token, cancel_event) -> next page
FetchFunc = Callable[[str | None, threading.Event], ResultPage]


def identity(value: Any) -> Any:
    return value


class PageCursor:
    """Cursor over a paginated result.

    `columns` is the parsed column list; when empty each record is
    materialized with its own field names, sorted.
    """

    def __init__(self, columns: Sequence[str], first_page: ResultPage, fetch: FetchFunc,
                 decode: Callable[[Any], Any] = from_attribute_value) -> None:
        if len(columns) == 1 and columns[0] == '*':
            columns = ()
        self.columns = tuple(columns)
        self._fetch = fetch
        self._decode = decode
        self._page = list(first_page.records)
        self._next_token = first_page.next_token
        self._position = 0
        self._fetch_cancel: threading.Event | None = None
        self._closed = False

    def __iter__(self) -> Iterator[tuple]:
        while True:
            dest: list[Any] = []
            if self.next(dest):
                yield tuple(dest)
                continue
            if not self.advance_page():
                return

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def page(self) -> list[Mapping[str, Any]]:
        """Records of the current page."""
        return self._page

    @property
    def position(self) -> int:
        """Read position within the current page."""
        return self._position

    def has_next_page(self) -> bool:
        return self._next_token is not None

    def column_names(self, record: Mapping[str, Any] | None = None) -> tuple[str, ...]:
        """Column order used to materialize `record`."""
        if self.columns:
            return self.columns
        if record is None:
            if self._position >= len(self._page):
                return ()
            record = self._page[self._position]
        return tuple(sorted(record))

    def advance_page(self) -> bool:
        """Make a page with unread records current.

        Returns False at end of data. Once end of data is reached the fetch
        function is never called again.
        """
        if self._closed:
            return False
        if self._position < len(self._page):
            return True

        token = self._next_token
        if token is None:
            return False

        cancel = threading.Event()
        self._fetch_cancel = cancel
        try:
            page = self._fetch(token, cancel)
        finally:
            self._fetch_cancel = None
        if cancel.is_set() or self._closed:
            logger.debug('Dropped page fetched after the cursor was closed')
            return False

        self._page = list(page.records)
        self._next_token = page.next_token
        self._position = 0
        logger.debug(f'Fetched page of {len(page)} records (more: {page.next_token is not None})')

        if not page.records and page.next_token is None:
            return False
        return True

    def next(self, dest: list[Any]) -> bool:
        """Materialize the current record into `dest` and move past it.

        Slots holding a `Scanner` receive the decoded value through
        ``scan()``; other slots are replaced. `dest` grows when it has fewer
        slots than columns. Returns False when the current page is exhausted.
        """
        if self._closed or self._position >= len(self._page):
            return False

        record = self._page[self._position]
        self._position += 1

        columns = self.column_names(record)
        if len(dest) < len(columns):
            dest.extend([None] * (len(columns) - len(dest)))

        for i, column in enumerate(columns):
            if column not in record:
                value = None
            else:
                value = self._decode(record[column])
            slot = dest[i]
            if isinstance(slot, Scanner):
                slot.scan(value)
            else:
                dest[i] = value
        return True

    def records(self) -> Iterator[dict[str, Any]]:
        """Iterate remaining rows as column-name dicts."""
        while True:
            if not self._closed and self._position < len(self._page):
                columns = self.column_names(self._page[self._position])
                dest: list[Any] = []
                self.next(dest)
                yield dict(zip(columns, dest))
            elif not self.advance_page():
                return

    def close(self) -> None:
        """Release the in-flight fetch, if any. Idempotent."""
        cancel, self._fetch_cancel = self._fetch_cancel, None
        self._closed = True
        if cancel is not None:
            cancel.set()


class TransactionPageCursor(PageCursor):
    """Cursor over the result of a statement staged in a transaction.

    Touching the cursor commits the owning transaction, because staged
    results do not exist before commit. The single page is fetched once.
    """

    def __init__(self, columns: Sequence[str], fetch: FetchFunc, commit: Callable[[], None]) -> None:
        # empty token: one fetch is pending
        super().__init__(columns, ResultPage([], next_token=''), fetch)
        self._commit = commit
        self._latch = threading.Lock()
        self._latched = False
        self._error: Exception | None = None

    def has_next_page(self) -> bool:
        self._commit()
        return super().has_next_page()

    def advance_page(self) -> bool:
        self._commit()
        with self._latch:
            if not self._latched:
                self._latched = True
                try:
                    return super().advance_page()
                except Exception as exc:
                    self._error = exc
                    raise
        if self._error is not None:
            raise self._error
        return not self._closed and self._position < len(self._page)

    def next(self, dest: list[Any]) -> bool:
        self.advance_page()
        return super().next(dest)
