"""Unit tests for the paginated result cursors.
"""
import pytest
from partiqldb.pagination import PageCursor, ResultPage, TransactionPageCursor
from partiqldb.pagination import identity


def item(id_, name=None):
    record = {'id': {'S': id_}}
    if name is not None:
        record['name'] = {'S': name}
    return record


class RecordingFetch:
    """Fetch function serving pages keyed by continuation token."""

    def __init__(self, pages):
        self.pages = pages
        self.tokens = []

    def __call__(self, token, cancel):
        self.tokens.append(token)
        return self.pages[token]


class Collector:
    """Destination slot that scans values itself."""

    def __init__(self):
        self.values = []

    def scan(self, value):
        self.values.append(value)


class TestPageCursor:

    def test_visits_every_record_once_in_order(self):
        """Two full pages then an empty last page."""
        fetch = RecordingFetch({
            't1': ResultPage([item('3'), item('4')], 't2'),
            't2': ResultPage([], None),
        })
        cursor = PageCursor(('id',), ResultPage([item('1'), item('2')], 't1'), fetch)

        assert list(cursor) == [('1',), ('2',), ('3',), ('4',)]
        assert fetch.tokens == ['t1', 't2']

    def test_end_of_data_is_sticky(self):
        """After end of data the fetch function is never called again."""
        fetch = RecordingFetch({'t1': ResultPage([item('2')], None)})
        cursor = PageCursor(('id',), ResultPage([item('1')], 't1'), fetch)
        list(cursor)

        for _ in range(3):
            assert cursor.advance_page() is False
        assert fetch.tokens == ['t1']
        assert not cursor.has_next_page()

    def test_empty_intermediate_page_is_skipped(self):
        fetch = RecordingFetch({
            't1': ResultPage([], 't2'),
            't2': ResultPage([item('2')], None),
        })
        cursor = PageCursor(('id',), ResultPage([item('1')], 't1'), fetch)

        assert list(cursor) == [('1',), ('2',)]

    def test_advance_page_keeps_unread_page(self):
        fetch = RecordingFetch({})
        cursor = PageCursor(('id',), ResultPage([item('1')], 't1'), fetch)

        assert cursor.advance_page() is True
        assert fetch.tokens == []
        assert cursor.position == 0

    def test_star_uses_sorted_record_fields(self):
        cursor = PageCursor(('*',), ResultPage([{'b': {'N': '2'}, 'a': {'S': 'x'}}]), RecordingFetch({}))

        assert cursor.columns == ()
        assert list(cursor) == [('x', 2)]

    def test_missing_field_is_none(self):
        cursor = PageCursor(('id', 'name'), ResultPage([item('1'), item('2', 'Bob')]), RecordingFetch({}))
        assert list(cursor) == [('1', None), ('2', 'Bob')]

    def test_next_extends_destination(self):
        cursor = PageCursor(('id', 'name'), ResultPage([item('1', 'Al')]), RecordingFetch({}))
        dest = []

        assert cursor.next(dest) is True
        assert dest == ['1', 'Al']
        assert cursor.next(dest) is False

    def test_scanner_slot_receives_value(self):
        cursor = PageCursor(('id', 'name'), ResultPage([item('1', 'Al')]), RecordingFetch({}))
        collector = Collector()
        dest = [None, collector]

        cursor.next(dest)

        assert dest[0] == '1'
        assert dest[1] is collector
        assert collector.values == ['Al']

    def test_records(self):
        fetch = RecordingFetch({'t1': ResultPage([item('2', 'Bo')], None)})
        cursor = PageCursor((), ResultPage([item('1')], 't1'), fetch)

        assert list(cursor.records()) == [{'id': '1'}, {'id': '2', 'name': 'Bo'}]

    def test_identity_decode(self):
        cursor = PageCursor(('TableName',), ResultPage([{'TableName': 'users'}]), RecordingFetch({}),
                            decode=identity)
        assert list(cursor) == [('users',)]

    def test_close_is_idempotent_and_stops_reads(self):
        cursor = PageCursor(('id',), ResultPage([item('1')], 't1'), RecordingFetch({}))
        cursor.close()
        cursor.close()

        assert cursor.closed
        assert cursor.next([]) is False
        assert cursor.advance_page() is False

    def test_close_cancels_in_flight_fetch(self):
        seen = []

        def fetch(token, cancel):
            cursor.close()
            seen.append(cancel.is_set())
            return ResultPage([item('2')], None)

        cursor = PageCursor(('id',), ResultPage([], 't1'), fetch)

        assert list(cursor) == []
        assert seen == [True]
        assert cursor.page == []

    def test_page_fetched_during_close_is_dropped(self):
        def fetch(token, cancel):
            cursor.close()
            return ResultPage([item('2')], 't2')

        cursor = PageCursor(('id',), ResultPage([], 't1'), fetch)

        assert cursor.advance_page() is False
        assert cursor.page == []
        assert cursor.closed


class TestTransactionPageCursor:

    def test_first_advance_commits_and_fetches_once(self, mocker):
        commit = mocker.Mock()
        fetch = mocker.Mock(return_value=ResultPage([item('1', 'Al')], None))
        cursor = TransactionPageCursor(('id', 'name'), fetch, commit)

        commit.assert_not_called()
        assert list(cursor) == [('1', 'Al')]
        assert cursor.advance_page() is False
        assert fetch.call_count == 1
        assert commit.called

    def test_has_next_page_commits(self, mocker):
        commit = mocker.Mock()
        cursor = TransactionPageCursor(('id',), mocker.Mock(), commit)

        cursor.has_next_page()
        commit.assert_called_once_with()

    def test_fetch_error_is_replayed(self, mocker):
        error = RuntimeError('batch failed')
        fetch = mocker.Mock(side_effect=error)
        cursor = TransactionPageCursor(('id',), fetch, mocker.Mock())

        with pytest.raises(RuntimeError):
            cursor.advance_page()
        with pytest.raises(RuntimeError):
            cursor.next([])
        assert fetch.call_count == 1

    def test_no_record(self, mocker):
        fetch = mocker.Mock(return_value=ResultPage([], None))
        cursor = TransactionPageCursor(('id',), fetch, mocker.Mock())

        assert list(cursor) == []
        assert cursor.next([]) is False


if __name__ == '__main__':
    __import__('pytest').main([__file__])
