"""Unit tests for client-side transactions.

Tests the coordinator contract:
- begin() - one open session per connection
- stage(request) - queue statements for the commit batch
- commit() - blocking, atomic batch, failure fanned out to every request
- rollback() - non-blocking discard
"""
import logging
import threading
import time

import pytest
from partiqldb.exceptions import OperationalError, ProgrammingError
from partiqldb.exceptions import TransactionAlreadyActive
from partiqldb.result import TransactionResult
from partiqldb.transaction import StatementRequest, TransactionCoordinator
from partiqldb.transaction import TransactionSession, TransactionState
from tests.fixtures.backend import client_error


@pytest.fixture
def coordinator(backend):
    return TransactionCoordinator(backend, commit_timeout=5)


def request(statement='DELETE FROM "users" WHERE id = ?', value='1'):
    return StatementRequest(statement, [{'S': value}])


class TestBeginCommit:

    def test_commit_sends_one_batch_in_stage_order(self, backend, coordinator):
        coordinator.begin()
        first = coordinator.stage(request(value='1'))
        second = coordinator.stage(request(value='2'))
        coordinator.commit()

        batches = backend.calls_to('execute_batch')
        assert len(batches) == 1
        assert batches[0][0] == [
            {'Statement': 'DELETE FROM "users" WHERE id = ?', 'Parameters': [{'S': '1'}]},
            {'Statement': 'DELETE FROM "users" WHERE id = ?', 'Parameters': [{'S': '2'}]},
        ]
        assert first.done and second.done
        assert first.executed and second.executed

    def test_commit_assigns_outputs_by_position(self, backend, coordinator):
        backend.batch_outputs = [None, {'id': {'S': '2'}}]
        coordinator.begin()
        first = coordinator.stage(request(value='1'))
        second = coordinator.stage(request(value='2'))
        coordinator.commit()

        assert first.output is None
        assert second.output == {'id': {'S': '2'}}
        assert second.fetch().records == [{'id': {'S': '2'}}]
        assert first.fetch().records == []

    def test_commit_blocks_until_resolved(self, backend, coordinator, batch_gate):
        coordinator.begin()
        staged = coordinator.stage(request())
        threading.Timer(0.05, batch_gate.set).start()

        coordinator.commit()

        assert staged.done

    def test_empty_commit(self, backend, coordinator):
        session = coordinator.begin()
        coordinator.commit()

        assert session.state is TransactionState.CLOSED
        assert backend.calls_to('execute_batch') == []

    def test_statement_without_parameters(self):
        assert StatementRequest('DELETE FROM "users" WHERE id = 1').to_parameterized() == {
            'Statement': 'DELETE FROM "users" WHERE id = 1'}

    def test_stage_after_commit_rejected(self, coordinator):
        session = coordinator.begin()
        coordinator.commit()

        with pytest.raises(ProgrammingError):
            session.stage(request())

    def test_stage_without_session_rejected(self, coordinator):
        with pytest.raises(ProgrammingError):
            coordinator.stage(request())


class TestMutualExclusion:

    def test_begin_while_active_fails(self, coordinator):
        coordinator.begin()
        with pytest.raises(TransactionAlreadyActive):
            coordinator.begin()
        coordinator.rollback()

    def test_begin_after_commit(self, coordinator):
        coordinator.begin()
        coordinator.commit()

        coordinator.begin()
        assert coordinator.active
        coordinator.rollback()

    def test_begin_while_committing_fails(self, backend, coordinator, batch_gate):
        session = coordinator.begin()
        coordinator.stage(request())
        committer = threading.Thread(target=coordinator.commit)
        committer.start()
        deadline = time.monotonic() + 5
        while not backend.calls_to('execute_batch') and time.monotonic() < deadline:
            time.sleep(0.01)

        assert session.state is TransactionState.COMMITTING
        with pytest.raises(TransactionAlreadyActive):
            coordinator.begin()

        batch_gate.set()
        committer.join(5)
        assert coordinator.session is None
        coordinator.begin()
        assert coordinator.active
        coordinator.rollback()

    def test_begin_after_rollback(self, coordinator):
        coordinator.begin()
        coordinator.rollback()

        coordinator.begin()
        assert coordinator.active
        coordinator.rollback()

    def test_session_starts_once(self, backend):
        session = TransactionSession(backend)
        session.start()
        with pytest.raises(TransactionAlreadyActive):
            session.start()
        session.rollback()


class TestRollback:

    def test_rollback_discards_without_batch(self, backend, coordinator):
        session = coordinator.begin()
        staged = coordinator.stage(request())
        coordinator.rollback()
        session.wait(5)

        assert session.state is TransactionState.CLOSED
        assert staged.done
        assert not staged.executed
        assert backend.calls_to('execute_batch') == []
        assert TransactionResult(staged).rows_affected == 0

    def test_rollback_does_not_wait(self, backend):
        session = TransactionSession(backend)
        session.start()
        session.stage(request())

        started = time.monotonic()
        session.rollback()

        assert time.monotonic() - started < 1
        session.wait(5)


class TestNoActiveTransaction:

    def test_commit_without_session_warns(self, backend, coordinator, caplog):
        with caplog.at_level(logging.WARNING, logger='partiqldb.transaction'):
            coordinator.commit()

        assert 'not ongoing' in caplog.text
        assert backend.calls == []

    def test_rollback_without_session_warns(self, coordinator, caplog):
        with caplog.at_level(logging.WARNING, logger='partiqldb.transaction'):
            coordinator.rollback()

        assert 'not ongoing' in caplog.text

    def test_second_commit_on_session_is_quiet_when_asked(self, backend, caplog):
        session = TransactionSession(backend)
        session.start()
        session.commit()
        caplog.clear()

        with caplog.at_level(logging.WARNING, logger='partiqldb.transaction'):
            session.commit(quiet=True)

        assert caplog.text == ''


class TestFailure:

    def test_batch_failure_fans_out(self, backend, coordinator, caplog):
        """Every staged request sees the same error and none succeeds."""
        error = client_error('TransactionCanceledException', 'ExecuteTransaction')
        backend.batch_error = error
        session = coordinator.begin()
        staged = [coordinator.stage(request(value=str(i))) for i in range(3)]

        with caplog.at_level(logging.ERROR, logger='partiqldb.transaction'):
            coordinator.commit()

        assert session.error is error
        assert all(r.error is error for r in staged)
        assert not any(r.executed for r in staged)
        for r in staged:
            with pytest.raises(type(error)):
                TransactionResult(r).rows_affected
        assert 'failed' in caplog.text

    def test_failed_request_fetch_raises(self, backend, coordinator):
        backend.batch_error = client_error()
        coordinator.begin()
        staged = coordinator.stage(request())
        coordinator.commit()

        with pytest.raises(type(backend.batch_error)):
            staged.fetch()


class TestResult:

    def test_rows_affected_settles_on_commit(self, coordinator):
        coordinator.begin()
        result = TransactionResult(coordinator.stage(request()))

        assert result.rows_affected == 0
        coordinator.commit()
        assert result.rows_affected == 1


class TestConcurrency:

    def test_commit_timeout(self, backend, batch_gate):
        coordinator = TransactionCoordinator(backend, commit_timeout=0.05)
        coordinator.begin()
        staged = coordinator.stage(request())

        with pytest.raises(OperationalError):
            coordinator.commit()

        batch_gate.set()
        deadline = time.monotonic() + 5
        while not staged.done and time.monotonic() < deadline:
            time.sleep(0.01)
        assert staged.executed

    def test_concurrent_commits_run_one_batch(self, backend, batch_gate):
        session = TransactionSession(backend, commit_timeout=5)
        session.start()
        session.stage(request())

        threads = [threading.Thread(target=session.commit, kwargs={'quiet': True}) for _ in range(3)]
        for thread in threads:
            thread.start()
        batch_gate.set()
        for thread in threads:
            thread.join(5)

        assert session.state is TransactionState.CLOSED
        assert len(backend.calls_to('execute_batch')) == 1


if __name__ == '__main__':
    __import__('pytest').main([__file__])
