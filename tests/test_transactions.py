"""
Tests for the transaction boundary, cancellation and deadlines.
"""

import time

import pytest

from work_item_tracker.cancellation import CancellationToken, Deadline
from work_item_tracker.db.base import transactional
from work_item_tracker.db.models import IdentityModel
from work_item_tracker.errors import OperationCancelledError, TransactionTimeoutError
from work_item_tracker.spaces import IdentityRepository


class TestCancellation:
    """Tests for cancellation tokens and deadlines."""

    def test_token(self):
        token = CancellationToken()
        token.check()
        token.cancel()
        assert token.cancelled
        with pytest.raises(OperationCancelledError):
            token.check()

    def test_deadline(self):
        deadline = Deadline(0.01)
        time.sleep(0.02)
        assert deadline.remaining == 0.0
        with pytest.raises(TransactionTimeoutError) as exc_info:
            deadline.check()
        assert exc_info.value.status == 504


class TestTransactional:
    """Tests for commit and rollback behavior."""

    def test_commits_on_success(self, db_session):
        with transactional(db_session, 5.0):
            IdentityRepository(db_session).create("committed")
        db_session.rollback()
        assert db_session.query(IdentityModel).filter_by(username="committed").count() == 1

    def test_rolls_back_on_error(self, db_session):
        with pytest.raises(RuntimeError):
            with transactional(db_session, 5.0):
                IdentityRepository(db_session).create("discarded")
                raise RuntimeError("boom")
        assert db_session.query(IdentityModel).filter_by(username="discarded").count() == 0

    def test_rolls_back_on_cancel(self, db_session):
        token = CancellationToken()
        with pytest.raises(OperationCancelledError):
            with transactional(db_session, 5.0, token) as tx:
                IdentityRepository(db_session).create("cancelled")
                token.cancel()
                tx.checkpoint()
        assert db_session.query(IdentityModel).filter_by(username="cancelled").count() == 0

    def test_nested_blocks_join_outer(self, db_session):
        with pytest.raises(RuntimeError):
            with transactional(db_session, 5.0):
                with transactional(db_session, 5.0):
                    IdentityRepository(db_session).create("inner")
                raise RuntimeError("outer fails")
        assert db_session.query(IdentityModel).filter_by(username="inner").count() == 0

    def test_expired_deadline(self, db_session):
        with pytest.raises(TransactionTimeoutError):
            with transactional(db_session, 0.01):
                IdentityRepository(db_session).create("slow")
                time.sleep(0.02)
        assert db_session.query(IdentityModel).filter_by(username="slow").count() == 0
