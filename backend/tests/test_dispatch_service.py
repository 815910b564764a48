"""
Unit tests for DispatchService
"""
import threading

import pytest
from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.core.errors import (AlreadyDispatchedError, NotFoundError,
                             ValidationError)
from app.core.token_locks import TokenLockRegistry
from app.models import IN_STOCK, OUT_OF_STOCK, BlockStatus, StoneBlock
from app.services.dispatch_service import DispatchService


@pytest.fixture
def dispatch_service(db: Session) -> DispatchService:
    return DispatchService(db, token_locks=TokenLockRegistry())


def _reload(block_id) -> StoneBlock:
    session = SessionLocal()
    try:
        return session.query(StoneBlock).filter(StoneBlock.id == block_id).one()
    finally:
        session.close()


class TestDispatch:
    """Single-caller dispatch behaviour"""

    def test_dispatch_block(self, dispatch_service: DispatchService, block_factory):
        block = block_factory(name="Steel Grey", dimensions="250x150x3 cm")

        confirmation = dispatch_service.dispatch(block.identity_token)

        assert confirmation.id == block.id
        assert confirmation.name == "Steel Grey"
        assert confirmation.dimensions == "250x150x3 cm"
        assert confirmation.status == BlockStatus.DISPATCHED.value
        assert set(confirmation.to_dict()) == {"id", "name", "dimensions", "status"}

        stored = _reload(block.id)
        assert stored.status == BlockStatus.DISPATCHED.value
        assert stored.stock_availability == OUT_OF_STOCK

    def test_dispatch_from_warehouse(self, dispatch_service: DispatchService, block_factory):
        block = block_factory(status=BlockStatus.IN_WAREHOUSE.value)
        assert dispatch_service.dispatch(block.identity_token).status == BlockStatus.DISPATCHED.value

    def test_token_is_trimmed(self, dispatch_service: DispatchService, block_factory):
        block = block_factory()
        assert dispatch_service.dispatch(f" {block.identity_token}\n").id == block.id

    def test_second_dispatch_rejected(self, dispatch_service: DispatchService, block_factory):
        block = block_factory()
        dispatch_service.dispatch(block.identity_token)
        first_state = _reload(block.id)

        with pytest.raises(AlreadyDispatchedError):
            dispatch_service.dispatch(block.identity_token)

        second_state = _reload(block.id)
        assert second_state.status == BlockStatus.DISPATCHED.value
        assert second_state.stock_availability == OUT_OF_STOCK
        assert second_state.updated_at == first_state.updated_at

    def test_unknown_token(self, dispatch_service: DispatchService, block_factory):
        block = block_factory()

        with pytest.raises(NotFoundError):
            dispatch_service.dispatch("not-a-real-token")

        assert _reload(block.id).status == BlockStatus.REGISTERED.value

    @pytest.mark.parametrize("token", ["", "   ", None])
    def test_blank_token(self, dispatch_service: DispatchService, token):
        with pytest.raises(ValidationError) as exc_info:
            dispatch_service.dispatch(token)
        assert exc_info.value.field == "token"

    def test_only_scanned_block_changes(self, dispatch_service: DispatchService, block_factory):
        target = block_factory(name="Target")
        other = block_factory(name="Other")

        dispatch_service.dispatch(target.identity_token)

        other_state = _reload(other.id)
        assert other_state.status == BlockStatus.REGISTERED.value
        assert other_state.stock_availability == IN_STOCK

    def test_stale_session_cannot_dispatch_twice(self, db: Session, block_factory):
        """A session that read the block before another dispatched it still gets rejected"""
        block = block_factory()
        stale = SessionLocal()
        try:
            seen = stale.query(StoneBlock).filter(StoneBlock.id == block.id).one()
            assert seen.status == BlockStatus.REGISTERED.value

            DispatchService(db, token_locks=TokenLockRegistry()).dispatch(block.identity_token)

            with pytest.raises(AlreadyDispatchedError):
                DispatchService(stale, token_locks=TokenLockRegistry()).dispatch(block.identity_token)
        finally:
            stale.close()

    def test_removal_right_after_dispatch_commit(
        self, db: Session, dispatch_service: DispatchService, block_factory, monkeypatch
    ):
        """The confirmation describes the dispatched block even if it is removed at once"""
        block = block_factory(name="Short Lived", dimensions="100x50x3 cm")
        block_id = block.id
        original_commit = db.commit

        def commit_then_remove():
            original_commit()
            other = SessionLocal()
            try:
                other.query(StoneBlock).filter(StoneBlock.id == block_id).delete()
                other.commit()
            finally:
                other.close()

        monkeypatch.setattr(db, "commit", commit_then_remove)
        confirmation = dispatch_service.dispatch(block.identity_token)
        monkeypatch.undo()

        assert confirmation.id == block_id
        assert confirmation.name == "Short Lived"
        assert confirmation.dimensions == "100x50x3 cm"
        assert confirmation.status == BlockStatus.DISPATCHED.value
        assert db.query(StoneBlock).filter(StoneBlock.id == block_id).first() is None


class TestConcurrentDispatch:
    """Racing scans of the same block"""

    @pytest.mark.parametrize("shared_locks", [True, False])
    def test_exactly_one_dispatch_succeeds(self, db: Session, block_factory, shared_locks):
        """
        With a shared lock registry the race is serialized in-process; with
        separate registries (as across processes) the conditional update
        alone decides the winner.
        """
        block = block_factory()
        token = block.identity_token
        db.close()

        workers = 6
        locks = TokenLockRegistry()
        barrier = threading.Barrier(workers)
        outcomes = []
        outcomes_lock = threading.Lock()

        def scan():
            session = SessionLocal()
            service = DispatchService(session, token_locks=locks if shared_locks else TokenLockRegistry())
            try:
                barrier.wait(timeout=5)
                service.dispatch(token)
                outcome = "dispatched"
            except AlreadyDispatchedError:
                outcome = "already_dispatched"
            except Exception as e:
                outcome = f"error: {type(e).__name__}: {e}"
            finally:
                session.close()
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=scan) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(outcomes) == ["already_dispatched"] * (workers - 1) + ["dispatched"]
        assert locks.active_count() == 0

        stored = _reload(block.id)
        assert stored.status == BlockStatus.DISPATCHED.value
        assert stored.stock_availability == OUT_OF_STOCK
