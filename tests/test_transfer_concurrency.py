import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from helpers import BUSINESS_ID, DAVE, advance_to_verifying, seed_inventory
from stockflow.core.deps import get_db, get_notifier
from stockflow.core.errors import AlreadyProcessedError
from stockflow.core.permissions import get_authorizer
from stockflow.core.security_current import ActorContext
from stockflow.db.base import Base
from stockflow.main import app
from stockflow.models.inventory import StockLedgerEntry
from stockflow.services import transfer_service
from stockflow.services.location_access_service import get_location_access
from stockflow.services.transfer_service import TransferPorts


@pytest.fixture()
def file_context(tmp_path, notifier):
    # separate connections per session, unlike the shared in-memory database
    engine = create_engine(
        f"sqlite:///{tmp_path / 'transfers.db'}",
        connect_args={"check_same_thread": False},
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


def test_racing_completions_write_stock_once(file_context, notifier, monkeypatch):
    client, session_local = file_context
    seed = seed_inventory(client)
    transfer_id = advance_to_verifying(client, seed)["id"]

    actor = ActorContext(actor_id="dave", business_id=BUSINESS_ID, roles=frozenset({"admin"}))
    ports = TransferPorts(authorizer=get_authorizer(), location_access=get_location_access(), notifier=notifier)
    original_load_items = transfer_service._load_items
    interleaved = []

    def load_items_after_rival_commits(db, loaded_transfer_id):
        # the first session has already loaded and guarded the transfer
        if not interleaved:
            interleaved.append(loaded_transfer_id)
            with session_local() as rival:
                winner = transfer_service.complete_transfer(rival, actor, transfer_id, ports=ports)
                assert winner.status == "completed"
        return original_load_items(db, loaded_transfer_id)

    monkeypatch.setattr(transfer_service, "_load_items", load_items_after_rival_commits)

    with session_local() as db:
        with pytest.raises(AlreadyProcessedError) as exc_info:
            transfer_service.complete_transfer(db, actor, transfer_id, ports=ports)
    assert exc_info.value.code == "already_completed"
    assert interleaved == [transfer_id]

    with session_local() as db:
        credits = db.execute(
            select(StockLedgerEntry).where(
                StockLedgerEntry.reference_id == transfer_id,
                StockLedgerEntry.entry_type == "transfer_in",
            )
        ).scalars().all()
    assert len(credits) == 1
    assert credits[0].quantity_delta == 10

    transfer = client.get(f"/transfers/{transfer_id}", headers=DAVE).json()
    assert transfer["status"] == "completed"
    assert notifier.events().count("transfer_completed") == 1
