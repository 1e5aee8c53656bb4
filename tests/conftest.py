import pytest
from sqlalchemy.pool import StaticPool

from cell_server.create_sqlite_engine import create_engine
from cell_server.db import create_session_factory, create_tables
from cell_server.services.cell_engine import CellEngine
from cell_server.services.payments import PaymentError, PaymentGateway

ALICE = "0x" + "11" * 20
BOB = "0x" + "22" * 20
CAROL = "0x" + "33" * 20
OWNER = "0x" + "00" * 19 + "01"

MIN_STAKE = 100


class RecordingPayments(PaymentGateway):
    def __init__(self):
        self.paid = []
        self.fail_for = set()

    async def pay(self, address: str, amount: int) -> None:
        if address in self.fail_for:
            raise PaymentError("transfer rejected")
        self.paid.append((address, amount))


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def notify(self, cell_id: int, event: str, **fields) -> None:
        self.events.append((cell_id, event, fields))

    def names(self):
        return [event for _, event, _ in self.events]


@pytest.fixture
async def session_factory():
    engine = create_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def payments():
    return RecordingPayments()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
async def cell_engine(session_factory, payments, notifier):
    # entropy 2 -> three rounds unless a test passes its own entropy
    engine = CellEngine(
        session_factory,
        payments=payments,
        notifier=notifier,
        entropy_source=lambda creator: 2,
    )
    await engine.initialize(MIN_STAKE, OWNER)
    return engine
