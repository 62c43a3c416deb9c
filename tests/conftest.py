import os
import tempfile
from datetime import datetime, timedelta

# the server reads its configuration at import time
_TMP = tempfile.mkdtemp(prefix="ringside-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/ringside.db"
os.environ["PAYSESSION_BACKEND"] = "sql"
os.environ["MAIL_BACKEND"] = "outbox"
os.environ["MOCK_WEBHOOK_URL"] = "http://testserver/payments/webhook"
os.environ["LOG_DIR"] = ""
os.environ["TIMINGS_DUMP"] = ""

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from ringside.client.session_context import SessionContext  # noqa: E402
from ringside.helpers import THAILAND_TZ, js_weekday, thailand_now  # noqa: E402
from ringside.model.booking import (  # noqa: E402
    BookingData, TicketConfig, TicketInfo,
)

# Thursday 2025-11-20, noon in Bangkok
T0 = datetime(2025, 11, 20, 12, 0, tzinfo=THAILAND_TZ).timestamp()


def next_night(days, start: int = 1) -> str:
    """First date from today+start whose JS weekday is in `days`."""
    today = thailand_now().date()
    for n in range(start, start + 8):
        d = today + timedelta(days=n)
        if js_weekday(d) in days:
            return d.isoformat()
    raise ValueError(f"no night in {days}")


class FakeClock:
    def __init__(self, ts: float = T0):
        self.ts = ts

    def __call__(self) -> float:
        return self.ts

    def advance(self, seconds: float) -> None:
        self.ts += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def lumpinee_config():
    return TicketConfig(
        regular_tickets=[
            TicketInfo(id="A", name="Ringside A", price=1500,
                       remaining_quantity=60, days=[2, 5, 6]),
            TicketInfo(id="B", name="Stand B", price=1000,
                       remaining_quantity=150, days=[2, 5, 6]),
        ],
    )


@pytest.fixture
def booking():
    return BookingData(
        stadium="lumpinee",
        date="2025-11-28",
        zone="regular-A",
        quantity=3,
        total_price=4500,
        date_display="Friday, November 28, 2025",
        name="Somchai Jaidee",
        email="somchai@example.com",
        phone="0812345678",
        ticket_id="A",
        ticket_type="regular",
        stadium_data={"id": "lumpinee", "name": "Lumpinee Stadium"},
        ticket_data={"id": "A", "name": "Ringside A", "type": "regular",
                     "price": 1500},
    )


@pytest.fixture
def context():
    return SessionContext()


@pytest.fixture(scope="session")
def client():
    from ringside.server import app

    with TestClient(app) as c:
        # mockpay's emit posts the webhook back into the same app
        c.portal.call(app.state.http.aclose)
        app.state.http = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://testserver",
        )
        yield c


@pytest.fixture(scope="session")
def app_state(client):
    return client.app.state
