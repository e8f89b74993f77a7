"""Shared test fixtures for the pipeline CRM test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: users, territory mappings and one prospect per pipeline stage
- login: helper fixture that logs a seeded user in
"""

from datetime import datetime, timedelta, timezone

import pytest
from werkzeug.security import generate_password_hash

from crm import create_app
from crm.extensions import db as _db
from crm.models.agreement import Agreement
from crm.models.lead import Lead
from crm.models.lookup import DropReason, PincodePersonaMap
from crm.models.prospect import Prospect
from crm.models.sample_order import SampleOrder
from crm.models.user import User

PASSWORD = "password123"
IN_TERRITORY = "560001"
OUT_OF_TERRITORY = "560099"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


def _user(email, role, full_name):
    user = User(
        email=email,
        password_hash=generate_password_hash(PASSWORD),
        full_name=full_name,
        role=role,
    )
    _db.session.add(user)
    return user


@pytest.fixture
def seed_data(app, db_session):
    """Seed users, mappings and a pipeline in two pincodes.

    In IN_TERRITORY there is one prospect at each stage (prospect, lead,
    sample order, signed customer). OUT_OF_TERRITORY holds one prospect
    with a lead, visible only to the admin.
    """
    now = datetime.now(timezone.utc)

    admin = _user("admin@example.com", "admin", "Admin User")
    agent = _user("agent@example.com", "calling_agent", "Calling Agent")
    taker = _user("taker@example.com", "lead_taker", "Lead Taker")
    kam = _user("kam@example.com", "kam", "Key Account Manager")
    unmapped = _user("nobody@example.com", "calling_agent", "Unmapped User")
    _db.session.flush()

    for user in (agent, taker, kam):
        _db.session.add(PincodePersonaMap(
            pincode=IN_TERRITORY,
            locality="MG Road",
            role=user.role,
            user_email=user.email,
        ))

    # --- Prospect only ---
    cold = Prospect(
        restaurant_name="Cold Cafe",
        pincode=IN_TERRITORY,
        locality="MG Road",
        mapped_to="agent@example.com",
        created_at=now - timedelta(days=10),
    )
    # --- Lead stage ---
    warm = Prospect(
        restaurant_name="Warm Bistro",
        pincode=IN_TERRITORY,
        locality="MG Road",
        mapped_to="agent@example.com",
        status="converted",
        created_at=now - timedelta(days=10),
    )
    # --- Sample order stage ---
    hot = Prospect(
        restaurant_name="Hot Kitchen",
        pincode=IN_TERRITORY,
        locality="MG Road",
        status="converted",
        created_at=now - timedelta(days=10),
    )
    # --- Customer ---
    won = Prospect(
        restaurant_name="Won Diner",
        pincode=IN_TERRITORY,
        locality="MG Road",
        status="converted",
        created_at=now - timedelta(days=10),
    )
    # --- Other territory ---
    far = Prospect(
        restaurant_name="Far Grill",
        pincode=OUT_OF_TERRITORY,
        locality="Whitefield",
        status="converted",
        created_at=now - timedelta(days=10),
    )
    _db.session.add_all([cold, warm, hot, won, far])
    _db.session.flush()

    warm_lead = Lead(
        prospect_id=warm.id,
        client_name="Warm Bistro",
        pincode=IN_TERRITORY,
        status="new",
        created_by="taker@example.com",
        geo_lat=12.9750,
        geo_lng=77.6060,
        created_at=now - timedelta(days=8),
    )
    hot_lead = Lead(
        prospect_id=hot.id,
        client_name="Hot Kitchen",
        pincode=IN_TERRITORY,
        status="qualified",
        call_count=2,
        visit_count=1,
        created_by="taker@example.com",
        geo_lat=12.9716,
        geo_lng=77.5946,
        created_at=now - timedelta(days=8),
    )
    won_lead = Lead(
        prospect_id=won.id,
        client_name="Won Diner",
        pincode=IN_TERRITORY,
        status="qualified",
        call_count=1,
        visit_count=2,
        created_by="taker@example.com",
        created_at=now - timedelta(days=8),
    )
    far_lead = Lead(
        prospect_id=far.id,
        client_name="Far Grill",
        pincode=OUT_OF_TERRITORY,
        status="new",
        created_at=now - timedelta(days=8),
    )
    _db.session.add_all([warm_lead, hot_lead, won_lead, far_lead])
    _db.session.flush()

    hot_order = SampleOrder(
        lead_id=hot_lead.id,
        status="sample_ordered",
        created_at=now - timedelta(days=5),
    )
    won_order = SampleOrder(
        lead_id=won_lead.id,
        status="sample_delivered",
        created_at=now - timedelta(days=5),
    )
    _db.session.add_all([hot_order, won_order])
    _db.session.flush()

    won_agreement = Agreement(
        sample_order_id=won_order.id,
        status="signed",
        esign_status="signed",
        created_at=now - timedelta(days=2),
    )
    _db.session.add(won_agreement)

    _db.session.add_all([
        DropReason(reason_text="Price concerns", step_number=3),
        DropReason(reason_text="Quality issue", step_number=4),
        DropReason(reason_text="Not Interested", step_number=2),
    ])
    _db.session.commit()

    # Store plain IDs so tests can use them even when objects
    # are detached from the session (cross-context access).
    return {
        "admin_id": admin.id,
        "agent_id": agent.id,
        "taker_id": taker.id,
        "kam_id": kam.id,
        "unmapped_id": unmapped.id,
        "cold_id": cold.id,
        "warm_id": warm.id,
        "hot_id": hot.id,
        "won_id": won.id,
        "far_id": far.id,
        "warm_lead_id": warm_lead.id,
        "hot_lead_id": hot_lead.id,
        "won_lead_id": won_lead.id,
        "far_lead_id": far_lead.id,
        "hot_order_id": hot_order.id,
        "won_order_id": won_order.id,
        "won_agreement_id": won_agreement.id,
    }


@pytest.fixture
def login(client):
    """Return a function that logs `email` in on the shared test client."""

    def _login(email, password=PASSWORD):
        resp = client.post("/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.get_json()
        return resp

    return _login
