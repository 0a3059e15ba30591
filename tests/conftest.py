import sys
import os
import pytest
from datetime import timedelta

# 1. Add the parent directory to Python's path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# 2. NOW import from app
from app import create_app
from extensions import db
from models import User, Donation, utcnow
from utils import actor_for

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "JWT_SECRET_KEY": "test-secret-key-that-is-long-enough-for-hs256",
}


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


# ==========================================
#  USERS & TOKENS
# ==========================================

@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def _create(role='donor', **kwargs):
        counter['n'] += 1
        defaults = {
            'name': f'{role.title()} {counter["n"]}',
            'email': f'{role}{counter["n"]}@test.com',
            'role': role,
            'verification_status': 'verified',
        }
        defaults.update(kwargs)
        user = User(**defaults)
        user.set_password('password')
        db.session.add(user)
        db.session.commit()
        return user
    return _create


@pytest.fixture
def users(make_user):
    """One of each party, plus outsiders for ownership checks."""
    return {
        'admin': make_user('admin'),
        'donor': make_user('donor'),
        'other_donor': make_user('donor'),
        'charity': make_user('charity'),
        'other_charity': make_user('charity'),
        'volunteer': make_user('volunteer'),
        'other_volunteer': make_user('volunteer'),
    }


@pytest.fixture
def actors(users):
    return {name: actor_for(user) for name, user in users.items()}


@pytest.fixture
def login(client):
    def _login(user):
        resp = client.post('/api/login', json={"email": user.email, "password": "password"})
        return {'Authorization': f'Bearer {resp.get_json()["access_token"]}'}
    return _login


# ==========================================
#  DONATIONS
# ==========================================

@pytest.fixture
def donation_factory(users):
    def _create(**kwargs):
        now = utcnow()
        defaults = {
            "donor_id": users['donor'].id,
            "food_type": "prepared",
            "quantity": 10.0,
            "unit": "kg",
            "description": "Trays of jollof rice",
            "pickup_address": "12 Market St",
            "pickup_time": now + timedelta(hours=2),
            "expiry_time": now + timedelta(days=1),
            "status": "pending",
            "admin_approval": False,
        }
        if kwargs.get('status') in ('approved', 'in_progress', 'completed'):
            defaults['admin_approval'] = True
        defaults.update(kwargs)
        item = Donation(**defaults)
        db.session.add(item)
        db.session.commit()
        return item
    return _create


@pytest.fixture
def donation_payload():
    now = utcnow()
    return {
        "food_type": "prepared",
        "quantity": 10,
        "unit": "kg",
        "description": "Leftover catering trays",
        "pickup_address": "12 Market St",
        "pickup_time": (now + timedelta(hours=2)).isoformat(),
        "expiry_time": (now + timedelta(days=1)).isoformat(),
    }
