"""Shared test fixtures."""

import itertools

import pytest

from farmtrack import create_app, db
from farmtrack.auth import issue_token
from farmtrack.models import Animal, Farm, NIGHT_CHECK_SCHEDULE_KEY, Setting, User


@pytest.fixture
def app():
    """An app on in-memory SQLite with the background scheduler left stopped."""
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SCHEDULER_ENABLED': False,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()
    app.extensions['night_check'].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def night_check(app):
    return app.extensions['night_check']


class Factory:
    """Creates persisted users, farms, animals and settings for tests."""

    def __init__(self):
        self._ids = itertools.count(1)

    def user(self, role='admin', farm=None, name=None, is_active=True):
        n = next(self._ids)
        user = User(
            name=name or f'User {n}',
            email=f'user{n}@example.com',
            role=role,
            is_active=is_active,
            farm_id=farm.id if farm else None,
        )
        db.session.add(user)
        db.session.commit()
        return user

    def farm(self, name='F1', owner=None):
        owner = owner or self.user(role='admin')
        farm = Farm(name=name, owner_id=owner.id)
        db.session.add(farm)
        db.session.flush()
        owner.farm_id = farm.id
        db.session.commit()
        return farm

    def animal(self, farm, name, tag_number, type='Cow'):
        animal = Animal(name=name, tag_number=tag_number, type=type, farm_id=farm.id)
        db.session.add(animal)
        db.session.commit()
        return animal

    def schedule(self, farm, value):
        setting = Setting(key=NIGHT_CHECK_SCHEDULE_KEY, value=value, farm_id=farm.id)
        db.session.add(setting)
        db.session.commit()
        return setting

    def owner_of(self, farm):
        return db.session.get(User, farm.owner_id)


@pytest.fixture
def factory(app):
    return Factory()


def auth_headers(user):
    return {'Authorization': f'Bearer {issue_token(user)}'}


@pytest.fixture
def headers_for(app):
    return auth_headers
