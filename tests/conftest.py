import os

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret')
os.environ.setdefault('BCRYPT_ROUNDS', '4')

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from labportal.auth.jwt_handler import create_access_token  # noqa: E402
from labportal.auth.passwords import hash_password  # noqa: E402
from labportal.database import Base, get_db  # noqa: E402
from labportal.main import create_auth_app, create_logbook_app  # noqa: E402
from labportal.models.logbook import LogBook  # noqa: E402
from labportal.models.user import User  # noqa: E402


@pytest.fixture
def db_engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine, tables=[User.__table__, LogBook.__table__])
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine, tables=[LogBook.__table__, User.__table__])
        engine.dispose()


@pytest.fixture
def db(db_engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


def _override_db(app, session):
    def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def auth_api(db):
    return TestClient(_override_db(create_auth_app(), db))


@pytest.fixture
def logbook_api(db):
    return TestClient(_override_db(create_logbook_app(rate_limit_enabled=False), db))


@pytest.fixture
def add_user(db):
    def add(rgno: int, role: str = 'student', password: str = 'secret', **fields) -> User:
        user = User(
            name=fields.pop('name', f'User {rgno}'),
            rgno=rgno,
            role=role,
            hashed_password=hash_password(password),
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return add


@pytest.fixture
def bearer():
    def headers(rgno: int, role: str = 'student', user_id: int = 1) -> dict:
        return {'Authorization': f'Bearer {create_access_token(user_id, rgno, role)}'}

    return headers
