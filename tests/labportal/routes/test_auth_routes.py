import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from labportal.auth import jwt_handler
from labportal.auth.passwords import verify_password
from labportal.models.user import User
from labportal.routes.auth_routes import (
    ChangePasswordRequest,
    LoginRequest,
    RegisterRequest,
    change_password,
    login,
    register,
)


def test_register_request_treats_blank_fields_as_missing() -> None:
    request = RegisterRequest(name='  ', rgno='', password='pw', role='')

    assert request.name is None
    assert request.rgno is None
    assert request.role == 'student'


def test_register_request_normalizes_role() -> None:
    assert RegisterRequest(name='A', rgno=1, password='pw', role=' Faculty ').role == 'faculty'


def test_register_request_rejects_unknown_role() -> None:
    with pytest.raises(ValidationError):
        RegisterRequest(name='A', rgno=1, password='pw', role='principal')


def test_register_stores_hashed_password_and_returns_token(db) -> None:
    response = register(
        RegisterRequest(name='Asha', rgno=212223, rollno=12, password='lab-secret', department='Physics'),
        db=db,
    )

    user = db.query(User).filter(User.rgno == 212223).one()
    assert user.hashed_password != 'lab-secret'
    assert verify_password('lab-secret', user.hashed_password)
    assert user.role == 'student'
    assert response.user.rgno == 212223
    claims = jwt_handler.verify_token(response.token)
    assert claims.sub == str(user.id)
    assert claims.role == 'student'


def test_register_requires_name_register_number_and_password(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        register(RegisterRequest(name='Asha', rgno=212223), db=db)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Name, register number, and password are required'


def test_register_rejects_duplicate_register_number(db, add_user) -> None:
    add_user(212223)

    with pytest.raises(HTTPException) as exception_info:
        register(RegisterRequest(name='Other', rgno=212223, password='pw'), db=db)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Register number already registered'


def test_login_returns_token_for_valid_credentials(db, add_user) -> None:
    user = add_user(212223, role='faculty', password='lab-secret')

    response = login(LoginRequest(rgno=212223, password='lab-secret'), db=db)

    assert response.message == 'Login successful'
    assert response.user.id == user.id
    assert jwt_handler.verify_token(response.token).role == 'faculty'


@pytest.mark.parametrize(('rgno', 'password'), [(212223, 'wrong'), (999999, 'lab-secret')])
def test_login_rejects_bad_credentials_with_the_same_message(db, add_user, rgno: int, password: str) -> None:
    add_user(212223, password='lab-secret')

    with pytest.raises(HTTPException) as exception_info:
        login(LoginRequest(rgno=rgno, password=password), db=db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid register number or password'


def test_login_rejects_inactive_account(db, add_user) -> None:
    add_user(212223, password='lab-secret', is_active=False)

    with pytest.raises(HTTPException) as exception_info:
        login(LoginRequest(rgno=212223, password='lab-secret'), db=db)

    assert exception_info.value.status_code == 403


def test_change_password_replaces_hash(db, add_user) -> None:
    user = add_user(212223, password='old-secret')

    response = change_password(
        ChangePasswordRequest(currentPassword='old-secret', newPassword='new-secret'),
        current_user=user,
        db=db,
    )

    db.refresh(user)
    assert response.message == 'Password changed successfully'
    assert verify_password('new-secret', user.hashed_password)
    assert not verify_password('old-secret', user.hashed_password)


def test_change_password_rejects_wrong_current_password(db, add_user) -> None:
    user = add_user(212223, password='old-secret')

    with pytest.raises(HTTPException) as exception_info:
        change_password(
            ChangePasswordRequest(currentPassword='nope', newPassword='new-secret'),
            current_user=user,
            db=db,
        )

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Current password is incorrect'


def test_register_endpoint_returns_camel_case_user(auth_api) -> None:
    response = auth_api.post(
        '/api/auth/register',
        json={'name': 'Asha', 'rgno': '212223', 'rollno': '12', 'password': 'lab-secret', 'role': 'student'},
    )

    assert response.status_code == 201
    body = response.json()
    assert body['success'] is True
    assert body['message'] == 'Registration successful'
    assert body['user']['rgno'] == 212223
    assert body['user']['isActive'] is True
    assert 'hashed_password' not in body['user']
    assert 'hashedPassword' not in body['user']


def test_register_endpoint_reports_invalid_role_as_bad_request(auth_api) -> None:
    response = auth_api.post('/api/auth/register', json={'name': 'A', 'rgno': 1, 'password': 'pw', 'role': 'root'})

    assert response.status_code == 400
    assert response.json()['success'] is False


def test_login_endpoint_uses_error_envelope(auth_api, add_user) -> None:
    add_user(212223, password='lab-secret')

    response = auth_api.post('/api/auth/login', json={'rgno': 212223, 'password': 'wrong'})

    assert response.status_code == 401
    assert response.json() == {'success': False, 'error': 'Invalid register number or password'}


def test_verify_endpoint_returns_claims(auth_api, bearer) -> None:
    response = auth_api.post('/api/auth/verify', headers=bearer(212223, role='faculty', user_id=5))

    assert response.status_code == 200
    user = response.json()['user']
    assert user['rgno'] == 212223
    assert user['role'] == 'faculty'
    assert user['userId'] == '5'


@pytest.mark.parametrize(
    ('headers', 'error'),
    [
        ({}, 'No token provided'),
        ({'Authorization': 'Bearer not-a-token'}, 'Invalid or expired token'),
    ],
)
def test_verify_endpoint_rejects_missing_or_bad_token(auth_api, headers: dict, error: str) -> None:
    response = auth_api.post('/api/auth/verify', headers=headers)

    assert response.status_code == 401
    assert response.json() == {'success': False, 'error': error}


def test_profile_endpoint_returns_current_user(auth_api, add_user, bearer) -> None:
    user = add_user(212223, name='Asha', department='Physics')

    response = auth_api.get('/api/auth/profile', headers=bearer(212223, user_id=user.id))

    assert response.status_code == 200
    assert response.json()['user']['name'] == 'Asha'
    assert response.json()['user']['department'] == 'Physics'


def test_profile_endpoint_reports_deleted_user(auth_api, bearer) -> None:
    response = auth_api.get('/api/auth/profile', headers=bearer(212223, user_id=404))

    assert response.status_code == 404
    assert response.json() == {'success': False, 'error': 'User not found'}


def test_change_password_endpoint_requires_both_fields(auth_api, add_user, bearer) -> None:
    user = add_user(212223, password='old-secret')

    response = auth_api.post(
        '/api/auth/change-password',
        json={'currentPassword': 'old-secret'},
        headers=bearer(212223, user_id=user.id),
    )

    assert response.status_code == 400
    assert response.json()['error'] == 'Current password and new password are required'


def test_logout_endpoint_succeeds_without_token(auth_api) -> None:
    response = auth_api.post('/api/auth/logout')

    assert response.json() == {'success': True, 'message': 'Logout successful'}


def test_users_endpoint_is_admin_only(auth_api, add_user, bearer) -> None:
    admin = add_user(1, role='admin')
    add_user(212223)

    forbidden = auth_api.get('/api/auth/users', headers=bearer(212223, role='faculty'))
    allowed = auth_api.get('/api/auth/users', headers=bearer(1, role='admin', user_id=admin.id))

    assert forbidden.status_code == 403
    assert forbidden.json() == {'success': False, 'error': 'Access denied'}
    assert [user['rgno'] for user in allowed.json()['users']] == [1, 212223]


@pytest.mark.parametrize('fields', [{'rgno': 2**63}, {'rgno': 0}, {'rgno': 1, 'rollno': '99999999999999999999'}])
def test_register_request_rejects_ids_outside_the_stored_range(fields: dict) -> None:
    with pytest.raises(ValidationError):
        RegisterRequest(name='A', password='pw', **fields)


def test_oversized_register_number_is_a_bad_request(auth_api) -> None:
    register_response = auth_api.post(
        '/api/auth/register',
        json={'name': 'A', 'rgno': '99999999999999999999', 'password': 'pw'},
    )
    login_response = auth_api.post('/api/auth/login', json={'rgno': 99999999999999999999, 'password': 'pw'})

    assert register_response.status_code == 400
    assert register_response.json()['success'] is False
    assert login_response.status_code == 400
