from fastapi.testclient import TestClient

from labportal.core import config
from labportal.database import get_db
from labportal.main import SECURITY_HEADERS, create_auth_app, create_logbook_app


def _with_db(app, db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    return app


def test_health_endpoints_name_their_ports(auth_api, logbook_api) -> None:
    assert auth_api.get('/health').json() == {'status': f'Auth Server running on port {config.AUTH_PORT}'}
    assert logbook_api.get('/health').json() == {'status': f'Log Book Server running on port {config.LOGBOOK_PORT}'}


def test_logbook_responses_carry_security_headers(logbook_api) -> None:
    response = logbook_api.get('/api/logbook/my-logbooks')

    assert response.status_code == 401
    for header, value in SECURITY_HEADERS.items():
        assert response.headers[header] == value


def test_unknown_route_uses_error_envelope(logbook_api) -> None:
    response = logbook_api.get('/api/logbook/not/a/route')

    assert response.status_code == 404
    assert response.json()['success'] is False


def test_non_numeric_path_parameter_is_a_bad_request(logbook_api, bearer) -> None:
    response = logbook_api.get('/api/logbook/roll/abc', headers=bearer(1, role='faculty'))

    assert response.status_code == 400
    assert response.json()['success'] is False
    assert response.json()['error'].startswith('rollno')


def test_rate_limit_rejects_requests_over_the_window(db) -> None:
    client = TestClient(_with_db(create_logbook_app(rate_limit='2/minute', rate_limit_enabled=True), db))

    statuses = [client.get('/health').status_code for _ in range(3)]
    limited = client.get('/health')

    assert statuses == [200, 200, 429]
    assert limited.json() == {'success': False, 'error': 'Too many requests. Please try again later.'}


def test_rate_limit_is_shared_across_routes(db) -> None:
    client = TestClient(_with_db(create_logbook_app(rate_limit='1/minute', rate_limit_enabled=True), db))

    first = client.get('/health')
    second = client.get('/api/logbook/my-logbooks')

    assert first.status_code == 200
    assert second.status_code == 429


def test_rate_limit_applies_to_logbook_routes(db, bearer) -> None:
    client = TestClient(_with_db(create_logbook_app(rate_limit='2/minute', rate_limit_enabled=True), db))
    headers = bearer(212223)

    statuses = [client.get('/api/logbook/my-logbooks', headers=headers).status_code for _ in range(3)]
    limited = client.get('/api/logbook/all', headers=bearer(1, role='faculty'))

    assert statuses == [200, 200, 429]
    assert limited.status_code == 429
    assert limited.json() == {'success': False, 'error': 'Too many requests. Please try again later.'}
    for header, value in SECURITY_HEADERS.items():
        assert limited.headers[header] == value


def test_rate_limit_windows_are_separate_per_app(db) -> None:
    first = TestClient(_with_db(create_logbook_app(rate_limit='1/minute', rate_limit_enabled=True), db))
    second = TestClient(_with_db(create_logbook_app(rate_limit='1/minute', rate_limit_enabled=True), db))

    assert first.get('/health').status_code == 200
    assert second.get('/health').status_code == 200
    assert first.get('/health').status_code == 429


def test_unexpected_errors_hide_their_details() -> None:
    app = create_auth_app()

    @app.get('/boom')
    def boom():
        raise RuntimeError('database password is hunter2')

    response = TestClient(app).get('/boom')

    assert response.status_code == 500
    assert response.json() == {'success': False, 'error': 'Internal server error'}


def test_unexpected_errors_keep_security_and_cors_headers() -> None:
    app = create_logbook_app(rate_limit_enabled=False)

    @app.get('/boom')
    def boom():
        raise RuntimeError('boom')

    response = TestClient(app).get('/boom', headers={'Origin': 'http://localhost:5173'})

    assert response.status_code == 500
    assert response.json() == {'success': False, 'error': 'Internal server error'}
    assert response.headers['access-control-allow-origin'] in ('*', 'http://localhost:5173')
    for header, value in SECURITY_HEADERS.items():
        assert response.headers[header] == value


def test_cors_allows_configured_origins(auth_api) -> None:
    response = auth_api.options(
        '/api/auth/login',
        headers={'Origin': 'http://localhost:5173', 'Access-Control-Request-Method': 'POST'},
    )

    assert response.status_code == 200
    assert response.headers['access-control-allow-origin'] in ('*', 'http://localhost:5173')
