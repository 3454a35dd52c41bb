import pytest

from authcore.models import User

EMAIL = 'cli@example.com'


def bearer(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


# ==== cleanup ====

def test_cleanup_reports_counts(runner, client, login, clock):
    tokens = login(EMAIL)
    client.post('/api/auth/logout', headers=bearer(tokens['access_token']))
    clock.advance(days=2)

    result = runner.invoke(args=['auth', 'cleanup'])

    assert result.exit_code == 0
    assert 'Deleted 1 OTP code(s) and 1 session(s).' in result.output


def test_cleanup_keeps_live_sessions(runner, client, login):
    tokens = login(EMAIL)

    result = runner.invoke(args=['auth', 'cleanup'])

    assert 'and 0 session(s).' in result.output
    assert client.get('/api/auth/me', headers=bearer(tokens['access_token'])).status_code == 200


# ==== revoke-sessions ====

def test_revoke_sessions(runner, client, login):
    tokens = login(EMAIL)

    result = runner.invoke(args=['auth', 'revoke-sessions', EMAIL])

    assert result.exit_code == 0
    assert f'1 session(s) revoked for {EMAIL}' in result.output
    assert client.get('/api/auth/me', headers=bearer(tokens['access_token'])).status_code == 401


def test_revoke_sessions_unknown_email(runner):
    result = runner.invoke(args=['auth', 'revoke-sessions', 'ghost@example.com'])

    assert result.exit_code == 1
    assert 'No account for ghost@example.com' in result.output


# ==== create-user ====

def test_create_user(runner):
    result = runner.invoke(args=['auth', 'create-user', 'Mentor@Example.com', '--role', 'MENTOR',
                                 '--first-name', 'Ada'])

    assert result.exit_code == 0
    user = User.query.filter_by(email='mentor@example.com').one()
    assert user.role == 'MENTOR'
    assert user.first_name == 'Ada'


def test_create_user_duplicate(runner):
    runner.invoke(args=['auth', 'create-user', EMAIL])

    result = runner.invoke(args=['auth', 'create-user', EMAIL])

    assert result.exit_code == 1
    assert 'Email already registered' in result.output
    assert User.query.filter_by(email=EMAIL).count() == 1


def test_create_user_invalid_role(runner):
    result = runner.invoke(args=['auth', 'create-user', EMAIL, '--role', 'WIZARD'])

    assert result.exit_code == 2
    assert User.query.filter_by(email=EMAIL).first() is None
