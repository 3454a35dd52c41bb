import threading

import pytest

from authcore.models.enums import OTPFailure
from authcore.services.otp_service import OTPService
from authcore.utils.audit import AuditAction

USER = 'user-1'


@pytest.fixture
def service(otp_store, audit, clock):
    return OTPService(otp_store, hash_key='test-key', audit=audit, clock=clock)


def _wrong(code):
    return '000000' if code != '000000' else '111111'


# ==== Émission ====

def test_issue_stores_hash_only(service, otp_store):
    issued = service.issue(USER, 'LOGIN')
    record = otp_store.get(issued.otp_id)

    assert record.code_hash != issued.code
    assert len(record.code_hash) == 64
    assert record.attempts == 0
    assert record.expires_at == issued.issued_at + service.ttl


def test_issue_is_audited(service, audit):
    service.issue(USER, 'LOGIN')
    assert audit.actions() == [AuditAction.OTP_REQUESTED]
    assert audit.find(AuditAction.OTP_REQUESTED)[0]['user_id'] == USER


def test_new_code_invalidates_previous(service, otp_store, monkeypatch):
    codes = iter(['111111', '222222'])
    monkeypatch.setattr(service, 'generate_otp', lambda: next(codes))
    first = service.issue(USER, 'LOGIN')
    second = service.issue(USER, 'LOGIN')

    assert otp_store.get(first.otp_id).is_used
    assert not service.verify(USER, first.code, 'LOGIN').success
    assert service.verify(USER, second.code, 'LOGIN').success


def test_new_code_keeps_other_purpose(service):
    login = service.issue(USER, 'LOGIN')
    service.issue(USER, 'VERIFY_EMAIL')

    assert service.verify(USER, login.code, 'LOGIN').success


# ==== Vérification ====

def test_correct_code_verifies_once(service, audit):
    issued = service.issue(USER, 'LOGIN')

    assert service.verify(USER, issued.code, 'LOGIN').success
    replay = service.verify(USER, issued.code, 'LOGIN')

    assert not replay.success
    assert replay.failure is OTPFailure.NOT_FOUND
    assert AuditAction.OTP_VERIFIED in audit.actions()


def test_no_code_fails_and_is_audited(service, audit):
    result = service.verify(USER, '123456', 'LOGIN')

    assert not result.success
    assert result.failure is OTPFailure.NOT_FOUND
    assert audit.find(AuditAction.OTP_FAILED)[0]['details']['reason'] == 'not_found'


def test_wrong_code_increments_attempts(service, otp_store):
    issued = service.issue(USER, 'LOGIN')

    result = service.verify(USER, _wrong(issued.code), 'LOGIN')

    assert result.failure is OTPFailure.MISMATCH
    assert result.remaining_attempts == 4
    assert otp_store.get(issued.otp_id).attempts == 1


def test_correct_code_after_max_attempts_fails(service):
    issued = service.issue(USER, 'LOGIN')
    for _ in range(5):
        assert service.verify(USER, _wrong(issued.code), 'LOGIN').failure is OTPFailure.MISMATCH

    result = service.verify(USER, issued.code, 'LOGIN')
    assert not result.success


def test_exhausted_record_without_mark_is_rejected(service, otp_store):
    issued = service.issue(USER, 'LOGIN')
    # Compteur au plafond mais code encore marqué non utilisé
    for _ in range(5):
        otp_store.register_failed_attempt(issued.otp_id)

    result = service.verify(USER, issued.code, 'LOGIN')

    assert result.failure is OTPFailure.TOO_MANY_ATTEMPTS
    assert otp_store.get(issued.otp_id).is_used


def test_expired_code_fails_even_when_correct(service, otp_store, clock):
    issued = service.issue(USER, 'LOGIN')
    clock.advance(minutes=10)

    result = service.verify(USER, issued.code, 'LOGIN')

    assert result.failure is OTPFailure.EXPIRED
    assert otp_store.get(issued.otp_id).attempts == 0
    assert otp_store.get(issued.otp_id).is_used


def test_code_is_bound_to_purpose(service):
    issued = service.issue(USER, 'VERIFY_EMAIL')
    assert service.verify(USER, issued.code, 'LOGIN').failure is OTPFailure.NOT_FOUND


def test_concurrent_correct_submissions_single_success(otp_store, audit, clock):
    service = OTPService(otp_store, hash_key='test-key', audit=audit, clock=clock)

    for _ in range(20):
        issued = service.issue(USER, 'LOGIN')
        barrier = threading.Barrier(2)
        results = []

        def submit():
            barrier.wait()
            results.append(service.verify(USER, issued.code, 'LOGIN').success)

        threads = [threading.Thread(target=submit) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == [False, True]


def test_concurrent_wrong_guesses_never_exceed_cap(otp_store, audit, clock):
    service = OTPService(otp_store, hash_key='test-key', audit=audit, clock=clock)
    issued = service.issue(USER, 'LOGIN')
    wrong = _wrong(issued.code)
    barrier = threading.Barrier(10)

    def guess():
        barrier.wait()
        service.verify(USER, wrong, 'LOGIN')

    threads = [threading.Thread(target=guess) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert otp_store.get(issued.otp_id).attempts <= 5
    assert not service.verify(USER, issued.code, 'LOGIN').success


def test_purge_removes_expired_and_old_used_codes(service, otp_store, clock):
    used = service.issue(USER, 'LOGIN')
    service.verify(USER, used.code, 'LOGIN')
    pending = service.issue(USER, 'VERIFY_EMAIL')

    clock.advance(hours=25)

    assert service.purge() == 2
    assert otp_store.get(used.otp_id) is None
    assert otp_store.get(pending.otp_id) is None
