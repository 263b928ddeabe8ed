"""Tests for one-time code issuing and verification."""

from datetime import timedelta

import pytest

from models.auth_code import AuthCode
from models.security_event import SecurityEvent
from security.auth_code import generate_code, hash_code, verify_code_hash
from security.errors import (
    AccountLocked,
    CodeAttemptsExceeded,
    CodeInvalid,
    CodeNotFoundOrExpired,
    Cooldown,
    DeliveryFailed,
    EmailNotAllowed,
    InvalidInput,
)
from tests.conftest import wrong_code

EMAIL = "new@example.com"


class TestCodeHelpers:
    def test_generated_codes_are_six_digits(self):
        for _ in range(50):
            code = generate_code()
            assert len(code) == 6 and code.isdigit()

    def test_hash_is_one_way_and_verifiable(self):
        digest = hash_code("123456", rounds=4)
        assert "123456" not in digest
        assert verify_code_hash("123456", digest)
        assert not verify_code_hash("654321", digest)
        assert not verify_code_hash("123456", "not-a-bcrypt-hash")


class TestRequestCode:
    def test_issues_and_sends_code(self, auth, store, sender, clock):
        issued = auth.codes.request_code(EMAIL, "1.1.1.1", "pytest")

        assert sender.sent[0][0] == EMAIL
        assert issued.expires_at > clock()
        assert (issued.next_request_allowed_at - clock()).total_seconds() == 60

        row = store.session.get(AuthCode, issued.code_id)
        assert row.used is False
        assert row.code_hash != sender.last_code()
        assert row.email_key == auth.codes.lookup_key(EMAIL)
        assert store.count_unused_codes(row.email_key) == 1

    def test_email_is_normalized(self, auth, sender):
        auth.codes.request_code("  New@Example.COM ", "1.1.1.1")
        assert sender.sent[0][0] == EMAIL

    @pytest.mark.parametrize("email", ["", "no-at-sign", "a@b", "two@@example.com", None])
    def test_rejects_malformed_email(self, auth, email):
        with pytest.raises(InvalidInput):
            auth.codes.request_code(email, "1.1.1.1")

    def test_cooldown_between_requests(self, auth, clock):
        auth.codes.request_code(EMAIL, "1.1.1.1")
        clock.advance(seconds=20)

        with pytest.raises(Cooldown) as info:
            auth.codes.request_code(EMAIL, "1.1.1.1")
        assert info.value.retry_after_seconds == 40

    def test_new_code_supersedes_unused_one(self, auth, store, sender, clock, fixed_codes):
        fixed_codes.extend(["111111", "222222"])
        auth.codes.request_code(EMAIL, "1.1.1.1")
        old = sender.last_code()
        clock.advance(seconds=61)
        auth.codes.request_code(EMAIL, "1.1.1.1")
        new = sender.last_code()

        assert store.count_unused_codes(auth.codes.lookup_key(EMAIL)) == 1
        with pytest.raises(CodeInvalid):
            auth.codes.verify_code(EMAIL, old, "1.1.1.1")
        assert auth.codes.verify_code(EMAIL, new, "1.1.1.1").is_new_account

    def test_failed_request_is_audited_and_reraised(self, auth, store):
        with pytest.raises(InvalidInput):
            auth.codes.request_code("broken", "1.1.1.1", "pytest")

        events = store.list_security_events(action="AUTH_CODE_REQUEST_FAILED")
        assert len(events) == 1
        assert events[0].severity == "medium"
        assert "invalid_input" in events[0].details

    def test_delivery_failure_keeps_stored_code(self, auth, store, sender):
        sender.fail_with = DeliveryFailed(DeliveryFailed.TIMEOUT)

        with pytest.raises(DeliveryFailed) as info:
            auth.codes.request_code(EMAIL, "1.1.1.1")
        assert info.value.reason == "timeout"
        assert store.count_unused_codes(auth.codes.lookup_key(EMAIL)) == 1

        sender.fail_with = None
        with pytest.raises(Cooldown):
            auth.codes.request_code(EMAIL, "1.1.1.1")

    def test_allowlist(self, make_app):
        auth = make_app(ALLOWED_EMAILS=["friend@example.com"]).extensions["auth"]

        auth.codes.request_code("friend@example.com", "1.1.1.1")
        with pytest.raises(EmailNotAllowed):
            auth.codes.request_code("stranger@example.com", "1.1.1.1")


class TestVerifyCode:
    def test_correct_code_creates_account(self, auth, store, sender):
        auth.codes.request_code(EMAIL, "1.1.1.1")

        login = auth.codes.verify_code(EMAIL, sender.last_code(), "2.2.2.2", "pytest")

        assert login.is_new_account
        assert login.account.email == EMAIL
        assert login.account.role == "user"
        assert login.account.last_login_ip == "2.2.2.2"
        assert store.count_unused_codes(login.account.email_key) == 0
        actions = {e.action for e in store.list_security_events(account_id=login.account.id)}
        assert {"ACCOUNT_CREATED", "LOGIN_SUCCESS"} <= actions

    def test_second_login_reuses_account(self, auth, sender, clock):
        auth.codes.request_code(EMAIL, "1.1.1.1")
        first = auth.codes.verify_code(EMAIL, sender.last_code(), "1.1.1.1")
        clock.advance(seconds=61)
        auth.codes.request_code(EMAIL, "1.1.1.1")
        second = auth.codes.verify_code(EMAIL, sender.last_code(), "1.1.1.1")

        assert not second.is_new_account
        assert second.account.id == first.account.id

    def test_code_cannot_be_reused(self, auth, sender):
        auth.codes.request_code(EMAIL, "1.1.1.1")
        code = sender.last_code()
        auth.codes.verify_code(EMAIL, code, "1.1.1.1")

        with pytest.raises(CodeNotFoundOrExpired):
            auth.codes.verify_code(EMAIL, code, "1.1.1.1")

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", None])
    def test_rejects_malformed_code(self, auth, code):
        with pytest.raises(InvalidInput):
            auth.codes.verify_code(EMAIL, code, "1.1.1.1")

    def test_expired_code(self, auth, sender, clock):
        auth.codes.request_code(EMAIL, "1.1.1.1")
        clock.advance(seconds=301)

        with pytest.raises(CodeNotFoundOrExpired):
            auth.codes.verify_code(EMAIL, sender.last_code(), "1.1.1.1")

    def test_wrong_code_can_be_retried(self, auth, store, sender):
        auth.codes.request_code(EMAIL, "1.1.1.1")
        code = sender.last_code()

        with pytest.raises(CodeInvalid):
            auth.codes.verify_code(EMAIL, wrong_code(code), "1.1.1.1")

        key = auth.codes.lookup_key(EMAIL)
        assert store.unused_code_attempts(key, auth.codes.clock()) == 1
        assert auth.codes.lockout.status(key).failed_attempt_count == 1

        login = auth.codes.verify_code(EMAIL, code, "1.1.1.1")
        assert login.account.email == EMAIL
        assert auth.codes.lockout.status(key) == (0, None)

    def test_attempt_cap_rejects_even_correct_code(self, make_app, sender):
        auth = make_app(AUTH_CODE_MAX_ATTEMPTS=3, MAX_FAILED_ATTEMPTS=10).extensions["auth"]
        auth.codes.request_code(EMAIL, "1.1.1.1")
        code = sender.last_code()

        for _ in range(2):
            with pytest.raises(CodeInvalid):
                auth.codes.verify_code(EMAIL, wrong_code(code), None)
        with pytest.raises(CodeAttemptsExceeded):
            auth.codes.verify_code(EMAIL, wrong_code(code), None)

        with pytest.raises(CodeAttemptsExceeded):
            auth.codes.verify_code(EMAIL, code, None)

    def test_failed_verification_is_audited_high(self, auth, store, sender):
        auth.codes.request_code(EMAIL, "1.1.1.1")
        with pytest.raises(CodeInvalid):
            auth.codes.verify_code(EMAIL, wrong_code(sender.last_code()), "1.1.1.1")

        events = store.list_security_events(action="AUTH_FAILED")
        assert events[0].severity == "high"
        assert sender.last_code() not in (events[0].details or "")

    def test_admin_seed_list_sets_role(self, make_app, sender):
        auth = make_app(ADMIN_EMAILS=["Boss@Example.com"]).extensions["auth"]
        auth.codes.request_code("boss@example.com", "1.1.1.1")

        login = auth.codes.verify_code("boss@example.com", sender.last_code(), "1.1.1.1")
        assert login.account.role == "admin"

    def test_locked_email_cannot_request_or_verify(self, make_app, sender):
        auth = make_app(MAX_FAILED_ATTEMPTS=2).extensions["auth"]
        auth.codes.request_code(EMAIL, "1.1.1.1")
        code = sender.last_code()

        with pytest.raises(CodeInvalid):
            auth.codes.verify_code(EMAIL, wrong_code(code), None)
        with pytest.raises(AccountLocked):
            auth.codes.verify_code(EMAIL, wrong_code(code), None)

        with pytest.raises(AccountLocked):
            auth.codes.verify_code(EMAIL, code, None)
        with pytest.raises(AccountLocked):
            auth.codes.request_code(EMAIL, "1.1.1.1")


def test_security_events_never_hold_plaintext_codes(auth, store, sender):
    auth.codes.request_code(EMAIL, "1.1.1.1")
    code = sender.last_code()
    auth.codes.verify_code(EMAIL, code, "1.1.1.1")

    for event in store.session.query(SecurityEvent).all():
        assert code not in (event.details or "")


def test_mismatch_on_superseded_code_keeps_it_closed(auth, store, clock):
    key = auth.codes.lookup_key(EMAIL)
    now = clock()
    first = store.issue_code(key, hash_code("111111", 4), now + timedelta(minutes=5),
                             "1.1.1.1", None, now, now - timedelta(seconds=60))
    claimed = store.claim_code(key, now, 5)
    assert claimed.id == first.id

    # a newer code lands while the first is still claimed
    clock.advance(seconds=61)
    now = clock()
    second = store.issue_code(key, hash_code("222222", 4), now + timedelta(minutes=5),
                              "1.1.1.1", None, now, now - timedelta(seconds=60))
    assert second is not None

    assert store.release_code(claimed.id, key) == 1
    assert store.count_unused_codes(key) == 1
    assert store.claim_code(key, now, 5).id == second.id
