"""Tests for pki_auth.oauth.codes — AuthorizationCodeStore."""
from __future__ import annotations

import datetime
import threading

import pytest

from pki_auth.oauth import AuthorizationCodeStore, CodeChallengeMethod, OAuthError, OAuthErrorCode

REDIRECT_URI = "https://app.example/callback"


@pytest.fixture()
def now() -> list[datetime.datetime]:
    return [datetime.datetime(2025, 1, 1, tzinfo=datetime.timezone.utc)]


@pytest.fixture()
def store(now: list[datetime.datetime]) -> AuthorizationCodeStore:
    return AuthorizationCodeStore(ttl_seconds=600, clock=lambda: now[0])


class TestIssue:
    def test_code_is_64_hex_chars(self, store: AuthorizationCodeStore) -> None:
        code = store.issue("u-1", "app", REDIRECT_URI)
        assert len(code.code) == 64
        int(code.code, 16)

    def test_ten_minute_lifetime(self, store: AuthorizationCodeStore, now: list[datetime.datetime]) -> None:
        code = store.issue("u-1", "app", REDIRECT_URI)
        assert code.expires_at - now[0] == datetime.timedelta(minutes=10)

    def test_challenge_method_defaults_to_s256(self, store: AuthorizationCodeStore) -> None:
        code = store.issue("u-1", "app", REDIRECT_URI, code_challenge="abc")
        assert code.code_challenge_method is CodeChallengeMethod.S256

    def test_no_method_without_challenge(self, store: AuthorizationCodeStore) -> None:
        code = store.issue("u-1", "app", REDIRECT_URI, code_challenge_method=CodeChallengeMethod.PLAIN)
        assert code.code_challenge is None
        assert code.code_challenge_method is None


class TestRedeem:
    def test_redeem_returns_binding(self, store: AuthorizationCodeStore) -> None:
        issued = store.issue("u-1", "app", REDIRECT_URI, scope="openid")
        redeemed = store.redeem(issued.code)
        assert (redeemed.user_id, redeemed.client_id, redeemed.redirect_uri, redeemed.scope) == (
            "u-1",
            "app",
            REDIRECT_URI,
            "openid",
        )
        assert redeemed.used

    def test_second_redeem_is_invalid_grant(self, store: AuthorizationCodeStore) -> None:
        code = store.issue("u-1", "app", REDIRECT_URI).code
        store.redeem(code)
        with pytest.raises(OAuthError) as excinfo:
            store.redeem(code)
        assert excinfo.value.code is OAuthErrorCode.INVALID_GRANT

    def test_unknown_code(self, store: AuthorizationCodeStore) -> None:
        with pytest.raises(OAuthError) as excinfo:
            store.redeem("0" * 64)
        assert excinfo.value.code is OAuthErrorCode.INVALID_GRANT

    def test_expired_code(self, store: AuthorizationCodeStore, now: list[datetime.datetime]) -> None:
        code = store.issue("u-1", "app", REDIRECT_URI).code
        now[0] += datetime.timedelta(seconds=601)
        with pytest.raises(OAuthError) as excinfo:
            store.redeem(code)
        assert excinfo.value.code is OAuthErrorCode.INVALID_GRANT
        assert len(store) == 0

    def test_concurrent_redeem_single_winner(self, store: AuthorizationCodeStore) -> None:
        code = store.issue("u-1", "app", REDIRECT_URI).code
        barrier = threading.Barrier(4)
        outcomes: list[bool] = []
        lock = threading.Lock()

        def redeem() -> None:
            barrier.wait()
            try:
                store.redeem(code)
                ok = True
            except OAuthError:
                ok = False
            with lock:
                outcomes.append(ok)

        threads = [threading.Thread(target=redeem) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert outcomes.count(True) == 1

    def test_expired_codes_purged_on_issue(self, store: AuthorizationCodeStore, now: list[datetime.datetime]) -> None:
        store.issue("u-1", "app", REDIRECT_URI)
        now[0] += datetime.timedelta(seconds=601)
        store.issue("u-1", "app", REDIRECT_URI)
        assert len(store) == 1
