import uuid
from collections import namedtuple
from datetime import datetime, timedelta, timezone

import jwt

from models.security_event import SEVERITY_LOW
from security.errors import TokenInvalid
from utils.clock import utcnow
from utils.logging import get_logger

log = get_logger(__name__)

ALGORITHM = "HS256"
REFRESH_TYPE = "refresh"

TokenPair = namedtuple("TokenPair", ["access_token", "refresh_token"])
TokenCheck = namedtuple("TokenCheck", ["valid", "account", "claims"])

_INVALID = TokenCheck(False, None, None)


def _epoch(dt: datetime) -> int:
    return int(dt.replace(tzinfo=timezone.utc).timestamp())


def _from_epoch(value) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


class TokenService:
    """
    Signed access/refresh tokens with per-token revocation.

    Access and refresh tokens use independent secrets. A revoked token id
    stays rejected until the token's own expiry, whatever its signature.
    """

    def __init__(self, store, audit, *, access_secret: str, refresh_secret: str,
                 issuer: str, audience: str,
                 access_ttl_seconds: int = 24 * 60 * 60,
                 refresh_ttl_seconds: int = 7 * 24 * 60 * 60,
                 clock=utcnow):
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh tokens must use different secrets")
        self.store = store
        self.audit = audit
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = timedelta(seconds=access_ttl_seconds)
        self.refresh_ttl = timedelta(seconds=refresh_ttl_seconds)
        self.clock = clock

    @property
    def access_ttl_seconds(self) -> int:
        return int(self.access_ttl.total_seconds())

    # ---------- minting ----------

    def issue_access(self, account) -> str:
        now = self.clock()
        payload = {
            "jti": str(uuid.uuid4()),
            "sub": account.id,
            "role": account.role,
            "iat": _epoch(now),
            "exp": _epoch(now + self.access_ttl),
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(payload, self.access_secret, algorithm=ALGORITHM)

    def issue_refresh(self, account) -> str:
        now = self.clock()
        payload = {
            "jti": str(uuid.uuid4()),
            "sub": account.id,
            "type": REFRESH_TYPE,
            "iat": _epoch(now),
            "exp": _epoch(now + self.refresh_ttl),
            "iss": self.issuer,
        }
        return jwt.encode(payload, self.refresh_secret, algorithm=ALGORITHM)

    def issue(self, account) -> TokenPair:
        return TokenPair(self.issue_access(account), self.issue_refresh(account))

    # ---------- decoding ----------

    def _decode(self, token: str, refresh: bool) -> dict:
        secret = self.refresh_secret if refresh else self.access_secret
        required = ["jti", "sub", "iat", "exp", "iss"]
        kwargs = {"issuer": self.issuer}
        if not refresh:
            required.append("aud")
            kwargs["audience"] = self.audience
        return jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            # time claims are checked against the injected clock instead
            options={"require": required, "verify_exp": False, "verify_iat": False},
            **kwargs,
        )

    def _check_expiry(self, claims: dict) -> None:
        if _epoch(self.clock()) >= int(claims["exp"]):
            raise jwt.ExpiredSignatureError("Signature has expired")

    def validate(self, token: str, refresh: bool = False) -> TokenCheck:
        if not token or not isinstance(token, str):
            return _INVALID
        try:
            claims = self._decode(token, refresh)
            self._check_expiry(claims)
        except jwt.InvalidTokenError as exc:
            log.info("token_rejected", reason=type(exc).__name__)
            return _INVALID

        if refresh and claims.get("type") != REFRESH_TYPE:
            return _INVALID
        if not refresh and claims.get("type") == REFRESH_TYPE:
            return _INVALID

        if self.store.is_revoked(claims["jti"]):
            log.info("token_rejected", reason="revoked")
            return _INVALID

        account = self.store.get_account(claims["sub"])
        if account is None:
            log.info("token_rejected", reason="unknown_subject")
            return _INVALID
        return TokenCheck(True, account, claims)

    def refresh(self, refresh_token: str) -> str:
        check = self.validate(refresh_token, refresh=True)
        if not check.valid:
            raise TokenInvalid("Invalid refresh token")
        return self.issue_access(check.account)

    # ---------- revocation ----------

    def _decode_any(self, token: str) -> dict:
        """Signature-checked but expiry-blind decode, access secret first."""
        try:
            return self._decode(token, refresh=False)
        except jwt.InvalidTokenError:
            pass
        try:
            claims = self._decode(token, refresh=True)
        except jwt.InvalidTokenError as exc:
            raise TokenInvalid() from exc
        if claims.get("type") != REFRESH_TYPE:
            raise TokenInvalid()
        return claims

    def subject_of(self, token: str) -> str:
        """Subject of a genuine token, expired or not."""
        if not token or not isinstance(token, str):
            raise TokenInvalid()
        return self._decode_any(token)["sub"]

    def revoke(self, token: str, ip=None, user_agent=None) -> dict:
        if not token or not isinstance(token, str):
            raise TokenInvalid()
        claims = self._decode_any(token)
        expires_at = _from_epoch(claims["exp"])
        self.store.add_revocation(claims["jti"], claims["sub"], expires_at, self.clock())
        self.audit.record(
            claims["sub"],
            "TOKEN_REVOKED",
            ip,
            user_agent,
            {"jti": claims["jti"], "type": claims.get("type", "access")},
            SEVERITY_LOW,
        )
        log.info("token_revoked", account_id=claims["sub"], jti=claims["jti"])
        return claims
