from collections import namedtuple
from contextlib import contextmanager
from datetime import timedelta

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models.account import ROLES, Account
from models.auth_code import AuthCode
from models.login_attempt import LoginAttempt
from models.rate_limit_window import RateLimitWindow
from models.revocation_entry import RevocationEntry
from models.security_event import SecurityEvent
from security.errors import StoreUnavailable
from utils.logging import get_logger

log = get_logger(__name__)

ClaimedCode = namedtuple("ClaimedCode", ["id", "code_hash", "attempts"])
WindowState = namedtuple("WindowState", ["count", "window_start"])
FailureState = namedtuple("FailureState", ["fail_count", "locked_until"])


class PersistentStore:
    """
    Durable storage for the auth core.

    Every write commits on its own. The two race-sensitive operations,
    code claiming and rate-limit counting, are single conditional
    statements whose RETURNING row tells the caller whether it won.
    Any SQLAlchemy failure rolls the session back and surfaces as
    StoreUnavailable.
    """

    def __init__(self, session):
        self.session = session

    @contextmanager
    def _write(self, op: str):
        try:
            yield self.session
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            log.error("store_write_failed", op=op, error=str(exc))
            raise StoreUnavailable() from exc

    @contextmanager
    def _read(self, op: str):
        try:
            yield self.session
        except SQLAlchemyError as exc:
            self.session.rollback()
            log.error("store_read_failed", op=op, error=str(exc))
            raise StoreUnavailable() from exc

    def _insert(self, table):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table)
        raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}")

    # ---------- accounts ----------

    def get_account(self, account_id):
        if not account_id:
            return None
        with self._read("get_account") as s:
            return s.get(Account, account_id)

    def get_account_by_email_key(self, email_key: str):
        with self._read("get_account_by_email_key") as s:
            return s.execute(
                sa.select(Account).where(Account.email_key == email_key)
            ).scalar_one_or_none()

    def create_account(self, email: str, email_key: str, role: str, now):
        """
        Returns (account, created). Losing a concurrent insert for the same
        email returns the winner's row with created=False.
        """
        account = Account(email=email, email_key=email_key, role=role, created_at=now)
        try:
            self.session.add(account)
            self.session.commit()
            return account, True
        except IntegrityError:
            self.session.rollback()
        except SQLAlchemyError as exc:
            self.session.rollback()
            log.error("store_write_failed", op="create_account", error=str(exc))
            raise StoreUnavailable() from exc
        return self.get_account_by_email_key(email_key), False

    def record_login(self, account_id: str, ip, now) -> None:
        with self._write("record_login") as s:
            s.execute(
                sa.update(Account.__table__)
                .where(Account.__table__.c.id == account_id)
                .values(last_login_at=now, last_login_ip=ip)
            )

    def set_role(self, account_id: str, role: str) -> bool:
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        with self._write("set_role") as s:
            result = s.execute(
                sa.update(Account.__table__)
                .where(Account.__table__.c.id == account_id)
                .values(role=role)
            )
        return result.rowcount == 1

    # ---------- auth codes ----------

    def latest_code_created_at(self, email_key: str):
        with self._read("latest_code_created_at") as s:
            return s.execute(
                sa.select(sa.func.max(AuthCode.created_at)).where(AuthCode.email_key == email_key)
            ).scalar()

    def issue_code(self, email_key: str, code_hash: str, expires_at, ip, user_agent, now, stale_before):
        """
        Drops unused codes created before `stale_before` and inserts the new one
        in a single transaction. Returns the new code, or None when a fresher
        unused code already exists for the email (the partial unique index
        rejected the insert).
        """
        tbl = AuthCode.__table__
        code = AuthCode(
            email_key=email_key,
            code_hash=code_hash,
            expires_at=expires_at,
            used=False,
            attempts=0,
            ip=ip,
            user_agent=user_agent,
            created_at=now,
        )
        try:
            self.session.execute(
                sa.delete(tbl).where(
                    tbl.c.email_key == email_key,
                    tbl.c.used.is_(False),
                    tbl.c.created_at <= stale_before,
                )
            )
            self.session.add(code)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            return None
        except SQLAlchemyError as exc:
            self.session.rollback()
            log.error("store_write_failed", op="issue_code", error=str(exc))
            raise StoreUnavailable() from exc
        return code

    def claim_code(self, email_key: str, now, max_attempts: int):
        """
        Flips `used` on the single unused, unexpired, under-cap code for the
        email. Only the caller that gets a row back may compare digests.
        """
        tbl = AuthCode.__table__
        stmt = (
            sa.update(tbl)
            .where(
                tbl.c.email_key == email_key,
                tbl.c.used.is_(False),
                tbl.c.expires_at > now,
                tbl.c.attempts < max_attempts,
            )
            .values(used=True)
            .returning(tbl.c.id, tbl.c.code_hash, tbl.c.attempts)
        )
        with self._write("claim_code") as s:
            row = s.execute(stmt).first()
        return ClaimedCode(*row) if row else None

    def release_code(self, code_id: str, email_key: str) -> int:
        """
        Undo a claim after a digest mismatch: count the attempt and make the
        code claimable again, unless a newer unused code has superseded it.
        Returns the post-increment attempt count.
        """
        tbl = AuthCode.__table__
        newer = tbl.alias("newer")
        superseded = (
            sa.select(newer.c.id)
            .where(
                newer.c.email_key == email_key,
                newer.c.used.is_(False),
                newer.c.id != code_id,
            )
            .exists()
        )
        stmt = (
            sa.update(tbl)
            .where(tbl.c.id == code_id)
            .values(attempts=tbl.c.attempts + 1, used=superseded)
            .returning(tbl.c.attempts)
        )
        with self._write("release_code") as s:
            attempts = s.execute(stmt).scalar()
        return attempts or 0

    def unused_code_attempts(self, email_key: str, now):
        """Attempt count of the live unused code for the email, if any."""
        with self._read("unused_code_attempts") as s:
            return s.execute(
                sa.select(AuthCode.attempts).where(
                    AuthCode.email_key == email_key,
                    AuthCode.used.is_(False),
                    AuthCode.expires_at > now,
                )
            ).scalar()

    def count_unused_codes(self, email_key: str) -> int:
        with self._read("count_unused_codes") as s:
            return s.execute(
                sa.select(sa.func.count(AuthCode.id)).where(
                    AuthCode.email_key == email_key,
                    AuthCode.used.is_(False),
                )
            ).scalar()

    # ---------- rate limits ----------

    def hit_rate_limit(self, identifier: str, kind: str, action: str, now, window: timedelta):
        """
        Insert a fresh window, bump a live one, or roll a stale one over to 1,
        as one upsert. Returns the authoritative (count, window_start).
        """
        tbl = RateLimitWindow.__table__
        stale = tbl.c.window_start <= now - window
        stmt = self._insert(tbl).values(
            identifier=identifier,
            identifier_kind=kind,
            action=action,
            count=1,
            window_start=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[tbl.c.identifier, tbl.c.identifier_kind, tbl.c.action],
            set_={
                "count": sa.case((stale, 1), else_=tbl.c.count + 1),
                "window_start": sa.case((stale, now), else_=tbl.c.window_start),
            },
        ).returning(tbl.c.count, tbl.c.window_start)
        with self._write("hit_rate_limit") as s:
            row = s.execute(stmt).one()
        return WindowState(*row)

    # ---------- lockout ----------

    def get_login_attempt(self, email_key: str):
        with self._read("get_login_attempt") as s:
            row = s.execute(
                sa.select(LoginAttempt.fail_count, LoginAttempt.locked_until).where(
                    LoginAttempt.email_key == email_key
                )
            ).first()
        return FailureState(*row) if row else None

    def record_failure(self, email_key: str, now) -> FailureState:
        tbl = LoginAttempt.__table__
        stmt = self._insert(tbl).values(
            email_key=email_key,
            fail_count=1,
            last_fail_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[tbl.c.email_key],
            set_={
                "fail_count": tbl.c.fail_count + 1,
                "last_fail_at": now,
                "updated_at": now,
            },
        ).returning(tbl.c.fail_count, tbl.c.locked_until)
        with self._write("record_failure") as s:
            row = s.execute(stmt).one()
        return FailureState(*row)

    def lock(self, email_key: str, locked_until, now) -> None:
        # Idempotent: a live lock is never extended by a concurrent failure
        tbl = LoginAttempt.__table__
        with self._write("lock") as s:
            s.execute(
                sa.update(tbl)
                .where(
                    tbl.c.email_key == email_key,
                    sa.or_(tbl.c.locked_until.is_(None), tbl.c.locked_until <= now),
                )
                .values(locked_until=locked_until, updated_at=now)
            )

    def clear_expired_lock(self, email_key: str, now) -> bool:
        tbl = LoginAttempt.__table__
        with self._write("clear_expired_lock") as s:
            result = s.execute(
                sa.update(tbl)
                .where(
                    tbl.c.email_key == email_key,
                    tbl.c.locked_until.is_not(None),
                    tbl.c.locked_until <= now,
                )
                .values(fail_count=0, locked_until=None, updated_at=now)
            )
        return result.rowcount == 1

    def reset_failures(self, email_key: str, now) -> None:
        tbl = LoginAttempt.__table__
        with self._write("reset_failures") as s:
            s.execute(
                sa.update(tbl)
                .where(tbl.c.email_key == email_key)
                .values(fail_count=0, last_fail_at=None, locked_until=None, updated_at=now)
            )

    # ---------- revocation ----------

    def add_revocation(self, token_id: str, account_id, expires_at, now) -> None:
        tbl = RevocationEntry.__table__
        stmt = self._insert(tbl).values(
            token_id=token_id,
            account_id=account_id,
            expires_at=expires_at,
            created_at=now,
        ).on_conflict_do_nothing(index_elements=[tbl.c.token_id])
        with self._write("add_revocation") as s:
            s.execute(stmt)

    def is_revoked(self, token_id: str) -> bool:
        with self._read("is_revoked") as s:
            return s.execute(
                sa.select(RevocationEntry.id).where(RevocationEntry.token_id == token_id)
            ).first() is not None

    # ---------- audit ----------

    def add_security_event(self, account_id, action, ip, user_agent, details, severity, now) -> None:
        with self._write("add_security_event") as s:
            s.add(SecurityEvent(
                account_id=account_id,
                action=action,
                ip=ip,
                user_agent=user_agent,
                details=details,
                severity=severity,
                created_at=now,
            ))

    def list_security_events(self, account_id=None, action=None, limit: int = 200):
        q = sa.select(SecurityEvent)
        if account_id is not None:
            q = q.where(SecurityEvent.account_id == account_id)
        if action:
            q = q.where(SecurityEvent.action == action)
        q = q.order_by(SecurityEvent.created_at.desc(), SecurityEvent.id.desc()).limit(limit)
        with self._read("list_security_events") as s:
            return list(s.execute(q).scalars())

    # ---------- maintenance ----------

    def purge_expired(self, now, rate_window: timedelta) -> dict:
        codes = AuthCode.__table__
        revoked = RevocationEntry.__table__
        windows = RateLimitWindow.__table__
        attempts = LoginAttempt.__table__
        with self._write("purge_expired") as s:
            counts = {
                "auth_codes": s.execute(
                    sa.delete(codes).where(codes.c.expires_at <= now)
                ).rowcount,
                "revoked_tokens": s.execute(
                    sa.delete(revoked).where(revoked.c.expires_at <= now)
                ).rowcount,
                "rate_limits": s.execute(
                    sa.delete(windows).where(windows.c.window_start <= now - rate_window)
                ).rowcount,
                "login_attempts": s.execute(
                    sa.delete(attempts).where(
                        attempts.c.fail_count == 0,
                        sa.or_(attempts.c.locked_until.is_(None), attempts.c.locked_until <= now),
                    )
                ).rowcount,
            }
        return counts
