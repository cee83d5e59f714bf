"""
Unit tests for store error classification

Driver errors are classified by structured codes only, so these tests build
SQLAlchemy exceptions around small stand-ins for the driver exception.
"""
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.database import is_transient_error, is_unique_violation, transient_store_errors
from app.exceptions import TRY_AGAIN_MESSAGE, TransientStoreError


class FakeDriverError(Exception):
    def __init__(self, sqlstate=None, sqlite_errorname=None):
        super().__init__(sqlstate or sqlite_errorname or "driver error")
        if sqlstate is not None:
            self.sqlstate = sqlstate
        if sqlite_errorname is not None:
            self.sqlite_errorname = sqlite_errorname


def operational(**kwargs) -> OperationalError:
    return OperationalError("SELECT 1", {}, FakeDriverError(**kwargs))


def integrity(**kwargs) -> IntegrityError:
    return IntegrityError("INSERT", {}, FakeDriverError(**kwargs))


class TestIsUniqueViolation:

    def test_postgres_unique(self):
        assert is_unique_violation(integrity(sqlstate="23505"))

    def test_postgres_foreign_key_is_not_unique(self):
        assert not is_unique_violation(integrity(sqlstate="23503"))

    @pytest.mark.parametrize("name", ["SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY"])
    def test_sqlite_unique(self, name):
        assert is_unique_violation(integrity(sqlite_errorname=name))

    def test_sqlite_not_null_is_not_unique(self):
        assert not is_unique_violation(integrity(sqlite_errorname="SQLITE_CONSTRAINT_NOTNULL"))


class TestIsTransientError:

    @pytest.mark.parametrize("sqlstate", ["40001", "40P01", "55P03", "57014"])
    def test_retryable_sqlstates(self, sqlstate):
        assert is_transient_error(operational(sqlstate=sqlstate))

    def test_syntax_error_is_not_transient(self):
        assert not is_transient_error(operational(sqlstate="42601"))

    @pytest.mark.parametrize("name", ["SQLITE_BUSY", "SQLITE_BUSY_SNAPSHOT", "SQLITE_LOCKED"])
    def test_sqlite_busy(self, name):
        assert is_transient_error(operational(sqlite_errorname=name))

    def test_sqlite_readonly_is_not_transient(self):
        assert not is_transient_error(operational(sqlite_errorname="SQLITE_READONLY"))

    def test_uncoded_operational_error_is_transient(self):
        """Connection refused and friends arrive without a code"""
        assert is_transient_error(operational())

    def test_invalidated_connection(self):
        exc = OperationalError("SELECT 1", {}, FakeDriverError(sqlstate="42601"), connection_invalidated=True)
        assert is_transient_error(exc)

    def test_integrity_error_is_not_transient(self):
        assert not is_transient_error(integrity(sqlstate="23505"))

    def test_plain_exceptions(self):
        assert is_transient_error(ConnectionResetError())
        assert is_transient_error(TimeoutError())
        assert not is_transient_error(ValueError())


class TestTransientStoreErrors:

    def test_translates_lock_timeout(self):
        with pytest.raises(TransientStoreError) as exc_info:
            with transient_store_errors("test"):
                raise operational(sqlstate="55P03")

        assert exc_info.value.message == TRY_AGAIN_MESSAGE
        assert exc_info.value.status_code == 503
        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_passes_through_other_errors(self):
        with pytest.raises(IntegrityError):
            with transient_store_errors("test"):
                raise integrity(sqlstate="23505")

        with pytest.raises(KeyError):
            with transient_store_errors("test"):
                raise KeyError("x")
