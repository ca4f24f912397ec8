"""Account storage and credential verification.

Accounts live in a small DuckDB table. Passwords are never stored: each
account keeps a random salt and a PBKDF2-HMAC-SHA256 digest of the password.

Usage:
    service = AccountService.get_instance()
    service.create_account(SignupRequest(username="alice", ...))
    user = service.verify_credentials("alice", "secret")  # None if rejected
"""
import hashlib
import hmac
import logging
import secrets
from datetime import datetime
from typing import List, Optional

import duckdb

from roomchat.config import get_config

from .schemas import Account, SignupRequest, VerifiedUser

logger = logging.getLogger(__name__)

MAX_USERNAME_LENGTH = 64
DEFAULT_PBKDF2_ITERATIONS = 200_000


class UsernameTakenError(Exception):
    """Raised when signing up with a username that already exists."""


class AccountValidationError(Exception):
    """Raised when a signup request is missing or has invalid fields.

    Attributes:
        errors: One human-readable message per invalid field.
    """

    def __init__(self, errors: List[str]) -> None:
        super().__init__(", ".join(errors))
        self.errors = errors


def hash_password(password: str, salt: str, iterations: int) -> str:
    """PBKDF2-HMAC-SHA256 password hash."""
    return hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations
    ).hex()


class AccountService:
    """Singleton service for accounts stored in DuckDB."""

    _instance: Optional["AccountService"] = None
    _db_path: str = "accounts.duckdb"

    def __init__(
        self,
        db_path: Optional[str] = None,
        iterations: int = DEFAULT_PBKDF2_ITERATIONS,
    ) -> None:
        if db_path:
            self._db_path = db_path
        self._iterations = iterations
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()

    @classmethod
    def get_instance(
        cls,
        db_path: Optional[str] = None,
        iterations: int = DEFAULT_PBKDF2_ITERATIONS,
    ) -> "AccountService":
        """Get or create the singleton instance."""
        if cls._instance is None:
            cls._instance = cls(db_path, iterations)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS accounts (
                username VARCHAR PRIMARY KEY,
                firstname VARCHAR NOT NULL,
                lastname VARCHAR NOT NULL,
                password_hash VARCHAR NOT NULL,
                salt VARCHAR NOT NULL,
                created_at TIMESTAMP NOT NULL
            )
        """)

    @staticmethod
    def _validate(request: SignupRequest) -> None:
        errors = []
        if not request.username.strip():
            errors.append("Username is required")
        elif len(request.username.strip()) > MAX_USERNAME_LENGTH:
            errors.append(f"Username must be at most {MAX_USERNAME_LENGTH} characters")
        if not request.firstname.strip():
            errors.append("First name is required")
        if not request.lastname.strip():
            errors.append("Last name is required")
        if not request.password:
            errors.append("Password is required")
        if errors:
            raise AccountValidationError(errors)

    def create_account(self, request: SignupRequest) -> Account:
        """Create a new account.

        Raises:
            AccountValidationError: If a required field is blank or too long.
            UsernameTakenError: If the username already exists.
        """
        self._validate(request)
        username = request.username.strip()
        conn = self._get_connection()

        existing = conn.execute(
            "SELECT 1 FROM accounts WHERE username = ?", [username]
        ).fetchone()
        if existing:
            raise UsernameTakenError(username)

        salt = secrets.token_hex(16)
        created_at = datetime.now()
        conn.execute(
            """
            INSERT INTO accounts (username, firstname, lastname, password_hash, salt, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                username,
                request.firstname.strip(),
                request.lastname.strip(),
                hash_password(request.password, salt, self._iterations),
                salt,
                created_at,
            ],
        )
        logger.info("Account created for %s", username)

        return Account(
            username=username,
            firstname=request.firstname.strip(),
            lastname=request.lastname.strip(),
            created_at=created_at,
        )

    def verify_credentials(self, username: str, password: str) -> Optional[VerifiedUser]:
        """Check a username/password pair.

        Returns:
            The verified identity, or None if the credentials are rejected.
        """
        row = self._get_connection().execute(
            "SELECT username, firstname, password_hash, salt FROM accounts WHERE username = ?",
            [username.strip()],
        ).fetchone()
        if row is None:
            return None

        candidate = hash_password(password, row[3], self._iterations)
        if not hmac.compare_digest(candidate, row[2]):
            return None
        return VerifiedUser(username=row[0], firstname=row[1])

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None


def get_account_service() -> AccountService:
    """Get the process-wide account service, opened with configured settings."""
    settings = get_config().auth
    return AccountService.get_instance(settings.db_path, settings.pbkdf2_iterations)
