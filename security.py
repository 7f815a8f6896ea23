"""Credential hashing and bearer tokens."""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from errors import TokenExpired, TokenInvalid
from schemas import Role


class PasswordHasher:
    def __init__(self, schemes=("pbkdf2_sha256",)):
        self._context = CryptContext(schemes=list(schemes), deprecated="auto")

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        if not hashed:
            return False
        try:
            return self._context.verify(password, hashed)
        except ValueError:
            # unknown or corrupt hash format
            return False


@dataclass(frozen=True)
class Principal:
    email: str
    role: Role

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.STAFF, Role.ADMIN)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """
    Issues and validates signed, self-contained bearer tokens.

    A token carries the subject email, the role claim, and issued-at and
    expiry timestamps. There is no revocation list: expiry is the only way
    a token stops being valid.
    """

    def __init__(self, secret: str, algorithm: str = "HS256",
                 ttl: timedelta = timedelta(hours=24),
                 clock: Callable[[], datetime] = utc_now):
        self.secret = secret
        self.algorithm = algorithm
        self.ttl = ttl
        self.clock = clock

    def issue(self, email: str, role: Role) -> str:
        issued = self.clock()
        claims = {
            "sub": email,
            "role": Role(role).value,
            "iat": int(issued.timestamp()),
            "exp": int((issued + self.ttl).timestamp()),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def validate(self, token: str) -> Principal:
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenExpired("Your session has expired. Please login again.")
        except JWTError as e:
            raise TokenInvalid(f"Invalid token: {e}")
        email = claims.get("sub")
        role = claims.get("role")
        if not email or role not in Role.__members__:
            raise TokenInvalid("Invalid token: missing subject or role")
        return Principal(email=email, role=Role(role))

