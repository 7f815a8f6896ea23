"""
Route authorization table.

Rules are checked in order and the first one whose method and path pattern
match decides. ``roles=None`` marks a public route; an empty set admits any
authenticated caller. Paths that match no rule still need a valid token.
"""
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import FrozenSet, Iterable, List, Optional

from errors import AuthenticationFailed, AuthorizationDenied
from schemas import Role
from security import Principal

ANY = frozenset()
STAFF = frozenset({Role.STAFF, Role.ADMIN})
ADMIN = frozenset({Role.ADMIN})
EVERYONE = frozenset({Role.USER, Role.STAFF, Role.ADMIN})

ALL_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})


@dataclass(frozen=True)
class Rule:
    methods: FrozenSet[str]
    pattern: str
    roles: Optional[FrozenSet[Role]]

    def matches(self, method: str, path: str) -> bool:
        return method in self.methods and fnmatchcase(path, self.pattern)


def rule(methods, pattern: str, roles: Optional[Iterable[Role]]) -> Rule:
    if isinstance(methods, str):
        methods = ALL_METHODS if methods == "*" else {m.strip() for m in methods.split("|")}
    return Rule(frozenset(methods), pattern, None if roles is None else frozenset(roles))


DEFAULT_RULES: List[Rule] = [
    rule("*", "/api/auth/*", None),
    rule("GET", "/", None),
    rule("GET", "/docs*", None),
    rule("GET", "/openapi.json", None),
    rule("GET", "/redoc*", None),

    rule("POST", "/api/staff/*/change-password", STAFF),
    rule("*", "/api/staff", ADMIN),
    rule("*", "/api/staff/*", ADMIN),

    rule("DELETE", "/api/users/*", ADMIN),
    rule("POST", "/api/users/*/change-password", ANY),
    rule("*", "/api/users", STAFF),
    rule("*", "/api/users/*", STAFF),

    rule("GET", "/api/books*", ANY),
    rule("*", "/api/books*", STAFF),
    rule("GET", "/api/book-copies*", ANY),
    rule("*", "/api/book-copies*", STAFF),

    rule("POST", "/api/loans/mark-overdue", STAFF),
    rule("POST", "/api/loans", EVERYONE),
    rule("POST", "/api/loans/*/return", EVERYONE),
    rule("GET", "/api/loans/search/*", STAFF),
    rule("GET", "/api/loans*", ANY),
    rule("*", "/api/loans*", STAFF),

    rule("GET", "/api/fines/total/*", STAFF),
    rule("GET", "/api/fines/count/*", STAFF),
    rule("GET", "/api/fines*", ANY),
    rule("*", "/api/fines*", STAFF),

    rule("POST", "/api/payments", EVERYONE),
    rule("GET", "/api/payments/revenue", STAFF),
    rule("GET", "/api/payments/transaction/*", STAFF),
    rule("GET", "/api/payments/exists/*", STAFF),
    rule("GET", "/api/payments*", ANY),
    rule("*", "/api/payments*", STAFF),
]


class AuthorizationPolicy:
    def __init__(self, rules: Optional[List[Rule]] = None):
        self.rules = list(DEFAULT_RULES if rules is None else rules)

    def match(self, method: str, path: str) -> Optional[Rule]:
        method = method.upper()
        for r in self.rules:
            if r.matches(method, path):
                return r
        return None

    def is_public(self, method: str, path: str) -> bool:
        r = self.match(method, path)
        return r is not None and r.roles is None

    def check(self, method: str, path: str, principal: Optional[Principal]) -> None:
        r = self.match(method, path)
        if r is not None and r.roles is None:
            return
        if principal is None:
            raise AuthenticationFailed("Authentication required")
        if r is None or not r.roles:
            return
        if principal.role not in r.roles:
            raise AuthorizationDenied(
                f"Role {principal.role.value} may not {method.upper()} {path}"
            )
