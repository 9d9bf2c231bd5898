"""
Scope Policy - isolation keys for every read and write.

A scope key is (scope, owner). personal and team scopes always carry an
owner; global never does. Every query the store issues is filtered by one
complete key, so memories of one user, team or project can never surface
in another's results.

Permanent (project) memory is not a separate component: it is the team
scope keyed by a project id, stored with decay_rate 0.0.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .errors import ScopeError


class MemoryScope(str, Enum):
    PERSONAL = "personal"
    TEAM = "team"
    GLOBAL = "global"


OWNED_SCOPES = frozenset({MemoryScope.PERSONAL, MemoryScope.TEAM})


@dataclass(frozen=True)
class ScopeKey:
    """A validated (scope, owner) isolation key."""

    scope: MemoryScope
    owner_id: Optional[str] = None

    @classmethod
    def of(cls, scope: Union[str, MemoryScope], owner_id: Optional[str] = None) -> "ScopeKey":
        """
        Validate and build a scope key.

        Raises:
            ScopeError: unknown scope, missing owner for personal/team, or an
                owner given for global.
        """
        try:
            scope = MemoryScope(scope)
        except ValueError:
            valid = ", ".join(s.value for s in MemoryScope)
            raise ScopeError(f"Invalid scope '{scope}'. Must be one of: {valid}") from None

        if scope in OWNED_SCOPES:
            if not owner_id:
                raise ScopeError(f"Scope '{scope.value}' requires a scope owner id")
        elif owner_id:
            raise ScopeError("Scope 'global' does not take an owner id")

        return cls(scope=scope, owner_id=owner_id or None)

    @classmethod
    def personal(cls, user_id: str) -> "ScopeKey":
        return cls.of(MemoryScope.PERSONAL, user_id)

    @classmethod
    def team(cls, team_id: str) -> "ScopeKey":
        return cls.of(MemoryScope.TEAM, team_id)

    @classmethod
    def project(cls, project_id: str) -> "ScopeKey":
        """Project knowledge lives in the team scope keyed by the project id."""
        return cls.of(MemoryScope.TEAM, project_id)

    @classmethod
    def global_(cls) -> "ScopeKey":
        return cls(scope=MemoryScope.GLOBAL)

    def matches(self, scope: str, owner_id: Optional[str]) -> bool:
        """True if a stored (scope, owner) pair belongs to this key."""
        return scope == self.scope.value and (owner_id or None) == self.owner_id

    def filter(self, model):
        """SQLAlchemy WHERE conditions restricting `model` to this key."""
        conditions = [model.scope == self.scope.value]
        if self.owner_id is None:
            conditions.append(model.scope_owner_id.is_(None))
        else:
            conditions.append(model.scope_owner_id == self.owner_id)
        return conditions

    def __str__(self) -> str:
        return f"{self.scope.value}:{self.owner_id}" if self.owner_id else self.scope.value
