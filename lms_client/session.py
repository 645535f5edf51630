from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Session:
    """Per-user client state: bearer token, signed-in user and the selected academic year."""

    token: Optional[str] = None
    user: dict[str, Any] = field(default_factory=dict)
    academic_year: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    @property
    def role(self) -> Optional[str]:
        return self.user.get("role")

    def sign_in(self, token: str, user: Optional[dict[str, Any]] = None) -> None:
        self.token = token
        self.user = dict(user or {})

    def clear(self) -> None:
        self.token = None
        self.user = {}
        self.academic_year = None
