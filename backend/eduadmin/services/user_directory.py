"""Staff user records and their role assignments."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace


class StaffUserNotFoundError(LookupError):
    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


@dataclass(frozen=True)
class UserRecord:
    id: str
    name: str
    email: str
    role_id: str
    campus: str | None = None


def seed_users() -> list[UserRecord]:
    return [
        UserRecord("u-frontdesk", "Front Desk", "frontdesk@eduadmin.org", "role-frontdesk", "Front Desk"),
        UserRecord("u1", "Aarav Sharma", "aarav@example.com", "role-frontdesk", "Mumbai"),
        UserRecord("u3", "Rahul Verma", "rahul@example.com", "role-admissions", "Bengaluru"),
        UserRecord("u5", "Ankit Singh", "ankit@example.com", "role-campus-head", "Hyderabad"),
        UserRecord("u7", "Admin User", "admin@example.com", "role-admin"),
    ]


class UserDirectory:
    def __init__(self, users: list[UserRecord] | None = None):
        self._lock = threading.Lock()
        self._users: dict[str, UserRecord] = {
            u.id: u for u in (users if users is not None else seed_users())
        }

    def list_users(self) -> list[UserRecord]:
        return list(self._users.values())

    def get(self, user_id: str) -> UserRecord:
        user = self._users.get(user_id)
        if user is None:
            raise StaffUserNotFoundError(user_id)
        return user

    def search(self, q: str | None = None) -> list[UserRecord]:
        s = (q or "").strip().lower()
        if not s:
            return self.list_users()
        return [
            u for u in self._users.values()
            if s in u.name.lower() or s in u.email.lower() or s in (u.campus or "").lower()
        ]

    def assign(self, user_id: str, role_id: str) -> UserRecord:
        with self._lock:
            updated = replace(self.get(user_id), role_id=role_id)
            self._users[user_id] = updated
        return updated
