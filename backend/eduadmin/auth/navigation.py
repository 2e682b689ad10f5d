"""Dashboard sidebar entries, filtered by what the session can view."""

from __future__ import annotations

from dataclasses import dataclass

from eduadmin.auth.context import AuthSession
from eduadmin.auth.permissions import Action, Module


@dataclass(frozen=True)
class NavItem:
    path: str
    label: str
    module: Module | None  # None = owner-only page


NAV_ITEMS: list[NavItem] = [
    NavItem("/dashboard", "Dashboard", Module.DASHBOARD),
    NavItem("/dashboard/enquiries", "Enquiries", Module.ENQUIRIES),
    NavItem("/dashboard/contact-messages", "Contact Messages", Module.ENQUIRIES),
    NavItem("/dashboard/admissions", "Admissions", Module.ADMISSIONS),
    NavItem("/dashboard/students", "Students", Module.STUDENTS),
    NavItem("/dashboard/courses", "Courses", Module.COURSES),
    NavItem("/dashboard/fees", "Fees", Module.FEES),
    NavItem("/dashboard/batches", "Batches", Module.BATCHES),
    NavItem("/dashboard/certificates", "Certificates", Module.CERTIFICATES),
    NavItem("/dashboard/campuses", "Campuses", Module.CAMPUSES),
    NavItem("/dashboard/employees", "Employees", Module.EMPLOYEES),
    NavItem("/dashboard/users", "Users", Module.USERS),
    NavItem("/dashboard/events", "Events", Module.EVENTS),
    NavItem("/dashboard/expenses", "Expenses", Module.EXPENSES),
    NavItem("/dashboard/reports", "Reports", Module.REPORTS),
    NavItem("/dashboard/roles", "User Roles", None),
    NavItem("/dashboard/accounts", "Admin / Staff", None),
]


def visible_nav(session: AuthSession) -> list[NavItem]:
    if session.is_owner:
        return list(NAV_ITEMS)
    return [
        item for item in NAV_ITEMS
        if item.module is not None and session.can(item.module, Action.VIEW)
    ]
