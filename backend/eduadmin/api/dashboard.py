"""
Dashboard pages — every protected module route, behind its gate.

The module screens themselves (students, fees, batches, ...) are plain
forms-over-data and live elsewhere; these routes only decide whether the
caller may enter and report which actions the page should offer.
"""

from fastapi import APIRouter, Depends

from eduadmin.api.deps import require_auth, require_permission
from eduadmin.auth.context import AuthSession
from eduadmin.auth.permissions import Action, Module
from eduadmin.auth.roles import CoarseRole

router = APIRouter(tags=["dashboard"])

# path -> module whose `view` permission opens it
MODULE_PAGES: dict[str, Module] = {
    "/dashboard/enquiries": Module.ENQUIRIES,
    "/dashboard/contact-messages": Module.ENQUIRIES,
    "/dashboard/admissions": Module.ADMISSIONS,
    "/dashboard/students": Module.STUDENTS,
    "/dashboard/courses": Module.COURSES,
    "/dashboard/fees": Module.FEES,
    "/dashboard/batches": Module.BATCHES,
    "/dashboard/certificates": Module.CERTIFICATES,
    "/dashboard/campuses": Module.CAMPUSES,
    "/dashboard/employees": Module.EMPLOYEES,
    "/dashboard/users": Module.USERS,
    "/dashboard/events": Module.EVENTS,
    "/dashboard/expenses": Module.EXPENSES,
    "/dashboard/reports": Module.REPORTS,
}


def module_view(module: Module, session: AuthSession) -> dict:
    return {
        "module": module.value,
        "user": session.principal.email,
        "actions": {a.value: session.can(module, a) for a in Action},
    }


def _module_page(module: Module):
    async def page(session: AuthSession = Depends(require_permission(module))):
        return module_view(module, session)
    return page


for _path, _module in MODULE_PAGES.items():
    router.add_api_route(
        _path,
        _module_page(_module),
        methods=["GET"],
        name=f"page_{_path.rsplit('/', 1)[-1].replace('-', '_')}",
    )


@router.get("/dashboard")
async def dashboard_home(session: AuthSession = Depends(require_permission(Module.DASHBOARD, redirect_to=None))):
    """Landing page. Without Dashboard access it renders nothing rather than redirecting to itself."""
    return module_view(Module.DASHBOARD, session)


@router.get("/dashboard/accounts")
async def accounts(session: AuthSession = Depends(require_auth(CoarseRole.OWNER.value))):
    return {"page": "accounts", "user": session.principal.email}


@router.get("/login")
async def login_page(next: str | None = None):
    """Public sign-in page; `next` is where the user was headed."""
    return {"page": "login", "next": next}
