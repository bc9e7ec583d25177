"""ModelHub - REST API"""

from fastapi import Depends, FastAPI, Request
from starlette.responses import JSONResponse

from .config import get_settings
from .controllers import elements, organizations, projects, users
from .dependencies import authenticate
from .errors import ModelHubError, PermissionDenied, ResourceNotFound
from .hierarchy import ResourceRef, element_ref, org_ref, project_ref
from .logging_config import get_logger
from .permissions import get_permission_engine
from .schemas import (
    ElementCreate, ElementUpdate, OrgCreate, OrgUpdate, ProjectCreate, ProjectUpdate,
    RoleUpdate, UserCreate, UserUpdate,
)
from .user_context import Principal

logger = get_logger(__name__)

NOT_FOUND_BODY = {"error": True, "code": ResourceNotFound.code, "message": "Resource not found"}


app = FastAPI(title="ModelHub API", version="1.0.0")


@app.exception_handler(ModelHubError)
async def modelhub_error_handler(request: Request, exc: ModelHubError):
    """Map domain errors to status codes. Unreadable resources look missing."""
    if isinstance(exc, ResourceNotFound) or (
        isinstance(exc, PermissionDenied) and not exc.can_read
    ):
        return JSONResponse(status_code=404, content=NOT_FOUND_BODY)
    if exc.status_code >= 500:
        logger.error("Request failed: %s %s: %s: %s", request.method, request.url.path,
                     type(exc).__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Request logging middleware; registered on the served app by main.create_app()
async def log_requests(request: Request, call_next):
    logger.debug("Request", extra={
        "method": request.method,
        "path": request.url.path,
    })
    response = await call_next(request)
    logger.debug("Response", extra={
        "method": request.method,
        "path": request.url.path,
        "status": response.status_code,
    })
    return response


def _delimiter() -> str:
    return get_settings().id_delimiter


# ============================================================================
# MEMBERSHIP (shared by organizations, projects and elements)
# ============================================================================

def _members(ref: ResourceRef, user: Principal) -> dict:
    role_map = get_permission_engine().effective_role_map(ref, actor=user)
    return {"resource": ref.qualified_id, "kind": ref.kind.value, "members": role_map}


def _member(ref: ResourceRef, username: str, user: Principal) -> dict:
    roles = get_permission_engine().find_member_tiers(user, ref, username)
    return {"resource": ref.qualified_id, "username": username, "roles": roles}


def _set_member(ref: ResourceRef, username: str, role: str, user: Principal) -> dict:
    logger.info("Set role", extra={"user": user.username, "target": username,
                                   "resource": ref.qualified_id, "role": role})
    store = get_permission_engine().set_tier(user, ref, username, role)
    return {"resource": ref.qualified_id, "kind": ref.kind.value, "members": store.role_map()}


def _remove_member(ref: ResourceRef, username: str, user: Principal) -> dict:
    logger.info("Remove member", extra={"user": user.username, "target": username,
                                        "resource": ref.qualified_id})
    store = get_permission_engine().remove_member(user, ref, username)
    return {"resource": ref.qualified_id, "kind": ref.kind.value, "members": store.role_map()}


# ============================================================================
# USERS
# ============================================================================

@app.get("/api/me")
def get_me(user: Principal = Depends(authenticate)):
    """Return the authenticated user's profile."""
    return users.get_user(user, user.username)


@app.get("/api/users")
def list_users_endpoint(user: Principal = Depends(authenticate)):
    return users.list_users(user)


@app.post("/api/users", status_code=201)
def create_user_endpoint(body: UserCreate, user: Principal = Depends(authenticate)):
    logger.info("Create user", extra={"user": user.username, "username": body.username})
    return users.create_user(user, **body.model_dump())


@app.get("/api/users/{username}")
def get_user_endpoint(username: str, user: Principal = Depends(authenticate)):
    return users.get_user(user, username)


@app.patch("/api/users/{username}")
def update_user_endpoint(username: str, body: UserUpdate, user: Principal = Depends(authenticate)):
    return users.update_user(user, username, **body.model_dump(exclude_unset=True))


@app.delete("/api/users/{username}")
def delete_user_endpoint(username: str, user: Principal = Depends(authenticate)):
    logger.info("Delete user", extra={"user": user.username, "username": username})
    return users.delete_user(user, username)


# ============================================================================
# ORGANIZATIONS
# ============================================================================

@app.get("/api/orgs")
def list_orgs_endpoint(user: Principal = Depends(authenticate)):
    return organizations.find_orgs(user)


@app.post("/api/orgs", status_code=201)
def create_org_endpoint(body: OrgCreate, user: Principal = Depends(authenticate)):
    logger.info("Create org", extra={"user": user.username, "org": body.id})
    return organizations.create_org(user, body.id, body.name, body.custom)


@app.get("/api/orgs/{org}")
def get_org_endpoint(org: str, user: Principal = Depends(authenticate)):
    return organizations.find_org(user, org)


@app.patch("/api/orgs/{org}")
def update_org_endpoint(org: str, body: OrgUpdate, user: Principal = Depends(authenticate)):
    return organizations.update_org(user, org, **body.model_dump(exclude_unset=True))


@app.delete("/api/orgs/{org}")
def delete_org_endpoint(org: str, user: Principal = Depends(authenticate)):
    logger.info("Delete org", extra={"user": user.username, "org": org})
    return organizations.delete_org(user, org)


@app.get("/api/orgs/{org}/members")
def list_org_members(org: str, user: Principal = Depends(authenticate)):
    return _members(org_ref(org, _delimiter()), user)


@app.get("/api/orgs/{org}/members/{username}")
def get_org_member(org: str, username: str, user: Principal = Depends(authenticate)):
    return _member(org_ref(org, _delimiter()), username, user)


@app.post("/api/orgs/{org}/members/{username}")
def set_org_member(org: str, username: str, body: RoleUpdate,
                   user: Principal = Depends(authenticate)):
    return _set_member(org_ref(org, _delimiter()), username, body.role, user)


@app.delete("/api/orgs/{org}/members/{username}")
def remove_org_member(org: str, username: str, user: Principal = Depends(authenticate)):
    return _remove_member(org_ref(org, _delimiter()), username, user)


# ============================================================================
# PROJECTS
# ============================================================================

@app.get("/api/projects")
def list_all_projects_endpoint(user: Principal = Depends(authenticate)):
    """Readable projects across every organization."""
    return projects.find_all_projects(user)


@app.get("/api/orgs/{org}/projects")
def list_projects_endpoint(org: str, user: Principal = Depends(authenticate)):
    return projects.find_projects(user, org)


@app.post("/api/orgs/{org}/projects", status_code=201)
def create_project_endpoint(org: str, body: ProjectCreate,
                            user: Principal = Depends(authenticate)):
    logger.info("Create project", extra={"user": user.username, "org": org, "project": body.id})
    return projects.create_project(user, org, body.id, body.name, body.visibility, body.custom)


@app.get("/api/orgs/{org}/projects/{project}")
def get_project_endpoint(org: str, project: str, user: Principal = Depends(authenticate)):
    return projects.find_project(user, org, project)


@app.patch("/api/orgs/{org}/projects/{project}")
def update_project_endpoint(org: str, project: str, body: ProjectUpdate,
                            user: Principal = Depends(authenticate)):
    return projects.update_project(user, org, project, **body.model_dump(exclude_unset=True))


@app.delete("/api/orgs/{org}/projects/{project}")
def delete_project_endpoint(org: str, project: str, user: Principal = Depends(authenticate)):
    logger.info("Delete project", extra={"user": user.username, "org": org, "project": project})
    return projects.delete_project(user, org, project)


@app.get("/api/orgs/{org}/projects/{project}/members")
def list_project_members(org: str, project: str, user: Principal = Depends(authenticate)):
    return projects.find_project_members(user, org, project)


@app.get("/api/orgs/{org}/projects/{project}/members/{username}")
def get_project_member(org: str, project: str, username: str,
                       user: Principal = Depends(authenticate)):
    return projects.find_project_member(user, org, project, username)


@app.post("/api/orgs/{org}/projects/{project}/members/{username}")
def set_project_member(org: str, project: str, username: str, body: RoleUpdate,
                       user: Principal = Depends(authenticate)):
    return _set_member(project_ref(org, project, _delimiter()), username, body.role, user)


@app.delete("/api/orgs/{org}/projects/{project}/members/{username}")
def remove_project_member(org: str, project: str, username: str,
                          user: Principal = Depends(authenticate)):
    return _remove_member(project_ref(org, project, _delimiter()), username, user)


# ============================================================================
# ELEMENTS
# ============================================================================

@app.get("/api/orgs/{org}/projects/{project}/elements")
def list_elements_endpoint(org: str, project: str, user: Principal = Depends(authenticate)):
    return elements.find_elements(user, org, project)


@app.post("/api/orgs/{org}/projects/{project}/elements", status_code=201)
def create_element_endpoint(org: str, project: str, body: ElementCreate,
                            user: Principal = Depends(authenticate)):
    return elements.create_element(
        user, org, project, body.id, body.name, element_type=body.type,
        documentation=body.documentation, custom=body.custom,
    )


@app.get("/api/orgs/{org}/projects/{project}/elements/{element}")
def get_element_endpoint(org: str, project: str, element: str,
                         user: Principal = Depends(authenticate)):
    return elements.find_element(user, org, project, element)


@app.patch("/api/orgs/{org}/projects/{project}/elements/{element}")
def update_element_endpoint(org: str, project: str, element: str, body: ElementUpdate,
                            user: Principal = Depends(authenticate)):
    return elements.update_element(user, org, project, element,
                                   **body.model_dump(exclude_unset=True))


@app.delete("/api/orgs/{org}/projects/{project}/elements/{element}")
def delete_element_endpoint(org: str, project: str, element: str,
                            user: Principal = Depends(authenticate)):
    return elements.delete_element(user, org, project, element)


@app.get("/api/orgs/{org}/projects/{project}/elements/{element}/members")
def list_element_members(org: str, project: str, element: str,
                         user: Principal = Depends(authenticate)):
    return _members(element_ref(org, project, element, _delimiter()), user)


@app.get("/api/orgs/{org}/projects/{project}/elements/{element}/members/{username}")
def get_element_member(org: str, project: str, element: str, username: str,
                       user: Principal = Depends(authenticate)):
    return _member(element_ref(org, project, element, _delimiter()), username, user)


@app.post("/api/orgs/{org}/projects/{project}/elements/{element}/members/{username}")
def set_element_member(org: str, project: str, element: str, username: str,
                       body: RoleUpdate, user: Principal = Depends(authenticate)):
    return _set_member(element_ref(org, project, element, _delimiter()), username,
                       body.role, user)


@app.delete("/api/orgs/{org}/projects/{project}/elements/{element}/members/{username}")
def remove_element_member(org: str, project: str, element: str, username: str,
                          user: Principal = Depends(authenticate)):
    return _remove_member(element_ref(org, project, element, _delimiter()), username, user)
