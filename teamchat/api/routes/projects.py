# teamchat/api/routes/projects.py

from fastapi import APIRouter, Depends, HTTPException, status

from teamchat.core.errors import Conflict, InvalidRequest, NotFound
from teamchat.core.logging import get_logger
from teamchat.core.state import AppState, get_state
from teamchat.models.models import AddUsersRequest, CreateProjectRequest, ProjectOut
from teamchat.services.auth_service import get_current_user
from teamchat.services.store import ProjectRecord, UserRecord

logger = get_logger(__name__)

router = APIRouter(prefix="/projects", tags=["Projects"])

# ============================================================================
# PROJECT ENDPOINTS
# ============================================================================


def _out(project: ProjectRecord) -> dict:
    return ProjectOut(
        id=project.id,
        name=project.name,
        users=project.users,
        created_at=project.created_at,
    ).model_dump(mode="json", by_alias=True)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    request: CreateProjectRequest,
    chat: AppState = Depends(get_state),
    current_user: UserRecord = Depends(get_current_user),
):
    """
    Create a project with the caller as its first member.

    Names are trimmed and lower-cased and must be unique.

    Raises:
        HTTPException: 400 if the name is empty or already taken
    """
    try:
        project = await chat.projects.create(request.name, current_user.id)
    except (InvalidRequest, Conflict) as e:
        raise HTTPException(status_code=400, detail=e.message)

    logger.info("%s created project %s", current_user.email, project.id)
    return {"success": True, "project": _out(project), "message": "Project created successfully!"}


@router.get("")
async def list_projects(
    chat: AppState = Depends(get_state),
    current_user: UserRecord = Depends(get_current_user),
):
    """Projects the caller is a member of."""
    projects = await chat.projects.list_for_user(current_user.id)
    return {"success": True, "projects": [_out(p) for p in projects]}


@router.put("/add-users")
async def add_users(
    request: AddUsersRequest,
    chat: AppState = Depends(get_state),
    current_user: UserRecord = Depends(get_current_user),
):
    """
    Add collaborators to a project.

    Only existing members may add users, and every id must be a known user.

    Raises:
        HTTPException: 400 for unknown user ids, 403 for non-members,
                       404 if the project doesn't exist
    """
    project = await chat.projects.get(request.project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    if not await chat.projects.is_member(project.id, current_user.id):
        raise HTTPException(status_code=403, detail="Not a member of this project")
    if not request.users:
        raise HTTPException(status_code=400, detail="Project ID and users array are required")

    unknown = [uid for uid in request.users if not await chat.users.get(uid)]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown users: {', '.join(unknown)}")

    try:
        project = await chat.projects.add_users(request.project_id, request.users)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=e.message)

    logger.info("%s added %d users to project %s", current_user.email, len(request.users), project.id)
    return {
        "success": True,
        "message": f"Successfully added {len(request.users)} users to project",
        "project": _out(project),
    }


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    chat: AppState = Depends(get_state),
    current_user: UserRecord = Depends(get_current_user),
):
    """
    One project with its members resolved to users.

    Raises:
        HTTPException: 404 if not found, 403 for non-members
    """
    project = await chat.projects.get(project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    if not await chat.projects.is_member(project.id, current_user.id):
        raise HTTPException(status_code=403, detail="Not a member of this project")

    members = []
    for user_id in project.users:
        user = await chat.users.get(user_id)
        if user:
            members.append({"_id": user.id, "email": user.email})

    return {"success": True, "project": {**_out(project), "members": members}}
