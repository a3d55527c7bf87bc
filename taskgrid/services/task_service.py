"""Task service — workspace, section and task mutations.

All user text (names, titles, descriptions, tags) is sanitized with
bleach.clean() to strip HTML tags. Every mutation logs exactly one event
through event_service. Search vectors follow automatically via the model
hooks in taskgrid.search.vector.

Functions flush but do NOT commit — the caller commits.
"""

from datetime import datetime, timezone

import bleach

from taskgrid.extensions import db
from taskgrid.models.section import Section
from taskgrid.models.task import Task
from taskgrid.models.workspace import Workspace, WorkspaceMember
from taskgrid.services import event_service

# Fields update_task() accepts
TASK_FIELDS = {
    "title", "description", "status", "priority", "assigned_to_user_id",
    "section_id", "due_date", "tags", "position",
}


def _sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return text
    return bleach.clean(text, tags=[], strip=True).strip()


def _sanitize_tags(tags):
    cleaned = []
    for tag in tags or []:
        tag = _sanitize(str(tag))
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def _require_member(ctx, workspace_id):
    if not ctx.can_read(workspace_id):
        raise ValueError(f"Workspace {workspace_id} not found.")


def _get_workspace(ctx, workspace_id):
    workspace = db.session.get(Workspace, workspace_id)
    if workspace is None or workspace.is_deleted:
        raise ValueError(f"Workspace {workspace_id} not found.")
    _require_member(ctx, workspace_id)
    return workspace


def _get_section(ctx, section_id):
    section = db.session.get(Section, section_id)
    if section is None or section.is_deleted:
        raise ValueError(f"Section {section_id} not found.")
    _require_member(ctx, section.workspace_id)
    return section


def _get_task(ctx, task_id):
    task = db.session.get(Task, task_id)
    if task is None or task.is_deleted:
        raise ValueError(f"Task {task_id} not found.")
    _require_member(ctx, task.workspace_id)
    return task


def _check_choice(name, value, allowed):
    if value not in allowed:
        raise ValueError(
            f"Invalid {name} '{value}'. Must be one of: {', '.join(allowed)}"
        )


# ─── Workspaces ─────────────────────────────────────────────────


def create_workspace(ctx, name, description=None, color=None, icon=None):
    """Create a workspace owned by the caller.

    Returns:
        (workspace, ctx) — the context is widened to include the new
        workspace so follow-up calls in the same request can use it.

    Raises:
        ValueError: If the name is empty or there is no acting user.
    """
    if ctx.user_id is None:
        raise ValueError("A user is required to create a workspace.")
    name = _sanitize(name)
    if not name:
        raise ValueError("Workspace name is required.")

    workspace = Workspace(
        name=name,
        description=_sanitize(description),
        owner_id=ctx.user_id,
        icon=icon,
    )
    if color:
        workspace.color = color
    db.session.add(workspace)
    db.session.flush()

    db.session.add(WorkspaceMember(
        user_id=ctx.user_id,
        workspace_id=workspace.id,
        role="owner",
    ))
    db.session.flush()

    ctx = ctx.with_workspace(workspace.id)
    event_service.log_workspace_created(ctx, workspace)
    return workspace, ctx


def add_member(ctx, workspace_id, user_id, role="member"):
    """Add a user to a workspace.

    Raises:
        ValueError: If the workspace is unknown, the role invalid, or the
            user is already a member.
    """
    _get_workspace(ctx, workspace_id)
    _check_choice("role", role, WorkspaceMember.ROLES)

    existing = WorkspaceMember.query.filter_by(
        workspace_id=workspace_id, user_id=user_id
    ).first()
    if existing is not None:
        raise ValueError("User is already a member of this workspace.")

    member = WorkspaceMember(
        user_id=user_id,
        workspace_id=workspace_id,
        role=role,
        invited_by_user_id=ctx.user_id,
    )
    db.session.add(member)
    db.session.flush()

    event_service.log_member_added(ctx, member, invited_by=ctx.user_id)
    return member


# ─── Sections ───────────────────────────────────────────────────


def create_section(ctx, workspace_id, name, description=None, position=None):
    _get_workspace(ctx, workspace_id)
    name = _sanitize(name)
    if not name:
        raise ValueError("Section name is required.")

    if position is None:
        position = Section.query.filter_by(workspace_id=workspace_id).count()

    section = Section(
        workspace_id=workspace_id,
        name=name,
        description=_sanitize(description),
        position=position,
    )
    db.session.add(section)
    db.session.flush()

    event_service.log_section_created(ctx, section)
    return section


def archive_section(ctx, section_id, archived=True):
    """Archive (or unarchive) a section. Its tasks drop out of search."""
    section = _get_section(ctx, section_id)
    if section.is_archived == archived:
        return section
    section.is_archived = archived
    db.session.flush()

    event_service.log_section_archived(ctx, section, archived=archived)
    return section


# ─── Tasks ──────────────────────────────────────────────────────


def create_task(
    ctx,
    section_id,
    title,
    description=None,
    priority="medium",
    assigned_to_user_id=None,
    due_date=None,
    tags=None,
):
    """Create a task in a section.

    Raises:
        ValueError: If the section is unknown/archived, the title empty or
            the priority invalid.
    """
    section = _get_section(ctx, section_id)
    if section.is_archived:
        raise ValueError("Cannot add tasks to an archived section.")
    title = _sanitize(title)
    if not title:
        raise ValueError("Task title is required.")
    _check_choice("priority", priority, Task.PRIORITIES)

    task = Task(
        section_id=section.id,
        workspace_id=section.workspace_id,
        title=title,
        description=_sanitize(description),
        priority=priority,
        assigned_to_user_id=assigned_to_user_id,
        created_by_user_id=ctx.user_id,
        due_date=due_date,
        tags=_sanitize_tags(tags),
        position=section.tasks.count(),
    )
    db.session.add(task)
    db.session.flush()

    event_service.log_task_created(ctx, task)
    return task


def update_task(ctx, task_id, **changes):
    """Apply changes to a task and log one event describing them.

    Completing a task stamps completed_at; moving it out of completed
    clears it. Moving to another section must stay in the same workspace.
    """
    unknown = set(changes) - TASK_FIELDS
    if unknown:
        raise ValueError(f"Unknown task fields: {', '.join(sorted(unknown))}")

    task = _get_task(ctx, task_id)
    old_values = task.to_dict()

    if "title" in changes:
        title = _sanitize(changes["title"])
        if not title:
            raise ValueError("Task title is required.")
        task.title = title
    if "description" in changes:
        task.description = _sanitize(changes["description"])
    if "status" in changes:
        _check_choice("status", changes["status"], Task.STATUSES)
        if changes["status"] != task.status:
            task.status = changes["status"]
            if task.status == Task.COMPLETED:
                task.completed_at = datetime.now(timezone.utc)
            else:
                task.completed_at = None
    if "priority" in changes:
        _check_choice("priority", changes["priority"], Task.PRIORITIES)
        task.priority = changes["priority"]
    if "assigned_to_user_id" in changes:
        task.assigned_to_user_id = changes["assigned_to_user_id"]
    if "section_id" in changes and changes["section_id"] != task.section_id:
        section = _get_section(ctx, changes["section_id"])
        if section.workspace_id != task.workspace_id:
            raise ValueError("Tasks can only move between sections of one workspace.")
        task.section_id = section.id
    if "due_date" in changes:
        task.due_date = changes["due_date"]
    if "tags" in changes:
        task.tags = _sanitize_tags(changes["tags"])
    if "position" in changes:
        task.position = int(changes["position"])

    db.session.flush()

    event_service.log_task_updated(
        ctx, task.id, task.workspace_id, old_values, task.to_dict()
    )
    return task


def delete_task(ctx, task_id):
    """Soft-delete a task."""
    task = _get_task(ctx, task_id)
    snapshot = task.to_dict()
    task.is_deleted = True
    db.session.flush()

    event_service.log_task_deleted(ctx, snapshot)
    return task
