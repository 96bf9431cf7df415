"""Project endpoints: projects, their tasks and worker assignments."""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from api.db import get_db
from api.deps_auth import SecureAuth, require_admin, require_foreman
from api.endpoints_workers import get_worker_or_404
from api.models import Attendance, Client, Project, ProjectExpense, ProjectTask, WorkerAssignment
from api.schemas_projects import (
    AssignmentOut,
    AssignWorkersIn,
    ProjectCreateIn,
    ProjectOut,
    ProjectUpdateIn,
    TaskCreateIn,
    TaskOut,
    TaskUpdateIn,
)
from api.utils.audit import model_to_dict, write_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])


def get_project_or_404(db: Session, project_id: int) -> Project:
    project = db.query(Project).options(joinedload(Project.client)).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Project not found"
        )
    return project


def _project_out(project: Project) -> ProjectOut:
    out = ProjectOut.model_validate(project)
    out.client_name = project.client.name if project.client else None
    return out


def _check_client(db: Session, client_id: Optional[int]) -> None:
    if client_id is not None and not db.query(Client).filter(Client.id == client_id).first():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Client not found"
        )


@router.get("", response_model=list[ProjectOut])
async def list_projects(
    status_filter: Optional[str] = Query(None, alias="status"),
    client_id: Optional[int] = Query(None),
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    query = db.query(Project).options(joinedload(Project.client))
    if status_filter:
        query = query.filter(Project.status == status_filter)
    if client_id is not None:
        query = query.filter(Project.client_id == client_id)
    return [_project_out(p) for p in query.order_by(Project.created_at.desc(), Project.id.desc()).all()]


@router.post("", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
async def create_project(
    data: ProjectCreateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    _check_client(db, data.client_id)
    project = Project(**data.model_dump())
    db.add(project)
    db.flush()
    write_audit(db, "PROJECT_CREATE", auth.user_id, "projects", project.id, new_values=model_to_dict(project))
    db.commit()
    return _project_out(get_project_or_404(db, project.id))


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(
    project_id: int,
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    return _project_out(get_project_or_404(db, project_id))


@router.put("/{project_id}", response_model=ProjectOut)
async def update_project(
    project_id: int,
    data: ProjectUpdateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    project = get_project_or_404(db, project_id)
    changes = data.model_dump(exclude_unset=True)
    if "client_id" in changes:
        _check_client(db, changes["client_id"])

    old_values = model_to_dict(project)
    for field, value in changes.items():
        setattr(project, field, value)

    start, end = project.start_date, project.end_date
    if start and end and end < start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_date must not be before start_date"
        )

    write_audit(db, "PROJECT_UPDATE", auth.user_id, "projects", project.id,
                old_values=old_values, new_values=model_to_dict(project))
    db.commit()
    return _project_out(get_project_or_404(db, project_id))


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: int,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Delete project with its tasks, expenses and (ended) assignments; blocked by active assignments."""
    project = get_project_or_404(db, project_id)

    active_assignments = db.query(WorkerAssignment).filter(
        WorkerAssignment.project_id == project_id,
        WorkerAssignment.end_date.is_(None)
    ).count()
    if active_assignments:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=(
                f"Cannot delete project '{project.name}': {active_assignments} active worker "
                f"assignment(s). End the assignments first."
            )
        )

    snapshot = model_to_dict(project)
    try:
        for model in (ProjectTask, ProjectExpense, WorkerAssignment):
            db.query(model).filter(model.project_id == project_id).delete(synchronize_session=False)
        db.query(Attendance).filter(Attendance.project_id == project_id).update(
            {Attendance.project_id: None}, synchronize_session=False
        )
        db.delete(project)
        write_audit(db, "PROJECT_DELETE", auth.user_id, "projects", project_id, old_values=snapshot)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Project {project_id} delete rolled back: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Project deletion failed; no changes were applied"
        )
    return None


# --- Tasks ---

@router.get("/{project_id}/tasks", response_model=list[TaskOut])
async def list_tasks(
    project_id: int,
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    get_project_or_404(db, project_id)
    return db.query(ProjectTask).filter(ProjectTask.project_id == project_id).order_by(ProjectTask.id).all()


@router.post("/{project_id}/tasks", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
async def create_task(
    project_id: int,
    data: TaskCreateIn,
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    get_project_or_404(db, project_id)
    if data.assigned_worker_id is not None:
        get_worker_or_404(db, data.assigned_worker_id)

    task = ProjectTask(project_id=project_id, **data.model_dump())
    if task.status == "completed":
        task.completed_date = date.today()
    db.add(task)
    db.flush()
    write_audit(db, "TASK_CREATE", auth.user_id, "project_tasks", task.id, new_values=model_to_dict(task))
    db.commit()
    db.refresh(task)
    return task


@router.put("/{project_id}/tasks/{task_id}", response_model=TaskOut)
async def update_task(
    project_id: int,
    task_id: int,
    data: TaskUpdateIn,
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    task = db.query(ProjectTask).filter(
        ProjectTask.id == task_id,
        ProjectTask.project_id == project_id
    ).first()
    if not task:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Task not found"
        )

    changes = data.model_dump(exclude_unset=True)
    if changes.get("assigned_worker_id") is not None:
        get_worker_or_404(db, changes["assigned_worker_id"])

    old_values = model_to_dict(task)
    for field, value in changes.items():
        setattr(task, field, value)
    if changes.get("status") == "completed" and task.completed_date is None:
        task.completed_date = date.today()

    write_audit(db, "TASK_UPDATE", auth.user_id, "project_tasks", task.id,
                old_values=old_values, new_values=model_to_dict(task))
    db.commit()
    db.refresh(task)
    return task


# --- Assignments ---

@router.get("/{project_id}/assignments", response_model=list[AssignmentOut])
async def list_assignments(
    project_id: int,
    active_only: bool = Query(False),
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    get_project_or_404(db, project_id)
    query = db.query(WorkerAssignment).filter(WorkerAssignment.project_id == project_id)
    if active_only:
        query = query.filter(WorkerAssignment.end_date.is_(None))
    return query.order_by(WorkerAssignment.id).all()


@router.post("/{project_id}/assignments", response_model=list[AssignmentOut], status_code=status.HTTP_201_CREATED)
async def assign_workers(
    project_id: int,
    data: AssignWorkersIn,
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    """Assign workers to the project; workers already actively assigned are skipped."""
    get_project_or_404(db, project_id)
    if data.foreman_id is not None:
        get_worker_or_404(db, data.foreman_id)

    created = []
    for worker_id in dict.fromkeys(data.worker_ids):
        get_worker_or_404(db, worker_id)
        already = db.query(WorkerAssignment).filter(
            WorkerAssignment.project_id == project_id,
            WorkerAssignment.worker_id == worker_id,
            WorkerAssignment.end_date.is_(None)
        ).first()
        if already:
            continue
        assignment = WorkerAssignment(
            worker_id=worker_id,
            project_id=project_id,
            foreman_id=data.foreman_id,
            role=data.role,
            start_date=data.start_date or date.today(),
        )
        db.add(assignment)
        created.append(assignment)

    db.flush()
    for assignment in created:
        write_audit(db, "ASSIGNMENT_CREATE", auth.user_id, "worker_assignments", assignment.id,
                    new_values=model_to_dict(assignment))
    db.commit()
    for assignment in created:
        db.refresh(assignment)
    return created


@router.post("/{project_id}/assignments/{assignment_id}/end", response_model=AssignmentOut)
async def end_assignment(
    project_id: int,
    assignment_id: int,
    end_date: Optional[date] = Query(None),
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    assignment = db.query(WorkerAssignment).filter(
        WorkerAssignment.id == assignment_id,
        WorkerAssignment.project_id == project_id
    ).first()
    if not assignment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assignment not found"
        )
    if assignment.end_date is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Assignment already ended"
        )

    assignment.end_date = end_date or date.today()
    write_audit(db, "ASSIGNMENT_END", auth.user_id, "worker_assignments", assignment.id,
                new_values=model_to_dict(assignment))
    db.commit()
    db.refresh(assignment)
    return assignment
