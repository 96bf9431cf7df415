"""Skill taxonomy, worker skills and certifications."""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from api.db import get_db
from api.deps_auth import SecureAuth, require_admin, require_foreman
from api.endpoints_workers import get_worker_or_404
from api.models import Certification, Skill, WorkerSkill
from api.schemas_skills import (
    CertificationIn,
    CertificationOut,
    SkillCreateIn,
    SkillOut,
    WorkerSkillIn,
    WorkerSkillOut,
)
from api.utils.audit import model_to_dict, write_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/skills", tags=["skills"])


@router.get("", response_model=list[SkillOut])
async def list_skills(
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    return db.query(Skill).order_by(Skill.category, Skill.name).all()


@router.post("", response_model=SkillOut, status_code=status.HTTP_201_CREATED)
async def create_skill(
    data: SkillCreateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    if db.query(Skill).filter(Skill.name == data.name).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Skill '{data.name}' already exists"
        )
    skill = Skill(**data.model_dump())
    db.add(skill)
    db.flush()
    write_audit(db, "SKILL_CREATE", auth.user_id, "skills", skill.id, new_values=model_to_dict(skill))
    db.commit()
    db.refresh(skill)
    return skill


@router.get("/workers/{worker_id}", response_model=list[WorkerSkillOut])
async def list_worker_skills(
    worker_id: int,
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    get_worker_or_404(db, worker_id)
    return db.query(WorkerSkill).filter(WorkerSkill.worker_id == worker_id).order_by(WorkerSkill.id).all()


@router.put("/workers/{worker_id}", response_model=WorkerSkillOut)
async def set_worker_skill(
    worker_id: int,
    data: WorkerSkillIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Create or update the worker's level for one skill (one row per worker+skill)."""
    get_worker_or_404(db, worker_id)
    if not db.query(Skill).filter(Skill.id == data.skill_id).first():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Skill not found"
        )

    row = db.query(WorkerSkill).filter(
        WorkerSkill.worker_id == worker_id,
        WorkerSkill.skill_id == data.skill_id
    ).first()
    old_values = model_to_dict(row) if row else None
    if row is None:
        row = WorkerSkill(worker_id=worker_id, skill_id=data.skill_id)
        db.add(row)

    for field, value in data.model_dump(exclude={"skill_id"}).items():
        setattr(row, field, value)
    db.flush()

    write_audit(db, "WORKER_SKILL_SET", auth.user_id, "worker_skills", row.id,
                old_values=old_values, new_values=model_to_dict(row))
    db.commit()
    db.refresh(row)
    return row


@router.delete("/workers/{worker_id}/{skill_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_worker_skill(
    worker_id: int,
    skill_id: int,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    row = db.query(WorkerSkill).filter(
        WorkerSkill.worker_id == worker_id,
        WorkerSkill.skill_id == skill_id
    ).first()
    if not row:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Worker skill not found"
        )
    snapshot = model_to_dict(row)
    db.delete(row)
    write_audit(db, "WORKER_SKILL_DELETE", auth.user_id, "worker_skills", snapshot["id"], old_values=snapshot)
    db.commit()
    return None


# --- Certifications ---

@router.get("/workers/{worker_id}/certifications", response_model=list[CertificationOut])
async def list_certifications(
    worker_id: int,
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    get_worker_or_404(db, worker_id)
    return (
        db.query(Certification)
        .filter(Certification.worker_id == worker_id)
        .order_by(Certification.issue_date.desc(), Certification.id.desc())
        .all()
    )


@router.post("/workers/{worker_id}/certifications", response_model=CertificationOut,
             status_code=status.HTTP_201_CREATED)
async def add_certification(
    worker_id: int,
    data: CertificationIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    get_worker_or_404(db, worker_id)
    if data.issue_date and data.expiration_date and data.expiration_date < data.issue_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="expiration_date must not be before issue_date"
        )

    cert = Certification(worker_id=worker_id, **data.model_dump())
    db.add(cert)
    db.flush()
    write_audit(db, "CERTIFICATION_CREATE", auth.user_id, "certifications", cert.id,
                new_values=model_to_dict(cert))
    db.commit()
    db.refresh(cert)
    return cert
