"""Client endpoints.

Reads are open to foremen and admins, writes are admin-only and every
access (including reads) leaves an audit row. Foremen see contact data
masked.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from api.db import get_db
from api.deps_auth import SecureAuth, require_admin, require_foreman
from api.models import Client, Project
from api.schemas_projects import ClientCreateIn, ClientOut, ClientUpdateIn
from api.utils.audit import model_to_dict, write_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clients", tags=["clients"])

# Projects in these states keep their client alive
BLOCKING_PROJECT_STATUSES = ("active", "planning")

MASKED_EMAIL = "***@***"
MASKED_PHONE = "+7***"
MASKED_ADDRESS = "Адрес скрыт для безопасности"
MASKED_NOTES = "Заметки скрыты для безопасности"


def get_client_or_404(db: Session, client_id: int) -> Client:
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Client not found"
        )
    return client


def client_view(client: Client, auth: SecureAuth) -> ClientOut:
    """Full record for admins, masked contact details for everyone else."""
    out = ClientOut.model_validate(client)
    if auth.role_set.is_admin:
        return out
    return out.model_copy(update={
        "email": MASKED_EMAIL if client.email else None,
        "phone": MASKED_PHONE if client.phone else None,
        "address": MASKED_ADDRESS,
        "notes": MASKED_NOTES,
    })


@router.get("", response_model=list[ClientOut])
async def list_clients(
    status_filter: Optional[str] = Query(None, alias="status"),
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    query = db.query(Client)
    if status_filter:
        query = query.filter(Client.status == status_filter)
    clients = query.order_by(Client.created_at.desc(), Client.id.desc()).all()

    write_audit(db, "CLIENT_VIEW_LIST", auth.user_id, "clients")
    db.commit()
    return [client_view(c, auth) for c in clients]


@router.post("", response_model=ClientOut, status_code=status.HTTP_201_CREATED)
async def create_client(
    data: ClientCreateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    client = Client(**data.model_dump())
    db.add(client)
    db.flush()
    write_audit(db, "CLIENT_CREATE", auth.user_id, "clients", client.id, new_values=model_to_dict(client))
    db.commit()
    db.refresh(client)
    return client


@router.get("/{client_id}", response_model=ClientOut)
async def get_client(
    client_id: int,
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    client = get_client_or_404(db, client_id)
    write_audit(db, "CLIENT_VIEW", auth.user_id, "clients", client.id)
    db.commit()
    return client_view(client, auth)


@router.put("/{client_id}", response_model=ClientOut)
async def update_client(
    client_id: int,
    data: ClientUpdateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    client = get_client_or_404(db, client_id)
    old_values = model_to_dict(client)

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(client, field, value)

    write_audit(db, "CLIENT_UPDATE", auth.user_id, "clients", client.id,
                old_values=old_values, new_values=model_to_dict(client))
    db.commit()
    db.refresh(client)
    return client


@router.delete("/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_client(
    client_id: int,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Delete a client; blocked while it owns active or planned projects."""
    client = get_client_or_404(db, client_id)

    blocking = db.query(Project).filter(
        Project.client_id == client_id,
        Project.status.in_(BLOCKING_PROJECT_STATUSES)
    ).count()
    if blocking:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot delete client '{client.name}': {blocking} active project(s). Complete them first."
        )

    # Finished projects outlive the client
    db.query(Project).filter(Project.client_id == client_id).update(
        {Project.client_id: None}, synchronize_session=False
    )
    snapshot = model_to_dict(client)
    db.delete(client)
    write_audit(db, "CLIENT_DELETE", auth.user_id, "clients", client_id, old_values=snapshot)
    db.commit()
    logger.info(f"Client {client_id} deleted by user_id={auth.user_id}")
    return None
