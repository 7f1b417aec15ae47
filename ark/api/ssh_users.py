from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ark.api.deps import get_db
from ark.schemas.ssh_users import SSHUserMap, SSHUserRead, SSHUserUpdate

router = APIRouter(prefix="/ssh-users", tags=["ssh-users"])


@router.get("", response_model=SSHUserMap)
def list_ssh_users(db: Session = Depends(get_db)):
    from ark.services.ssh_user_service import SSHUserService

    mapping = SSHUserService(db).list_mappings()
    return {"map": mapping, "total": len(mapping)}


@router.get("/{host}", response_model=SSHUserRead)
def get_ssh_user(host: str, db: Session = Depends(get_db)):
    from ark.services.ssh_user_service import SSHUserService

    return SSHUserService(db).get(host)


@router.put("/{host}", response_model=SSHUserRead)
def set_ssh_user(host: str, payload: SSHUserUpdate, db: Session = Depends(get_db)):
    from ark.services.ssh_user_service import SSHUserService

    row = SSHUserService(db).set(host, payload.ssh_user)
    db.commit()
    return {"host": row.host, "ssh_user": row.ssh_user}


@router.delete("/{host}")
def delete_ssh_user(host: str, db: Session = Depends(get_db)):
    from ark.services.ssh_user_service import SSHUserService

    SSHUserService(db).delete(host)
    db.commit()
    return {"host": host.strip(), "deleted": True}
