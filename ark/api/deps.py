from fastapi import Depends
from sqlalchemy.orm import Session

from ark.db import SessionLocal
from ark.services.deployment_registry import DeploymentRegistry
from ark.services.job_runner import JobRunner, build_job_runner
from ark.services.mesh_directory import MeshDirectory, build_mesh_directory


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_job_runner() -> JobRunner:
    return build_job_runner()


def get_mesh_directory() -> MeshDirectory:
    return build_mesh_directory()


def get_registry(
    db: Session = Depends(get_db),
    job_runner: JobRunner = Depends(get_job_runner),
    mesh: MeshDirectory = Depends(get_mesh_directory),
) -> DeploymentRegistry:
    return DeploymentRegistry(db, job_runner, mesh)
