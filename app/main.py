"""
Native Build API - Main Application
FastAPI interface for the containerized build / test / native AOT pipeline.
"""
import shutil

from fastapi import FastAPI

import native_build  # type: ignore
from app.config import settings
from app.routers import pipeline
from native_build.config import settings as build_settings  # type: ignore


app = FastAPI(
    title=settings.API_TITLE,
    description="Containerized pipeline: Build → Test → Native AOT publish",
    version=settings.API_VERSION,
)


@app.get("/health")
async def health_check():
    """Orchestrator version and whether the docker CLI is on PATH.

    Builds are still attempted when docker is missing; they fail with a
    provisioning error per target.
    """
    docker = shutil.which(build_settings.DOCKER_BINARY)
    return {
        "status": "healthy" if docker else "degraded",
        "orchestrator": native_build.ORCHESTRATOR_VERSION,
        "version": native_build.__version__,
        "docker": docker,
    }


app.include_router(pipeline.router, prefix="/pipeline", tags=["pipeline"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host=settings.API_HOST, port=settings.API_PORT)
