import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clabtopo.config import CLAB_WORKDIR, LOG_LEVEL
from clabtopo.routers import topologies
from clabtopo.services.sessions import SessionRegistry

logging.getLogger("clabtopo").setLevel(LOG_LEVEL)


def create_app(workdir: Path | None = None) -> FastAPI:
    app = FastAPI(title="clabtopo editor API")
    app.state.sessions = SessionRegistry(workdir or CLAB_WORKDIR)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(topologies.router)

    @app.get("/api/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
