"""
FastAPI application for the control API.

Services are built on first use (not at import) so importing the module
never touches configuration or disk.
"""
from typing import Optional

from fastapi import FastAPI

from journal_core.services import Services, build_services

from .routes import router


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(title="MindPebbles Control API")
    app.state.services = services

    def get_services() -> Services:
        if app.state.services is None:
            app.state.services = build_services(with_adapters=False)
        return app.state.services

    app.state.get_services = get_services
    app.include_router(router)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok", "component": "control_api"}

    return app


app = create_app()
