from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles


def create_app(orchestrator) -> FastAPI:
    """Create the FastAPI application the presentation layer talks to."""

    app = FastAPI(title="Echo English Tutor", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store references for route handlers
    app.state.orchestrator = orchestrator

    from api.routes.conversation import router as conversation_router
    from api.routes.dashboard import router as dashboard_router

    app.include_router(conversation_router, prefix="/api/conversation", tags=["conversation"])
    app.include_router(dashboard_router, prefix="/api/dashboard", tags=["dashboard"])

    @app.get("/api/health")
    async def health():
        return {
            "status": "ok",
            "assistant_status": orchestrator.status.value,
            "provider": orchestrator.config_manager.config.chat.provider,
            "supported": orchestrator.is_supported,
        }

    # Built front-end, if present. Mounted last because "/" catches everything.
    static_dir = Path(__file__).resolve().parent.parent / "static"
    if static_dir.exists():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")

    return app
