from __future__ import annotations

from fastapi import FastAPI

from photopipe.infrastructure.api.middlewares import add_default_middlewares
from photopipe.infrastructure.api.routes.processing_routes import router as processing_router
from photopipe.infrastructure.api.routes.session_routes import router as session_router
from photopipe.infrastructure.logging import configure_logging
from photopipe.infrastructure.settings import get_settings


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="PhotoPipe Backend",
        version="0.1.0",
        description="""
        ## PhotoPipe Backend API

        Declarative image edit pipeline built on NumPy and Pillow, with edit
        sessions that track history, undo/redo and save-as-new-base checkpoints.

        ### Features
        - **Edit Pipeline**: One descriptor drives a fixed sequence of geometry, colour,
          filter, composite and encode steps
        - **Live Preview Classification**: Tells clients when a CSS filter can stand in
          for the full pipeline, and how long to debounce
        - **Edit Sessions**: Linear undo/redo history (50 entries), reset, and save
          checkpoints that flatten edits into a new base image
        - **Target-Size Downloads**: Re-encode JPEG, WebP and AVIF to fit a size budget

        ### Error Responses
        - **400 Bad Request**: Rejected upload or undecodable image
        - **404 Not Found**: Session does not exist
        - **409 Conflict**: Nothing to save
        - **422 Unprocessable Entity**: Descriptor out of range
        - **500 Internal Server Error**: Encoder failure or unexpected error
        - **504 Gateway Timeout**: Pipeline exceeded its time budget
        """,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )
    add_default_middlewares(app)

    @app.get(
        "/",
        summary="API Root",
        description="Get basic information about the PhotoPipe API",
        response_description="API information including status and version",
    )
    def root():
        """Get API root information."""
        return {"status": "ok", "service": "photopipe-backend", "version": app.version}

    @app.get(
        "/health",
        summary="Health Check",
        description="Check if the API service is running and healthy",
        response_description="Health status of the API service",
    )
    def health():
        """Check API health status."""
        return {"status": "healthy"}

    app.include_router(processing_router)
    app.include_router(session_router)
    return app


app = create_app()
