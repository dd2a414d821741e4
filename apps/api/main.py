"""Thin API launcher.

This is the uvicorn entrypoint. All application logic lives in the explainer package.
Run with: uvicorn apps.api.main:app --reload

Note: The app instance is created here (not in explainer.app) to avoid import-time
side effects. Tests import create_app without a configured environment.
"""

from explainer.app import add_request_id_middleware, create_app

# Create the application instance
app = create_app()
# Add request-id middleware LAST so it runs FIRST (outermost)
add_request_id_middleware(app)

__all__ = ["app"]
