from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.logging import configure_logging
from .api.routes_research import router as research_router
from .api.routes_news import router as news_router
from .api.routes_admin import router as admin_router
from .api.routes_feedback import router as feedback_router

configure_logging()
settings = get_settings()

app = FastAPI(title="Company Intelligence API")


def _split_origins(value: str) -> list[str]:
    return [o.strip() for o in value.split(",") if o.strip()]


# CORS:
# - In prod, FRONTEND_ORIGIN is required and we never fall back to "*".
# - In non-prod, "*" is used when CORS_ALLOW_ALL_ORIGINS is set or no origin is configured.
if settings.ENV.lower() == "prod":
    if not settings.FRONTEND_ORIGIN:
        raise RuntimeError(
            "FRONTEND_ORIGIN must be set in production, refusing to start with wide-open CORS."
        )
    origins = _split_origins(settings.FRONTEND_ORIGIN)
elif settings.CORS_ALLOW_ALL_ORIGINS or not settings.FRONTEND_ORIGIN:
    origins = ["*"]
else:
    origins = _split_origins(settings.FRONTEND_ORIGIN)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(research_router, prefix=settings.API_PREFIX)
app.include_router(news_router, prefix=settings.API_PREFIX)
app.include_router(admin_router, prefix=settings.API_PREFIX)
app.include_router(feedback_router, prefix=settings.API_PREFIX)


@app.get("/health")
def health():
    return {"status": "ok"}
