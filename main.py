# main.py
import os

from config.logging_config import configure_logging

configure_logging()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from middleware.error_handlers import register_error_handlers
from middleware.rate_limit import limiter
from middleware.request_logging import RequestLoggingMiddleware
from routers.admin_audit_routes import router as admin_audit_router
from routers.admin_feature_flag_routes import router as admin_flags_router
from routers.admin_feature_flag_routes import users_router as admin_users_router
from routers.admin_onboarding_routes import router as admin_onboarding_router
from routers.admin_override_routes import router as admin_overrides_router
from routers.billing_routes import router as billing_router
from routers.feature_flag_routes import router as feature_flag_router
from routers.google_routes import gmail_router
from routers.google_routes import router as google_router
from routers.meeting_routes import router as meeting_router
from routers.onboarding_routes import router as onboarding_router
from routers.realtime_routes import router as realtime_router
from routers.user_routes import router as user_router

app = FastAPI(title="Cultivate HQ API")

origins = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if o.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.state.limiter = limiter
register_error_handlers(app)

# Include routers
app.include_router(admin_flags_router, prefix="/api/admin/feature-flags")
app.include_router(admin_overrides_router, prefix="/api/admin/user-feature-overrides")
app.include_router(admin_users_router, prefix="/api/admin/users")
app.include_router(admin_audit_router, prefix="/api/admin/audit-log")
app.include_router(admin_onboarding_router, prefix="/api/admin/onboarding")
app.include_router(feature_flag_router, prefix="/api/feature-flags")
app.include_router(onboarding_router, prefix="/api/onboarding")
app.include_router(user_router, prefix="/api/user")
app.include_router(gmail_router, prefix="/api/gmail")
app.include_router(google_router, prefix="/api/google")
app.include_router(meeting_router, prefix="/api/meetings")
app.include_router(billing_router, prefix="/api/stripe")
app.include_router(realtime_router, prefix="/api/realtime")


@app.get("/health")
def health():
    return {"status": "ok"}


# db startup
from database import Base, engine
import models  # this triggers models/__init__.py which imports all tables

Base.metadata.create_all(bind=engine)
