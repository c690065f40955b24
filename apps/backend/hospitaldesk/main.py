from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import OperationalError
from .config import settings
from .api.routes_health import router as health_router
from .api.routes_hospitals import router as hospitals_router
from .api.routes_dashboard import router as dashboard_router
from .api.routes_dashboard_ws import router as dashboard_ws_router
from .models import create_all
from .services.dashboard import sessions
from .services.store_client import dispose_store

# Create FastAPI app
app = FastAPI(
    title="Hospital Prospects Admin API",
    version="1.0.0",
    description="Admin backend for hospital outreach prospects: live table view, optimistic edits, CSV import/export."
)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(health_router)
app.include_router(hospitals_router)
app.include_router(dashboard_router)
app.include_router(dashboard_ws_router)

# Database setup on startup
@app.on_event("startup")
def startup():
    print("🚀 Starting up Hospital Prospects Admin API...")
    print(f"🌐 Environment: {settings.ENV}")
    if not settings.DATABASE_URL:
        print("⚠️  DATABASE_URL not set, store calls will fail until it is configured")
        return
    if settings.CREATE_TABLES_ON_STARTUP:
        # Auto-create tables if they don't exist
        try:
            create_all()
        except OperationalError as e:
            raise RuntimeError("❌ Database connection failed. Check DATABASE_URL and credentials.") from e

@app.on_event("shutdown")
async def shutdown():
    await sessions.close_all()
    await dispose_store()
    print("👋 Hospital Prospects Admin API stopped")

# Base route
@app.get("/")
def root():
    return {
        "name": "Hospital Prospects Admin API",
        "env": settings.ENV,
        "status": "running",
        "docs_url": "/docs"
    }
