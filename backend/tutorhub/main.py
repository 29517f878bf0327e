from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import logging
import sys

from .config import settings
from .database import engine, Base

# Import all models (required for SQLAlchemy to create tables)
from .models import (
    TutorialCenter, User, Student, Teacher, Parent, ParentStudent,
    PortalAccessToken, PortalAccessLog, NotificationQueue, NotificationLog,
    StudentFee, Payment, PaymentAllocation, PaymentReversal, AuditLog
)

# Import routes
from .routes import auth, portal, notifications, cron, subscription, students, staff, payments

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(settings.LOG_FILE),
    ]
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Backend API for multi-tenant tutorial center management",
    version="1.0.0",
    docs_url="/api/docs" if settings.ENABLE_API_DOCS else None,
    redoc_url="/api/redoc" if settings.ENABLE_API_DOCS else None
)

if settings.ENABLE_API_DOCS:
    logger.info("📚 API Documentation: ENABLED (ensure this is disabled in production!)")
else:
    logger.info("📚 API Documentation: DISABLED (production mode)")

# Rate limiter (Redis storage in production)
from .limiter import limiter

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
logger.info(f"⏱️ Rate limiting: {'Enabled' if settings.RATE_LIMIT_ENABLED else 'Disabled'}")

# CORS Middleware - Production Safe Configuration
ALLOWED_ORIGINS = []

if settings.APP_ENV == "development":
    ALLOWED_ORIGINS = [
        "http://localhost:3000",
        "http://localhost:3001",
        "http://localhost:5173",
    ]
    logger.info("🌐 CORS: Development mode - localhost allowed")
else:
    # Production origins - Configure these in .env file
    ALLOWED_ORIGINS = settings.origins_list
    logger.info(f"🌐 CORS: Production mode - {len(ALLOWED_ORIGINS)} origins allowed")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["*"],
    max_age=3600,
)

# Security Headers Middleware
from .middleware.security import SecurityHeadersMiddleware
app.add_middleware(SecurityHeadersMiddleware)
logger.info("🔒 Security headers middleware enabled")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors (400), with the first reason up front"""
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message, "detail": jsonable_errors(errors)}
    )


def jsonable_errors(errors) -> list:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in errors
    ]


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )


# Include routers
app.include_router(auth.router, prefix="/api")
app.include_router(portal.router, prefix="/api")  # Public token validation + staff issuance
app.include_router(notifications.router, prefix="/api")
app.include_router(cron.router, prefix="/api")  # Externally scheduled jobs
app.include_router(subscription.router, prefix="/api")
app.include_router(students.router, prefix="/api")
app.include_router(staff.router, prefix="/api")
app.include_router(payments.router, prefix="/api")


@app.on_event("startup")
async def startup_event():
    """Initialize database and create tables"""
    Base.metadata.create_all(bind=engine)
    logger.info(f"✅ {settings.APP_NAME} Started Successfully")
    logger.info(f"📍 Environment: {settings.APP_ENV}")
    logger.info("🔗 Database: Connected")
    if not settings.PORTAL_JWT_SECRET:
        logger.warning("⚠️  PORTAL_JWT_SECRET is not set - portal token issuance will fail")
    if settings.PORTAL_ALLOW_UNTRACKED_TOKENS:
        until = settings.PORTAL_UNTRACKED_TOKENS_UNTIL
        logger.warning(f"⚠️  Untracked portal tokens accepted{f' until {until}' if until else ''} (legacy compatibility mode)")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info(f"🛑 {settings.APP_NAME} Shutting Down...")


@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": "1.0.0",
        "status": "running",
        "docs": "/api/docs" if settings.ENABLE_API_DOCS else "disabled"
    }


@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.APP_ENV,
        "database": "connected"
    }
