"""
Main FastAPI application entry point.
Configures the application, middleware, and includes routers.
"""
from dotenv import load_dotenv

# Load environment variables from .env file first
load_dotenv()

from contextlib import asynccontextmanager
from fastapi import FastAPI
import logging
from .auth.router import router as auth_router, users_router
from .patients.router import router as patients_router
from .configuration.router import router as configuration_router
from .documents.router import router as documents_router
from .intake.router import router as intake_router
from .database import Base, engine, get_db
from .config import settings
from .auth import models as auth_models  # noqa: F401  (register tables)
from .patients import models as patient_models  # noqa: F401
from .configuration import models as configuration_models  # noqa: F401
from .exceptions import register_exception_handlers
from .core.middleware import DashboardCORSMiddleware, setup_middlewares
from .auth.bootstrap import bootstrap_admin_if_needed
from .dependencies import get_session_registry

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

INTAKE_PATH = "/create-patient"

# Create database tables if they don't exist
Base.metadata.create_all(bind=engine)

# Bootstrap admin creation
logger.info("🚀 Starting Estimate Tracker API...")
try:
    # Create database session for bootstrap
    db = next(get_db())
    bootstrap_admin_if_needed(db)
except Exception as e:
    logger.error(f"❌ Bootstrap process failed: {str(e)}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Tear down every open board session and its feed subscription
    get_session_registry().close_all()
    logger.info("👋 Estimate Tracker API stopped")


# Create FastAPI application
app = FastAPI(
    title="Estimate Tracker API",
    description="API for tracking dental cost estimates from sending to appointment",
    version="1.0.0",
    lifespan=lifespan
)

# Register exception handlers
register_exception_handlers(app)

# Configure CORS middleware; the intake endpoint sets its own headers
origins = [
    settings.frontend_url,
]

app.add_middleware(
    DashboardCORSMiddleware,
    exempt_paths=(INTAKE_PATH,),
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup custom middleware
setup_middlewares(app)

# Include routers
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(patients_router)
app.include_router(configuration_router)
app.include_router(documents_router)
app.include_router(intake_router)

# Root endpoint
@app.get("/")
def root():
    """
    Root endpoint for API health check.

    Returns:
        dict: Simple welcome message
    """
    return {"message": "Welcome to Estimate Tracker API"}

# Health check endpoint
@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns:
        dict: Health status information
    """
    return {"status": "healthy", "database": "connected"}
