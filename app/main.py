from contextlib import asynccontextmanager
from dotenv import load_dotenv
import logging
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.routers.routers import api_router
from app.core.config import settings
from app.core.database import engine, get_db, init_database
from app.core.logging_config import configure_logging
from app.middleware import RequestIDMiddleware


# Load environment variables
load_dotenv()

# Configure logging with request_id support
configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create the schema on startup and release pooled connections on shutdown.

    A startup failure is logged and re-raised so the process exits.
    """
    logger.info(f"Starting {settings.PROJECT_NAME} {settings.VERSION}...")

    try:
        await init_database()
        logger.info(
            f"Datasource connection tests: timeout={settings.DATASOURCE_TEST_TIMEOUT_SECONDS}s, "
            f"custom API look-back={settings.DATASOURCE_TEST_LOOKBACK_HOURS}h, "
            f"mask secrets in responses={settings.DATASOURCE_MASK_SECRETS_IN_RESPONSES}"
        )
        yield
    except Exception:
        logger.exception("Failed to start services")
        raise
    finally:
        await engine.dispose()
        logger.info(f"{settings.PROJECT_NAME} stopped")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
    openapi_url="/openapi.json" if settings.is_local else None,
)

# Added first so request_id is set before CORS handling logs anything
app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_V1_PREFIX)


async def check_database(session: AsyncSession) -> dict:
    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy"}


@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    database = await check_database(db)

    body = {"api": {"status": "healthy"}, "database": database}
    status_code = 200 if database["status"] == "healthy" else 503
    return JSONResponse(status_code=status_code, content=body)
