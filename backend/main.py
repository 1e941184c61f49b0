from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

# .env must be loaded before settings are read
from dotenv import load_dotenv
load_dotenv('.env')

from config import get_settings, validate_required_settings
from database import create_tables
from exceptions import TugasError, UpstreamError
from logging_config import setup_logging
from middleware import RequestLoggingMiddleware
from routes import tasks_router, chat_router, students_router

setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()
validate_required_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting service", title=settings.api_title, version=settings.api_version,
                chat_model=settings.chat_model)
    try:
        await create_tables()
    except Exception as e:
        logger.error("Could not prepare database", database_url=settings.database_url, error=str(e))
        raise

    yield
    logger.info("Stopping service", title=settings.api_title)


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.exception_handler(TugasError)
async def domain_exception_handler(request: Request, exc: TugasError):
    """Translate domain errors into their HTTP status"""
    content = {"detail": exc.message, "error": exc.kind}
    # Upstream diagnostics only leave the service in debug mode
    if exc.detail and (settings.debug or not isinstance(exc, UpstreamError)):
        content["debug"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception", error_type=type(exc).__name__, method=request.method,
                 path=request.url.path, error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc) if settings.debug else "Internal server error"},
    )


app.include_router(tasks_router, prefix="/api/v1/tasks", tags=["tasks"])
app.include_router(chat_router, prefix="/api/v1/chat", tags=["chat"])
app.include_router(students_router, prefix="/api/v1/students", tags=["students"])


@app.get("/")
async def root():
    return {
        "name": settings.api_title,
        "version": settings.api_version,
        "docs": "/docs",
        "endpoints": ["/api/v1/tasks", "/api/v1/chat", "/api/v1/students"],
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": settings.api_version}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=settings.debug)
