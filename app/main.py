import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.dependencies import ServiceContainer, build_container
from app.api.v1.endpoints import booking, chat, monitoring
from app.core.config import settings
from services.exceptions import AppError
from services.template_engine import TemplateEngine

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    container = container or build_container(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if container.settings.ENABLE_SCHEDULER:
            await container.scheduler.start()
        logger.info(f"🚀 {container.settings.PROJECT_NAME} startup complete")

        yield

        await container.close()
        logger.info("app_shutdown")

    # ============================================================
    # FASTAPI APP SETUP
    # ============================================================
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="""
        ✈️ **Conversational Flight Booking API**

        Chat with the assistant to search, compare and book flights.

        ## Features
        * 💬 Natural language flight search with clarification
        * 📊 Flight comparison and personalised recommendations
        * 🧾 Step-by-step booking with payment
        * 🔔 Flight change monitoring and travel reminders
        """,
        version=settings.VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
    )
    app.state.container = container

    # ============================================================
    # CORS CONFIG
    # ============================================================
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ============================================================
    # ERROR HANDLING
    # ============================================================
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        message, details = exc.message, exc.details
        if exc.status_code >= 500:
            logger.error(f"[API] {request.method} {request.url.path} failed: {exc.message} {exc.details}")
            # Internal details stay in the logs
            message, details = TemplateEngine.GENERIC_ERROR, {}
        else:
            logger.info(f"[API] {request.method} {request.url.path} rejected: {exc.code}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.code,
                "message": message,
                "details": details,
            },
        )

    # ============================================================
    # API ROUTERS
    # ============================================================
    app.include_router(chat.router, prefix=settings.API_V1_STR)
    app.include_router(booking.router, prefix=settings.API_V1_STR)
    app.include_router(monitoring.router, prefix=settings.API_V1_STR)

    # ============================================================
    # ROOT ENDPOINT
    # ============================================================
    @app.get("/")
    def read_root():
        return {"message": f"Welcome to the {settings.PROJECT_NAME} API"}

    return app


app = create_app()
