from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from conversly.agents import ConversationCoachAgent, NextStepsAgent
from conversly.api import conversations, events, feedback, health, sessions, webhooks
from conversly.config import ConfigValidationError, settings, validate_config
from conversly.errors import StorageError, UpstreamUnavailable
from conversly.pipelines.analysis import AnalysisPipeline
from conversly.services import ElevenLabsService, NotificationHub, OpenAIService
from conversly.storage import build_store
from conversly.utils.logger import logger

app = FastAPI(title="Conversly Backend", version="1.0.0")


def build_services(app: FastAPI) -> None:
    """Store, provider clients, hub and pipeline, shared by every request via app.state."""
    store = build_store(settings.STORAGE_BACKEND, settings.DEMO_USER_EMAIL)
    openai_service = OpenAIService()
    hub = NotificationHub()

    app.state.store = store
    app.state.hub = hub
    app.state.openai = openai_service
    app.state.elevenlabs = ElevenLabsService()
    app.state.pipeline = AnalysisPipeline(
        store=store,
        coach=ConversationCoachAgent(openai_service),
        next_steps_agent=NextStepsAgent(openai_service),
        hub=hub,
    )


@app.on_event("startup")
async def startup_event():
    logger.info("Conversly Backend Starting...")

    try:
        result = validate_config(raise_on_error=settings.ENVIRONMENT == "production")
        for warning in result.get("warnings", []):
            logger.warning(f"Config warning: {warning}")
        for error in result.get("errors", []):
            logger.error(f"Config error: {error}")
    except ConfigValidationError as e:
        logger.critical(f"FATAL: {e}")
        raise SystemExit(1)

    build_services(app)
    logger.info(f"Storage backend: {type(app.state.store).__name__}")
    logger.info("Conversly Backend Started")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Conversly Backend Shutting Down...")
    for name in ("elevenlabs", "openai"):
        client = getattr(app.state, name, None)
        if client is None:
            continue
        try:
            await client.aclose()
        except Exception as e:
            logger.error(f"Error closing {name} client: {e}")
    logger.info("Conversly Backend Shutdown Complete")


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"❌ Storage error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Storage error"})


@app.exception_handler(UpstreamUnavailable)
async def upstream_error_handler(request: Request, exc: UpstreamUnavailable):
    logger.error(f"❌ Upstream {exc.provider or 'provider'} error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": "Upstream service unavailable"})


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(sessions.router)
app.include_router(conversations.router)
app.include_router(webhooks.router)
app.include_router(events.router)
app.include_router(feedback.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"message": "Conversly API", "status": "running", "version": "1.0.0"}
