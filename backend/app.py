from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import asyncio
import json
from contextlib import asynccontextmanager
import sys
from dotenv import load_dotenv
from sqlalchemy.orm import sessionmaker

# Load environment
load_dotenv()

# Import settings (after dotenv loads)
import settings

# Configure stdout/stderr for UTF-8 (Windows compatibility)
if sys.stdout.encoding != 'utf-8':
    sys.stdout.reconfigure(encoding='utf-8')
if sys.stderr.encoding != 'utf-8':
    sys.stderr.reconfigure(encoding='utf-8')

# Setup logging (UTF-8 encoding for Unicode support)
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - [%(name)s] - %(levelname)s - %(message)s",
    handlers=[
        logging.FileHandler(settings.LOG_FILE, encoding='utf-8'),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)
logger.info(f"Starting {settings.SERVICE_NAME} v{settings.SERVICE_VERSION}")

from db import get_engine, init_database
from api.routes import router
from api.routes_sessions import router as sessions_router
from api.routes_webhooks import router as webhooks_router
from api.routes_messages import router as messages_router
from api.routes_logs import router as logs_router
from services.errors import SessionNotConnectedError, SessionNotFoundError
from services.event_log_service import EventLogService
from services.media_handler import MediaHandler
from services.message_service import MessageService
from services.retention_service import start_retention_cleanup, stop_retention_cleanup
from services.session_manager import SessionManager
from services.webhook_config_store import WebhookConfigStore
from services.webhook_dispatcher import WebhookDispatcher
from websocket_manager import manager as ws_manager
from whatsapp_bridge.client import BridgeClient


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Webhooks and sessions come up first so restored sessions reconnect
    # while the database initializes
    dispatcher = WebhookDispatcher(WebhookConfigStore(settings.SESSION_DIR))
    protocol_client = BridgeClient(settings.BRIDGE_URL, settings.BRIDGE_API_SECRET or None)
    session_manager = SessionManager(
        protocol_client=protocol_client,
        push=ws_manager,
        dispatcher=dispatcher,
        media_handler=MediaHandler(settings.MEDIA_DIR),
    )
    message_service = MessageService(session_manager, push=ws_manager)

    app.state.webhook_dispatcher = dispatcher
    app.state.session_manager = session_manager
    app.state.message_service = message_service
    app.state.event_log = None

    restore_task = asyncio.create_task(session_manager.start_all())

    # Initialize database
    engine = get_engine(settings.DB_PATH)
    try:
        await asyncio.to_thread(init_database, engine)
        event_log = EventLogService(sessionmaker(bind=engine))

        session_manager.set_event_log(event_log)
        dispatcher.set_event_log(event_log)
        message_service.set_event_log(event_log)
        app.state.event_log = event_log
        logger.info(f"Event log ready: {settings.DB_PATH}")

        await start_retention_cleanup(event_log)
        logger.info("Retention Cleanup Service started")
    except Exception as e:
        logger.error(f"Failed to initialize event log, continuing without it: {e}", exc_info=True)

    yield

    # Shutdown
    try:
        await stop_retention_cleanup()
    except Exception as e:
        logger.error(f"Error stopping retention cleanup: {e}", exc_info=True)

    if not restore_task.done():
        restore_task.cancel()
        try:
            await restore_task
        except asyncio.CancelledError:
            pass

    try:
        await session_manager.shutdown()
    except Exception as e:
        logger.error(f"Error shutting down sessions: {e}", exc_info=True)

    await dispatcher.close()
    await protocol_client.close()
    engine.dispose()
    logger.info("Application shutdown")


def _envelope(status_code: int, message) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def register_exception_handlers(app: FastAPI):
    """Every error leaves the API as {"success": false, "message": ...}."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _envelope(exc.status_code, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
        return _envelope(422, message)

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
        return _envelope(404, str(exc))

    @app.exception_handler(SessionNotConnectedError)
    async def session_not_connected_handler(request: Request, exc: SessionNotConnectedError):
        return _envelope(409, str(exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _envelope(400, str(exc))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return _envelope(500, str(exc) or "Internal server error")


def create_app(app_lifespan=None) -> FastAPI:
    app = FastAPI(title="Wagate WhatsApp Gateway", version=settings.SERVICE_VERSION, lifespan=app_lifespan)

    cors_origins = settings.get_cors_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials="*" not in cors_origins,  # Must be False when using wildcard
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=86400,  # Cache preflight for 24 hours
    )

    register_exception_handlers(app)

    # Include routers
    app.include_router(router)
    app.include_router(sessions_router)
    app.include_router(webhooks_router)
    app.include_router(messages_router)
    app.include_router(logs_router)

    # Live event channel
    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """WebSocket endpoint for real-time session events"""
        await ws_manager.connect(websocket)
        try:
            while True:
                data = await websocket.receive_text()
                # Plain-text heartbeat
                if data.strip() == "ping":
                    await websocket.send_text("pong")
                    continue
                try:
                    message = json.loads(data)
                except ValueError:
                    logger.debug("Ignoring non-JSON WebSocket message")
                    continue
                if isinstance(message, dict):
                    await ws_manager.handle_client_message(websocket, message)
        except WebSocketDisconnect:
            ws_manager.disconnect(websocket)
        except Exception as e:
            logger.error(f"WebSocket error: {e}", exc_info=True)
            ws_manager.disconnect(websocket)

    # Make WebSocket manager available to other modules
    app.state.ws_manager = ws_manager
    return app


# Create app
app = create_app(lifespan)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.APP_HOST,
        port=settings.APP_PORT
    )
