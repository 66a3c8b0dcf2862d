import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .autosave import AutosaveLoop
from .cleanup import purge_stale_drafts
from .db import Base, engine, get_db, ensure_schema
from .dependencies import close_clients, get_registry
from .errors import BuilderValidationError, ExternalServiceError, InvalidTransitionError
from .settings import settings
from .routers import auth
from .routers import catalog
from .routers import course_builder
from .routers import templates

logger = logging.getLogger(__name__)


def _purge_once() -> None:
	db = next(get_db())
	try:
		removed = purge_stale_drafts(db)
		if removed:
			logger.info("purged %d stale draft(s)", removed)
	finally:
		db.close()


async def _cleanup_watcher():
	# Startup already purged once; then daily
	while True:
		await asyncio.sleep(24 * 60 * 60)
		try:
			_purge_once()
		except Exception:
			logger.exception("daily draft purge failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	try:
		ensure_schema()
	except Exception:
		logger.exception("schema migration failed")
	try:
		_purge_once()
	except Exception:
		logger.exception("startup draft purge failed")
	autosaver = AutosaveLoop(get_registry)
	autosaver.start()
	cleanup_task = asyncio.create_task(_cleanup_watcher())
	app.state.autosaver = autosaver
	try:
		yield
	finally:
		cleanup_task.cancel()
		await autosaver.stop()
		# flush whatever is still open before the process goes away
		autosaver.tick()
		await close_clients()


app = FastAPI(title="Apprenticeship Course Builder API", lifespan=lifespan)
app.include_router(auth.router)
app.include_router(catalog.router)
app.include_router(course_builder.router)
app.include_router(templates.router)


@app.exception_handler(BuilderValidationError)
async def _validation_failed(request: Request, exc: BuilderValidationError):
	return JSONResponse(status_code=400, content={"detail": exc.messages})


@app.exception_handler(InvalidTransitionError)
async def _invalid_transition(request: Request, exc: InvalidTransitionError):
	return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ExternalServiceError)
async def _external_failure(request: Request, exc: ExternalServiceError):
	return JSONResponse(status_code=502, content={"detail": exc.detail, "service": exc.service})


@app.exception_handler(ValidationError)
async def _bad_payload(request: Request, exc: ValidationError):
	return JSONResponse(status_code=422, content={"detail": exc.errors(include_url=False, include_context=False, include_input=False)})


@app.get("/info")
def root():
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"platform_api": settings.platform_api_base_url,
		"autosave_interval_seconds": settings.autosave_interval_seconds,
	}
