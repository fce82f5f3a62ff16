import logging

from fastapi import FastAPI

from .db import init_db
from .settings import settings
from .routers import auth
from .routers import admin
from .routers import reading
from .routers import sessions

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Reading Trace Study API")
app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(reading.router)
app.include_router(sessions.router)


@app.get("/info")
def root():
	return {"status": "ok", "gemini_configured": bool(settings.gemini_api_key)}


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	init_db()
	logger.info("Database schema ready")
