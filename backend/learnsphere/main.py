import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .db import init_db
from .settings import settings
from .routers import chat, courses, progress, xp

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="LearnSphere API")
app.add_middleware(
	CORSMiddleware,
	allow_origins=settings.cors_origin_list,
	allow_methods=["*"],
	allow_headers=["*"],
)
app.include_router(xp.router)
app.include_router(progress.router)
app.include_router(courses.router)
app.include_router(chat.router)


@app.get("/")
def root():
	return {"status": "ok", "gemini_configured": bool(settings.gemini_api_key)}


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	init_db()
	logger.info("LearnSphere API ready")
