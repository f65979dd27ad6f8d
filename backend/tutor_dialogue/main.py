import logging

from fastapi import FastAPI

from .db import init_db
from .settings import settings
from .routers import health
from .routers import dialogue

logging.basicConfig(
	level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)

app = FastAPI(title="Lesson Dialogue API")
app.include_router(health.router)
app.include_router(dialogue.router)

@app.get("/info")
def root():
	return {"status": "ok", "gemini_configured": bool(settings.gemini_api_key)}

@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	init_db()

@app.on_event("shutdown")
async def shutdown_event():
	await dialogue.close_all_sessions()
