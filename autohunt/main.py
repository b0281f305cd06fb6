from fastapi import FastAPI
from autohunt.routes.api import router as api_router
from autohunt.jobs import init_scheduler
from autohunt.services.utils import configure_logging

app = FastAPI(title="AutoHunt")

app.include_router(api_router)

@app.on_event("startup")
async def startup_event():
    configure_logging()
    # Initialize database tables if they don't exist
    from autohunt.db import engine
    from autohunt.models import Base
    Base.metadata.create_all(bind=engine)
    init_scheduler(app)

@app.get("/")
def root():
    return {"status": "healthy", "service": "AutoHunt"}

@app.get("/healthz")
def healthz():
    return {"ok": True}
