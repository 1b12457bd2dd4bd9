from fastapi import FastAPI
from rentscout.config import settings
from rentscout.db import Base, engine
from rentscout.api.routes import router as api_router
from rentscout import scheduler
import rentscout.models  # noqa: F401 ensure models are imported so tables are known

# create FastAPI instance
app = FastAPI(title="rentscout")
app.include_router(api_router)


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    if settings.SCHEDULER_ENABLED:
        scheduler.start_scheduler()


@app.on_event("shutdown")
def on_shutdown():
    scheduler.stop_scheduler()
