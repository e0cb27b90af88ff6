from fastapi import FastAPI
from .logs import configure_logging
from .routers import tasks

configure_logging()

app = FastAPI(title="HTTP Task Runner API", version="1.0.0")
app.include_router(tasks.router)
