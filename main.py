import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager
from sqlmodel import Session
from callit.config import ADMIN_EMAIL, ADMIN_PASSWORD, LOG_LEVEL
from callit.database import create_db_and_tables, engine
from callit.services.auth import create_user, get_user_by_email

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup: Create database tables and the admin profile
    create_db_and_tables()
    with Session(engine) as db:
        if not get_user_by_email(db, ADMIN_EMAIL):
            create_user(db, ADMIN_EMAIL, ADMIN_PASSWORD, display_name="Admin", is_admin=True)
    yield


# Initialize FastAPI app
app = FastAPI(
    title="callit",
    description="Post predictions, lock them in, and find out who called it",
    version="1.0.0",
    lifespan=lifespan
)

# Include routers
from callit.routers import auth, rest, realtime, api, pages

app.include_router(auth.router)
app.include_router(rest.router)
app.include_router(realtime.router)
app.include_router(api.router)
app.include_router(pages.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
