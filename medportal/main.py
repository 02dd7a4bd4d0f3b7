from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from medportal import __version__
from medportal.config import settings
from medportal.database.connection import Base, engine, init_db
from medportal.exceptions import PortalError, UpstreamFailure
from medportal.routes import access_control, auth, profile, record
from medportal.utils.logger import configure_logging, logger
import medportal.models  # noqa: F401  registers every table on Base.metadata

configure_logging()


def initialize_tables():
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("All SQLAlchemy tables created successfully.")
    except SQLAlchemyError as e:
        logger.error("Error while creating tables: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # the database must exist before the tables can be created in it
    init_db()
    initialize_tables()
    yield


app = FastAPI(title="Medportal Backend", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(profile.router)
app.include_router(access_control.router)
app.include_router(record.router)


@app.get("/")
def root():
    return {"message": "Medportal Backend is Running!"}


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    error = UpstreamFailure("The database request failed.")
    return JSONResponse(status_code=error.status_code, content={"detail": error.message, "code": error.code})


@app.middleware("http")
async def catch_exceptions_middleware(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception:
        logger.exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("medportal.main:app", host="0.0.0.0", port=8000)
