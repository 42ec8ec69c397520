import uvicorn
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from typist.routes import router as typist_router

from shared.config.app_config import HOST, PORT
from shared.config.logging import configure_logging, get_logger
from typist.errors import StartupError
from typist.initialization import initialize as initialize_typist
from typist.initialization import shutdown as shutdown_typist

configure_logging()
logger = get_logger("app")


def run_startup_task(name: str, initializer) -> None:
    try:
        logger.info("Initializing %s service...", name)
        initializer()
        logger.info("%s service initialized.", name)
    except StartupError:
        logger.critical("Unable to initialize %s; aborting startup.", name, exc_info=True)
        raise


@asynccontextmanager
async def lifespan(_app: FastAPI):
    logger.info("Starting up verse typer...")
    run_startup_task("Typing practice", initialize_typist)
    yield
    shutdown_typist()


app = FastAPI(title="Verse Typer", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

app.include_router(typist_router)

if __name__ == "__main__":
    uvicorn.run("app:app", host=HOST, port=PORT, reload=True)
