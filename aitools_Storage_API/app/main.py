# main.py
# Description: FastAPI application serving the reference remote storage API (/api/health, /api/data).
#
# Imports
from contextlib import asynccontextmanager
#
# 3rd-party Libraries
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
#
# Local Imports
from aitools_Storage_API.app.api.v1.API_Deps.Storage_Deps import close_server_dbs
from aitools_Storage_API.app.api.v1.endpoints.storage_sync import router as storage_sync_router
from aitools_Storage_API.app.core.config import settings
from aitools_Storage_API.app.core.Utils.logging_setup import configure_logging
#
########################################################################################################################
#
# Functions:

configure_logging(settings["LOG_LEVEL"])


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Sync server starting. Database: {settings['SYNC_SERVER_DB_PATH']}")
    yield
    logger.info("App Shutdown: Closing DB connections")
    close_server_dbs()


app = FastAPI(
    title="aitools Storage API",
    version="1.0.0",
    description="Reference sync server for the aitools storage layer",
    lifespan=lifespan,
)

# Browser clients call the API cross-origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    return {"message": "aitools storage API is running"}


# Router for the storage sync endpoints
app.include_router(storage_sync_router, prefix="/api", tags=["storage"])

#
## End of main.py
########################################################################################################################
