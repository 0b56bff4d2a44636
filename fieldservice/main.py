from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from fieldservice.api import service_requests, stock, technicians
from fieldservice.config import settings
from fieldservice.database import engine, Base
from fieldservice import models  # noqa: F401  registers tables on Base

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Field Service Engine",
    description="Service request lifecycle and field stock ledger",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:4200", "http://127.0.0.1:4200", "http://localhost:8100"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Include routers
app.include_router(service_requests.router, prefix="/api", tags=["Service Requests"])
app.include_router(stock.router, prefix="/api", tags=["Stock"])
app.include_router(technicians.router, prefix="/api", tags=["Technicians"])


@app.get("/")
async def root():
    return {"message": "Field Service Engine is running"}


@app.get("/api/health")
async def health_check():
    return {"status": "healthy"}
