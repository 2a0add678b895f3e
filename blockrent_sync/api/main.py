"""
FastAPI application entry point.

Run with: uvicorn blockrent_sync.api.main:app --host 0.0.0.0 --port 8000
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from blockrent_sync import __version__
from blockrent_sync.api.routes import listings, notifications, realtime, sync, transactions
from blockrent_sync.api.dependencies import initialize_services, shutdown_services


# Create FastAPI app
app = FastAPI(
    title="Blockrent Sync API",
    description="Read API over the ledger-derived marketplace cache",
    version=__version__
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    initialize_services()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the synchronizer and release shared resources."""
    shutdown_services()


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Blockrent Sync API",
        "version": __version__,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(sync.router)
app.include_router(listings.router)
app.include_router(transactions.router)
app.include_router(notifications.router)
app.include_router(realtime.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
