"""
Timely Push — FastAPI Entry Point

Initializes the FastAPI app for the notification fan-out service
and registers the push trigger routes.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from timely_push.api.push import router as push_router

app = FastAPI(
    title="Timely Push API",
    description="Notification delivery fan-out for Timely events",
    version="0.1.0",
)

# Triggers are also sent from the Timely desktop and mobile apps
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

# --- Register API routers ---
app.include_router(push_router)


@app.get("/health")
async def health_check():
    """Health check endpoint. Returns service status."""
    return {"status": "ok"}
