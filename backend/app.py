"""
FEEDR Backend - Unified Application Entry Point
Mounts the batch and worker services under a single FastAPI application
"""

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from services.batches import app as batches_module
from services.websocket_progress import websocket_manager
from services.worker import app as worker_module
from shared.utils import config, setup_logging

logger = setup_logging("feedr-backend")

# Get routers from the service apps
batches_app = batches_module.app
worker_app = worker_module.app

app = FastAPI(
    title="FEEDR Backend API",
    description="""
    Batch generation API for short-form video and image variants.

    All endpoints are documented below. Service routes are organized by tag.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {
            "name": "Health",
            "description": "Service health and status endpoints",
        },
        {
            "name": "Batches",
            "description": "Batch creation, progress and review - mounted at /api/v1/batches",
        },
        {
            "name": "Worker",
            "description": "Job execution triggers - mounted at /api/v1/worker",
        },
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get("allowed_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes to exclude (internal FastAPI docs routes)
EXCLUDED_PATHS = {"/openapi.json", "/docs", "/docs/oauth2-redirect", "/redoc"}

SERVICE_MOUNTS = [
    (batches_app, "/api/v1/batches", "Batches", "batches"),
    (worker_app, "/api/v1/worker", "Worker", "worker"),
]

# Include service routes with prefix
for service_app, prefix, tag, name_prefix in SERVICE_MOUNTS:
    for route in service_app.routes:
        if hasattr(route, "path") and hasattr(route, "endpoint"):
            # Skip internal documentation routes
            if route.path in EXCLUDED_PATHS:
                continue
            route_kwargs = {
                "path": f"{prefix}{route.path}",
                "endpoint": route.endpoint,
                "methods": route.methods,
                "tags": [tag],
            }
            if hasattr(route, "name"):
                route_kwargs["name"] = f"{name_prefix}_{route.name}"
            if hasattr(route, "response_model"):
                route_kwargs["response_model"] = route.response_model
            app.add_api_route(**route_kwargs)


@app.websocket("/ws/progress")
async def websocket_progress_endpoint(websocket: WebSocket):
    """WebSocket endpoint for batch progress updates."""
    client_id = websocket.query_params.get("client_id")
    assigned_client_id = await websocket_manager.connect(websocket, client_id)
    await websocket.send_json({"event": "connected", "client_id": assigned_client_id})

    try:
        while True:
            message = await websocket.receive_json()
            action = message.get("action")

            if action == "subscribe":
                batch_id = message.get("batch_id")
                if not batch_id:
                    await websocket.send_json(
                        {"event": "error", "message": "Missing batch_id for subscribe"}
                    )
                    continue
                latest = await websocket_manager.subscribe(assigned_client_id, batch_id)
                await websocket.send_json({"event": "subscribed", "batch_id": batch_id, "latest": latest})
            elif action == "unsubscribe":
                batch_id = message.get("batch_id")
                await websocket_manager.unsubscribe(assigned_client_id, batch_id)
                await websocket.send_json({"event": "unsubscribed", "batch_id": batch_id})
            elif action == "ping":
                await websocket.send_json({"event": "pong"})
            else:
                await websocket.send_json(
                    {"event": "error", "message": f"Unknown action: {action}"}
                )
    except WebSocketDisconnect:
        await websocket_manager.disconnect(assigned_client_id)
    except Exception:
        await websocket_manager.disconnect(assigned_client_id)
        raise


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint with service information and API navigation"""
    return {
        "service": "FEEDR Backend API",
        "version": "1.0.0",
        "services": {
            "batches": {
                "base_url": "/api/v1/batches",
                "health": "/api/v1/batches/health",
            },
            "worker": {
                "base_url": "/api/v1/worker",
                "health": "/api/v1/worker/health",
            },
            "progress": {
                "websocket": "/ws/progress",
            },
        },
        "documentation": {
            "swagger_ui": "/docs",
            "redoc": "/redoc",
            "openapi_json": "/openapi.json",
        },
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for all services"""
    return {
        "status": "healthy",
        "services": {
            "api_gateway": "operational",
            "batches": "operational",
            "worker": "operational",
        },
    }


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting FEEDR Backend on http://0.0.0.0:8000")
    uvicorn.run("app:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
