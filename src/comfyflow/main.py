import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import comfyflow.routers.api as api_router
import comfyflow.routers.websocket as websocket_router
from comfyflow.config import ALLOWED_ORIGINS, LOG_LEVEL
from comfyflow.deps import lifespan

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def create_app() -> FastAPI:

    app = FastAPI(title="ComfyUI Image Generation API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router.get_router(), prefix="/api")
    app.include_router(websocket_router.get_router(), prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
