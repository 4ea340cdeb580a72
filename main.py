import logging

import uvicorn
from fastapi import FastAPI

from labeler.core.config import settings
from labeler.routers.files import router as files_router
from labeler.routers.labeling import router as labeling_router

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)

app = FastAPI(
    title=settings.app_name,
    description="Label regions of document pages against a field schema.",
    version="1.0.0",
)

app.include_router(files_router)
app.include_router(labeling_router)


@app.get("/health")
def health():
    return {"status": "ok", "environment": settings.environment}


@app.get("/", tags=["Root"])
async def read_root():
    return {"message": "Welcome to the Document Region Labeler API. Go to /docs to see the endpoints."}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.is_dev)
