from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes.items import router as items_router

app = FastAPI(
    title="Transcript Vector Pipeline API",
    description="Admin surface for the resumable transcript vectorization pipeline",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_origin_regex=r"http://localhost:\d+",
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(items_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}
