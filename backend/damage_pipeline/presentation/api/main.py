from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from damage_pipeline.presentation.api.v1.batch_router import router as batch_router
from damage_pipeline.presentation.api.v1.damage_router import router as damage_router


app = FastAPI(title="Vision Damage Pipeline", version="1.0.0")

# Permissive CORS so the upload UI can be served from another origin.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"status": "ok", "message": "Vision Damage Pipeline running"}


app.include_router(damage_router)
app.include_router(batch_router)
