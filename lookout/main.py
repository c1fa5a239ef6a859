from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lookout.config import configure_logging
from lookout.routers.cron import router as cron_router
from lookout.routers.tracking import router as tracking_router

configure_logging()

app = FastAPI(title="Lookout Claims-Eligibility Engine")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(cron_router)
app.include_router(tracking_router)


@app.get("/")
async def root():
    return {"status": "ONLINE", "engine": "Lookout V1"}
