import os

from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from dietbot.api.routes import router
from dietbot.api.admin_routes import router as admin_router
from dietbot.observability.logging import log
from dietbot.settings import settings

app = FastAPI(title="Dieting Chatbot Campaign API")

origins = [x.strip() for x in settings.CORS_ORIGINS.split(",") if x.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(admin_router)

# Published coupon images
os.makedirs(settings.COUPON_IMAGE_DIR, exist_ok=True)
app.mount("/coupons", StaticFiles(directory=settings.COUPON_IMAGE_DIR), name="coupons")


@app.get("/")
def root():
    return {
        "status": "ok",
        "message": "Dieting chatbot is running. POST inbound messages to /webhook.",
    }


@app.get("/health")
def health():
    return {"status": "ok"}


# Transport adapters retry any non-200 webhook delivery, which would replay a
# conversational turn. Failures are reported in the body instead.
@app.exception_handler(Exception)
async def universal_exception_handler(request: Request, exc: Exception):
    try:
        log(event="request_failed", path=request.url.path, errorType=type(exc).__name__, error=str(exc)[:500])
    except Exception:
        pass
    return JSONResponse(
        status_code=200,
        content={"status": "error", "dispatched": False, "reason": type(exc).__name__},
    )


log(event="boot", inboundMode=settings.INBOUND_MODE, outboundMode=settings.OUTBOUND_MODE,
    claimMode=settings.CAMPAIGN_CLAIM_MODE)
