import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    API_KEY: str = os.getenv("API_KEY", "")

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RQ_QUEUE_NAME: str = os.getenv("RQ_QUEUE_NAME", "dietbot")

    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    # Inbound handling: "inline" runs the dispatcher in the API threadpool,
    # "rq" enqueues one job per message.
    INBOUND_MODE: str = os.getenv("INBOUND_MODE", "inline").lower()
    # Image fetches run inside this lock and are held to a third of it
    SESSION_LOCK_TTL_MS: int = int(os.getenv("SESSION_LOCK_TTL_MS", "20000"))

    # Outbound delivery: "log" | "sync" | "rq"
    OUTBOUND_MODE: str = os.getenv("OUTBOUND_MODE", "log").lower()
    PUSH_URL: str = os.getenv("PUSH_URL", "")
    PUSH_TIMEOUT_SEC: float = float(os.getenv("PUSH_TIMEOUT_SEC", "5"))

    # Campaign
    ADMIN_ACCESS_CODE: str = os.getenv("ADMIN_ACCESS_CODE", "I am Sung Kim!!")
    # "atomic" takes a claim unit with INCR + compensating DECR.
    # "racy" keeps the read-then-increment pair (parity testing only).
    CAMPAIGN_CLAIM_MODE: str = os.getenv("CAMPAIGN_CLAIM_MODE", "atomic").lower()

    # Images
    IMAGE_FETCH_TIMEOUT_SEC: float = float(os.getenv("IMAGE_FETCH_TIMEOUT_SEC", "5"))
    IMAGE_MAX_BYTES: int = int(os.getenv("IMAGE_MAX_BYTES", str(10 * 1024 * 1024)))
    COUPON_IMAGE_DIR: str = os.getenv("COUPON_IMAGE_DIR", "/tmp/dietbot-coupons")
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")

    # Security & privacy
    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"
    ADMIN_RBAC_ENABLED: bool = os.getenv("ADMIN_RBAC_ENABLED", "true").lower() == "true"
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

settings = Settings()
