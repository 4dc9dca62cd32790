import json
import time
from dietbot.settings import settings

# Message bodies and secrets are redacted from logs when PII redaction is enabled
SENSITIVE_KEYS = {"text", "textContent", "imageContent", "passphrase", "content", "messages"}

def _mask(v):
    if isinstance(v, str) and v:
        return f"[REDACTED:{len(v)}chars]"
    if isinstance(v, dict):
        return {k: _mask(val) for k, val in v.items()}
    if isinstance(v, (list, tuple)):
        return [_mask(x) for x in v]
    return v

def redact_fields(fields: dict) -> dict:
    """Mask sensitive keys at the top level and one level down (e.g. a `msg` dict)."""
    out = {}
    for k, v in fields.items():
        if k in SENSITIVE_KEYS:
            out[k] = _mask(v)
        elif isinstance(v, dict):
            out[k] = {sk: (_mask(sv) if sk in SENSITIVE_KEYS else sv) for sk, sv in v.items()}
        else:
            out[k] = v
    return out

def log(event: str, **fields):
    payload = {"ts": int(time.time()), "event": event}
    payload.update(redact_fields(fields) if settings.ENABLE_PII_REDACTION else fields)
    print(json.dumps(payload, ensure_ascii=False, default=str))
