#!/usr/bin/env python3
import sys
import os

print("Running preflight import check...")
try:
    # Set dummy env vars to avoid KeyErrors during config load if any
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

    import dietbot.main
    print("Import dietbot.main: OK")

    import dietbot.queue.jobs
    print("Import dietbot.queue.jobs: OK")

    from dietbot.core.runtime import build_dispatcher
    print(f"Owned states: {build_dispatcher().owned_states()}")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
