import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

if __name__ == "__main__":
    import uvicorn

    from cockpit.core.constants import API_HOST, API_PORT, LOG_LEVEL

    # One worker: cross-filters and the memory cache are per-process state.
    uvicorn.run("cockpit.api.main:app", host=API_HOST, port=API_PORT, log_level=LOG_LEVEL.lower())
