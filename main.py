"""
ASGI entrypoint for deployments (e.g. Render).

The FastAPI app lives in `backend/propimage/main.py` and uses imports like
`from propimage.db ...`, which requires `backend/` to be on `PYTHONPATH`.

With this repo-root `main.py` the service can be started with:
  uvicorn main:app --host 0.0.0.0 --port $PORT
"""

from __future__ import annotations

import sys
from pathlib import Path


_ROOT = Path(__file__).resolve().parent
_BACKEND_DIR = _ROOT / "backend"

# Ensure `import propimage...` resolves to `backend/propimage/...`
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from propimage.main import app  # noqa: E402,F401
