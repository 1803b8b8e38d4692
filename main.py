"""
ASGI entrypoint for deployments.

The FastAPI app lives in `backend/immobilier/main.py`. When the project is not
pip-installed, `backend/` has to be on `sys.path` for `import immobilier` to work.
This lets the platform run:
  uvicorn main:app --host 0.0.0.0 --port $PORT
"""

from __future__ import annotations

import sys
from pathlib import Path


_ROOT = Path(__file__).resolve().parent
_BACKEND_DIR = _ROOT / "backend"

# Ensure `import immobilier...` resolves to `backend/immobilier/...`
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from immobilier.main import app  # noqa: E402,F401
