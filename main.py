"""Entrypoint for running the recurring_ledger FastAPI backend locally."""
from __future__ import annotations

import uvicorn


if __name__ == "__main__":
    uvicorn.run(
        "recurring_ledger.api:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
