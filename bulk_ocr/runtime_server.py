"""Runtime launcher for the bulk OCR service."""

from __future__ import annotations

import os

import uvicorn


def main() -> None:
    # The job queue lives in process memory, so the service runs one worker.
    port = int(os.getenv("PORT", "8080"))
    app_path = os.getenv("FASTAPI_APP", "bulk_ocr.main:create_app")
    uvicorn.run(
        app_path,
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        factory=True,
        workers=1,
        lifespan="on",
    )


if __name__ == "__main__":  # pragma: no cover - exercised in runtime
    main()
