"""Serve the API with uvicorn: ``python -m cellar_assistant``."""

import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "cellar_assistant.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "").lower() in {"1", "true", "yes"},
    )


if __name__ == "__main__":
    main()
