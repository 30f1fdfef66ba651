import os

import uvicorn

from core.logger import setup_logging


def main():
    """Main entry point for the Progress Tree web service."""
    setup_logging()

    reload_enabled = os.getenv("PROGRESS_TREE_RELOAD", "0").lower() in {"1", "true", "yes"}
    host = os.getenv("PROGRESS_TREE_HOST", "0.0.0.0")
    port = int(os.getenv("PROGRESS_TREE_PORT", "8010"))

    uvicorn.run(
        "web.backend.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload_enabled,
        reload_dirs=["web", "core", "interface"] if reload_enabled else None,
    )


if __name__ == "__main__":
    main()
