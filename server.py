# server.py (repo root)
from bookpress.main import app

# Local run; logging is configured by bookpress.logger, so uvicorn's own config is off
if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8080")),
        log_config=None,
    )
