"""FastAPI REST API for Worklin webhooks.

Example:
    ```python
    import uvicorn
    from worklin_webhooks.api import create_app

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
    ```

Or run directly:
    ```bash
    uvicorn worklin_webhooks.api:app --reload
    ```
"""

from .app import app, create_app
from .router import router

__all__ = [
    "app",
    "create_app",
    "router",
]
