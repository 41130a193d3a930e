"""HTTP API for ledgerdesk.

Usage:
    from api import create_app

    app = create_app()
    uvicorn.run(app, port=8000)
"""

from .app import Services, create_app


__all__ = [
    'Services',
    'create_app',
]
