"""
asgi.py -- ASGI entry point for the VecindApp auth service.

Run with:  uvicorn asgi:app --reload
           python main.py serve

The only module that builds the process-wide app from get_settings().
"""

from api.main import create_app

app = create_app()
