"""Run the development server: ``python -m cinema_backend``."""

from .app import serve

serve()
