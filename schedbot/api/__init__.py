"""HTTP surface: FastAPI app, dependencies and admin routes."""
