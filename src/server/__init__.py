"""HTTP server: FastAPI app factory, middlewares and built-in routers."""

__version__ = "1.0.0"
