"""API middlewares."""
