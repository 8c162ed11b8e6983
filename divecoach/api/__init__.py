"""
API Package

FastAPI routers, dependencies and middleware.
"""
