"""HTTP routers exposing the task and user operations."""
