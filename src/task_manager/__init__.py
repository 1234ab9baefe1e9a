"""
Task Manager backend package.

The core lives in plain modules (models, user_registry, task_lifecycle,
query_engine, statistics) that depend only on the Store and PasswordHasher
contracts; the FastAPI app in `task_manager.main` is a thin layer on top.
"""

__version__ = "1.0.0"
