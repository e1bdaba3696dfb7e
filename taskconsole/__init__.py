"""State model for an async task console: tasks, resources and async operations."""

__version__ = "0.1.0"

__all__ = ["util", "store", "fields", "tasks", "resources", "async_ops", "state"]