from . import documents, status

__all__ = ["documents", "status"]
