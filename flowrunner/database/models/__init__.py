from flowrunner.database.models.execution import Execution

__all__ = ["Execution"]
