__all__ = ["MaintenanceWorker", "MaintenanceReport"]


def __getattr__(name: str):
    if name in __all__:
        from . import maintenance_worker

        return getattr(maintenance_worker, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
