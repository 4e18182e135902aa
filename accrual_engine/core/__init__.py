from accrual_engine.core.config import Settings, settings

__all__ = ["Settings", "settings"]
