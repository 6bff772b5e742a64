from sctimetable.service.time_provider import TimeProviderService, TimeState

__all__ = ["TimeProviderService", "TimeState"]
