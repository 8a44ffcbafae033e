"""Services that orchestrate the sync loop."""

from src.services.sync_service import CycleState, PassReport, SyncService

__all__ = ["CycleState", "PassReport", "SyncService"]
