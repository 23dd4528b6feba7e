"""
Abstract repository interface for smoke-run history.

This module defines the contract that any storage implementation must follow,
so the SQLite store can be swapped for another backend.
"""

from abc import ABC, abstractmethod

from lab_common.models import SmokeRun


class RunRepository(ABC):
    """
    Abstract base class for smoke-run storage operations.

    Implementations handle their own connection management.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create the storage schema if needed."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""
        pass

    @abstractmethod
    async def create_run(self, run: SmokeRun) -> None:
        """
        Persist a smoke run with all of its check results.

        Args:
            run: SmokeRun to persist

        Raises:
            Exception: If a run with the same ID already exists
        """
        pass

    @abstractmethod
    async def get_run(self, run_id: str) -> SmokeRun | None:
        """
        Retrieve a run by its ID.

        Args:
            run_id: UUID of the run

        Returns:
            SmokeRun if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_runs(self, limit: int | None = None) -> list[SmokeRun]:
        """
        List runs, most recent first.

        Args:
            limit: Maximum number of runs to return (all if None)

        Returns:
            List of SmokeRun objects with their checks
        """
        pass

    @abstractmethod
    async def delete_run(self, run_id: str) -> bool:
        """
        Delete a run and its checks.

        Returns:
            True if a run was deleted, False if it did not exist
        """
        pass
