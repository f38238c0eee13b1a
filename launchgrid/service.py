from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from .contracts import Project
from .errors import NotFoundError
from .persistence import WorkflowRepository
from .security.context import ServiceContext

logger = logging.getLogger(__name__)


class BaseService:
    """Common plumbing for services bound to a repository and a context."""

    def __init__(self, repository: WorkflowRepository, ctx: ServiceContext) -> None:
        self._repository = repository
        self.ctx = ctx

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    async def _verify_project_access(self, project_id: str) -> Project:
        """Load the project, hiding projects of other tenants as missing."""
        project = await self._repository.get_project(project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        if not self.ctx.is_system and project.user_id != self.ctx.user_id:
            logger.warning(
                f"User {self.ctx.user_id} denied access to project {project_id}"
            )
            raise NotFoundError("Project", project_id)
        return project

    @asynccontextmanager
    async def _timed(self, operation: str) -> AsyncIterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed = (time.perf_counter() - started) * 1000
            logger.debug(
                f"{type(self).__name__}.{operation} took {elapsed:.1f}ms "
                f"(request_id={self.ctx.request_id})"
            )
