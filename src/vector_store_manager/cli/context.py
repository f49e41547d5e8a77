from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console

from vector_store_manager.application.bootstrap import Services, build_services
from vector_store_manager.application.services.project_service import ProjectService
from vector_store_manager.core.config import AppConfig, AppPaths
from vector_store_manager.core.errors import ProjectNotInitializedError


@dataclass(slots=True)
class CLIContext:
    config: AppConfig
    console: Console
    _services: Services | None = None

    @property
    def paths(self) -> AppPaths:
        return self.config.paths

    def require_initialized(self) -> None:
        if not ProjectService(self.paths).is_initialized():
            raise ProjectNotInitializedError(
                f"Project is not initialized. Run 'vsm init' first in {self.paths.project_root}"
            )

    def services(self) -> Services:
        self.require_initialized()
        if self._services is None:
            self._services = build_services(self.config)
        return self._services

    def close(self) -> None:
        if self._services is not None:
            self._services.shutdown()

    def project_id(self, override: str | None = None) -> str:
        return override or self.config.default_project_id
