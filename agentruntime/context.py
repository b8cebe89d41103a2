"""AppContext: wires config, providers, shared coordinators and sessions together."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from agentruntime.config import AppConfig, load_config
from agentruntime.infra.db.client import MongoClient
from agentruntime.infra.event_bus import EventBus
from agentruntime.infra.file_lock import FileLockCoordinator
from agentruntime.infra.process_mgr import ProcessManager
from agentruntime.models.agent_mode import AgentMode

if TYPE_CHECKING:
    from pathlib import Path

    from agentruntime.infra.llm_client import AgentLLMClient
    from agentruntime.infra.providers.base import LLMProvider
    from agentruntime.infra.store import CheckpointStore
    from agentruntime.services.approval import Approver
    from agentruntime.services.orchestrator import AgentOrchestrator
    from agentruntime.services.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class AppContext:
    """Central wiring for all application dependencies.

    Lazily builds collaborators on first access. The file lock coordinator,
    process manager and event bus are shared by every session created from
    one context. Call ``initialize()`` before use when checkpoints go to MongoDB.
    """

    def __init__(self, config: AppConfig | None = None, config_path: Path | None = None) -> None:
        self.config = config or load_config(config_path)
        self.event_bus = EventBus()
        self._mongo: MongoClient | None = None
        self._store: CheckpointStore | None = None
        self._provider: LLMProvider | None = None
        self._locks: FileLockCoordinator | None = None
        self._processes: ProcessManager | None = None
        self._sessions: dict[str, AgentOrchestrator] = {}

    async def initialize(self) -> None:
        """Connect to MongoDB when it is the configured checkpoint backend."""
        if self.config.persistence.backend == "mongodb":
            self._mongo = MongoClient(
                uri=self.config.persistence.mongodb_uri,
                database=self.config.persistence.mongodb_database,
            )
        logger.info("AppContext initialized")

    async def close(self) -> None:
        """Cancel active runs, stop background processes and close connections."""
        for session in list(self._sessions.values()):
            await session.cancel()
        if self._processes is not None:
            await self._processes.stop_all()
        if self._provider is not None:
            await self._provider.aclose()
        if self._mongo:
            self._mongo.close()
        logger.info("AppContext closed")

    @property
    def mongo(self) -> MongoClient:
        if self._mongo is None:
            raise RuntimeError("AppContext not initialized. Call initialize() first.")
        return self._mongo

    @property
    def store(self) -> CheckpointStore:
        if self._store is None:
            if self.config.persistence.backend == "mongodb":
                from agentruntime.infra.db.checkpoints import CheckpointRepo

                self._store = CheckpointRepo(self.mongo.db)
            else:
                from agentruntime.infra.store import JsonFileStore

                self._store = JsonFileStore(self.config.persistence.resolved_checkpoint_dir)
        return self._store

    @property
    def provider(self) -> LLMProvider:
        if self._provider is None:
            from agentruntime.infra.providers.registry import get_provider_with_fallback

            self._provider = get_provider_with_fallback(self.config)
        return self._provider

    @property
    def locks(self) -> FileLockCoordinator:
        if self._locks is None:
            self._locks = FileLockCoordinator(
                default_timeout=self.config.agent.file_lock_timeout,
                enable_merging=self.config.agent.enable_file_merging,
            )
        return self._locks

    @property
    def processes(self) -> ProcessManager:
        if self._processes is None:
            self._processes = ProcessManager()
        return self._processes

    def llm_client(self) -> AgentLLMClient:
        from agentruntime.infra.llm_client import AgentLLMClient

        return AgentLLMClient(
            self.provider,
            model=self.config.resolved_model,
            temperature=self.config.agent.temperature,
            max_tokens=self.config.agent.max_tokens,
        )

    def tool_registry(self) -> ToolRegistry:
        from agentruntime.services.tools import build_default_registry

        return build_default_registry()

    def create_session(
        self,
        mode: AgentMode | str | None = None,
        cwd: str | None = None,
        approver: Approver | None = None,
        auto_approve: bool = False,
        session_id: str | None = None,
    ) -> AgentOrchestrator:
        """Build an orchestrator sharing this context's locks, processes and bus."""
        from agentruntime.services.orchestrator import AgentOrchestrator

        mode = AgentMode(mode or self.config.default_mode)
        session = AgentOrchestrator(
            llm=self.llm_client(),
            registry=self.tool_registry(),
            locks=self.locks,
            config=self.config,
            mode=mode,
            session_id=session_id,
            event_bus=self.event_bus,
            processes=self.processes,
            approver=approver,
            auto_approve=auto_approve,
            store=self.store,
            cwd=cwd or str(self.config.resolved_working_dir),
        )
        self._sessions[session.session_id] = session
        logger.info("Created session %s (%s mode)", session.session_id, mode.value)
        return session

    def get_session(self, session_id: str) -> AgentOrchestrator | None:
        return self._sessions.get(session_id)
