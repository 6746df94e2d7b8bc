"""Wiring of the review components from configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .api import ReviewApi
from .config import ReviewConfig, load_config
from .dispatch import TaskDispatcher
from .engine import BaseWorkflowEngine, get_engine
from .external import ExternalSystem, LoggingExternalSystem
from .persistence import StateStore, get_store
from .service import ReviewOrchestrationService
from .validation import InputValidator


@dataclass
class Runtime:
    config: ReviewConfig
    store: StateStore
    external: ExternalSystem
    dispatcher: TaskDispatcher
    engine: BaseWorkflowEngine
    service: ReviewOrchestrationService
    api: ReviewApi


def build_runtime(
    config: Optional[ReviewConfig] = None,
    store: Optional[StateStore] = None,
    external: Optional[ExternalSystem] = None,
) -> Runtime:
    """Assemble store, dispatcher, engine, service and API.

    ``store`` and ``external`` may be injected; otherwise the store comes from
    :func:`get_store` (reusing the process-wide store when no database is
    configured) and downstream updates go to the logging mock.
    """
    config = config or load_config()
    if store is None:
        database_url = config.store.database_url
        store = get_store(database_url) if database_url else get_store()
    external = external or LoggingExternalSystem()
    retention_days = config.store.retention_days

    dispatcher = TaskDispatcher(store, external, retention_days=retention_days)
    engine = get_engine(dispatcher.dispatch, config=config)
    service = ReviewOrchestrationService(
        store,
        engine,
        definition_ref=config.engine.definition_ref,
        retention_days=retention_days,
    )
    api = ReviewApi(service, InputValidator(config.validation))
    return Runtime(
        config=config,
        store=store,
        external=external,
        dispatcher=dispatcher,
        engine=engine,
        service=service,
        api=api,
    )
