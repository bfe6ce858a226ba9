"""
Card Store Factory
Centralizes the logic for selecting the appropriate card store adapter.
"""

from collate.application.config import AppConfig
from collate.application.study_service import SessionSettings, StudyService
from collate.domain.ports import CardStore
from collate.infrastructure.stores import HttpCardStore, YamlCardStore


def get_card_store(config: AppConfig) -> CardStore:
    """
    Returns the CardStore implementation selected by config.backend.
    """
    if config.backend == "http":
        return HttpCardStore(
            base_url=config.store_url,
            token=config.store_token,
            timeout=config.request_timeout,
        )
    return YamlCardStore(config.deck_path)


def get_study_service(config: AppConfig, store: CardStore | None = None) -> StudyService:
    """
    Builds a StudyService wired to the configured store, RNG and session settings.
    """
    return StudyService(
        store or get_card_store(config),
        rng=config.make_rng(),
        settings=SessionSettings(
            pacing_delay=config.pacing_delay,
            requeue_policy=config.requeue_policy(),
        ),
    )
