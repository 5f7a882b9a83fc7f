"""FastAPI dependency providers for stores and flows.

テストでは `app.dependency_overrides[get_app_store]` をフェイククライアント
入りのストアに差し替えるだけで、全フローが Firestore なしで動く。
"""

from __future__ import annotations

from fastapi import Depends

from .flows.due_queue import DueQueueResolver
from .flows.interactions import InteractionService
from .flows.programmed_reviews import ProgrammedReviewScheduler
from .flows.question_reviews import ReviewDelegationAdapter
from .store import get_store
from .store.firestore_store import AppFirestoreStore


def get_app_store() -> AppFirestoreStore:
    return get_store()


def get_due_queue_resolver(
    store: AppFirestoreStore = Depends(get_app_store),
) -> DueQueueResolver:
    return DueQueueResolver(store)


def get_interaction_service(
    store: AppFirestoreStore = Depends(get_app_store),
    resolver: DueQueueResolver = Depends(get_due_queue_resolver),
) -> InteractionService:
    return InteractionService(store, resolver=resolver)


def get_programmed_review_scheduler(
    store: AppFirestoreStore = Depends(get_app_store),
) -> ProgrammedReviewScheduler:
    return ProgrammedReviewScheduler(store)


def get_review_delegation_adapter(
    store: AppFirestoreStore = Depends(get_app_store),
    scheduler: ProgrammedReviewScheduler = Depends(get_programmed_review_scheduler),
) -> ReviewDelegationAdapter:
    return ReviewDelegationAdapter(store, scheduler=scheduler)
