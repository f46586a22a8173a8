import asyncio
import os
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Optional

import pytest
from fastapi.testclient import TestClient

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SAVE_DEBOUNCE_SECONDS", "0.05")
os.environ.setdefault("BACKEND_CORS_ORIGINS", "http://localhost:3000")

from blueprint_studio.editor.assets import AssetLifecycleManager
from blueprint_studio.editor.pipeline import PatcherTier, RefinementTier, ResolutionPipeline
from blueprint_studio.editor.refinement import RefinementEngine
from blueprint_studio.editor.registry import SessionRegistry
from blueprint_studio.editor.remote import RemoteGenerationTier
from blueprint_studio.editor.session import EditingSession
from blueprint_studio.errors import AssetDeleteFailedError
from blueprint_studio.main import create_app
from blueprint_studio.schemas.blueprint import Blueprint, clone_blueprint
from blueprint_studio.schemas.editor import BusinessContext
from blueprint_studio.services.notifications import CollectingNotifier
from blueprint_studio.services.preview import InMemoryPreviewChannel

ASSET_HOST = "https://cdn.example.com/storage/v1/object/public"
HERO_IMAGE = f"{ASSET_HOST}/site-assets/user-1/site-1/hero.png"


def sample_payload() -> dict[str, Any]:
    return {
        "id": "site-1",
        "name": "Spoke & Chain",
        "description": "Neighbourhood bike repair",
        "navigation": {
            "logo": f"{ASSET_HOST}/site-assets/user-1/site-1/logo.svg",
            "links": [{"label": "Home", "href": "/"}, {"label": "About", "href": "/about"}],
        },
        "homeSlug": "index",
        "pages": {
            "index": {
                "slug": "index",
                "title": "Home",
                "layout": [
                    {
                        "id": "hero-1",
                        "type": "hero",
                        "content": {
                            "headline": "Welcome",
                            "subheadline": "We fix bikes",
                            "cta": "Book now",
                            "image": HERO_IMAGE,
                        },
                        "styles": {"backgroundColor": "#ffffff"},
                    },
                    {
                        "id": "features-1",
                        "type": "features",
                        "content": {"title": "Why us", "description": "Fast turnaround"},
                    },
                    {
                        "id": "pricing-1",
                        "type": "pricing",
                        "content": {"title": "Plans", "description": "Simple pricing"},
                    },
                    {
                        "id": "testimonials-1",
                        "type": "testimonials",
                        "content": {"title": "Reviews"},
                    },
                    {
                        "id": "contact-1",
                        "type": "contact",
                        "content": {"title": "Contact", "email": "hello@spoke.test"},
                    },
                ],
            },
            "about": {
                "slug": "about",
                "title": "About",
                "layout": [{"id": "custom-1", "type": "custom", "content": {"title": "Our story"}}],
            },
        },
    }


@pytest.fixture()
def blueprint() -> Blueprint:
    return Blueprint.model_validate(sample_payload())


class FakePersistence:
    def __init__(self, *, error: Optional[Exception] = None, delay: float = 0.0, next_id: str = "remote-new") -> None:
        self.error = error
        self.delay = delay
        self.next_id = next_id
        self.created: list[Blueprint] = []
        self.updated: list[tuple[str, Blueprint]] = []

    async def create(self, document: Blueprint, meta: dict[str, Any]) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.created.append(clone_blueprint(document))
        return self.next_id

    async def update(self, remote_id: str, document: Blueprint, meta: dict[str, Any]) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.updated.append((remote_id, clone_blueprint(document)))
        return remote_id


class FakeGeneration:
    def __init__(
        self,
        *,
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
        transform: Optional[Callable[[Blueprint], Blueprint]] = None,
    ) -> None:
        self.error = error
        self.gate = gate
        self.transform = transform
        self.calls: list[str] = []

    async def refine(self, document: Blueprint, instruction: str, context: BusinessContext) -> Blueprint:
        self.calls.append(instruction)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        refined = clone_blueprint(document)
        if self.transform is not None:
            return self.transform(refined)
        refined.id = "server-assigned"
        refined.description = f"Refined: {instruction}"
        return refined


class FakeStorage:
    def __init__(self, *, failing: Optional[set[str]] = None) -> None:
        self.failing = failing or set()
        self.deleted: list[str] = []

    async def delete(self, url: str) -> None:
        if url in self.failing:
            raise AssetDeleteFailedError(url, "storage unavailable")
        self.deleted.append(url)


@pytest.fixture()
def make_session(blueprint: Blueprint):
    def _build(
        document: Optional[Blueprint] = None,
        *,
        persistence: Optional[FakePersistence] = None,
        generation: Optional[FakeGeneration] = None,
        storage: Optional[FakeStorage] = None,
        remote_id: Optional[str] = "remote-1",
        debounce_seconds: float = 0.05,
        history_limit: int = 20,
    ) -> EditingSession:
        tiers = [PatcherTier(), RefinementTier(RefinementEngine(memory_size=5))]
        if generation is not None:
            tiers.append(
                RemoteGenerationTier(generation, context=BusinessContext(name="Spoke & Chain", niche="bike repair"))
            )
        return EditingSession(
            document if document is not None else blueprint,
            pipeline=ResolutionPipeline(tiers),
            persistence=persistence if persistence is not None else FakePersistence(),
            assets=AssetLifecycleManager(storage, bucket="site-assets", namespace="user-1/site-1"),
            preview=InMemoryPreviewChannel(),
            notifier=CollectingNotifier(),
            history_limit=history_limit,
            debounce_seconds=debounce_seconds,
            remote_id=remote_id,
        )

    return _build


@pytest.fixture()
def fake_backends() -> SimpleNamespace:
    return SimpleNamespace(persistence=FakePersistence(), generation=FakeGeneration(), storage=FakeStorage())


@pytest.fixture()
def api_client(fake_backends: SimpleNamespace):
    registry = SessionRegistry(
        persistence_factory=lambda: fake_backends.persistence,
        generation_factory=lambda: fake_backends.generation,
        storage_factory=lambda: fake_backends.storage,
    )
    with TestClient(create_app(registry=registry)) as client:
        yield client
