import asyncio
import logging

from blueprint_studio.editor.assets import AssetLifecycleManager, collect_asset_urls
from blueprint_studio.schemas.blueprint import clone_blueprint

from conftest import ASSET_HOST, HERO_IMAGE, FakeStorage

OTHER_OWNED = f"{ASSET_HOST}/site-assets/user-1/site-1/hero-v2.png"
EXTERNAL = "https://images.unsplash.com/photo-123.jpg"


def _manager(storage):
    return AssetLifecycleManager(storage, bucket="site-assets", namespace="user-1/site-1")


def test_ownership_is_limited_to_document_namespace():
    manager = _manager(FakeStorage())

    assert manager.is_owned(HERO_IMAGE)
    assert not manager.is_owned(EXTERNAL)
    assert not manager.is_owned(f"{ASSET_HOST}/site-assets/user-2/site-9/hero.png")
    assert not manager.is_owned(f"{ASSET_HOST}/site-assets/user-1/site-1/")
    assert not manager.is_owned("")
    assert not manager.is_owned(None)


def test_replacing_owned_asset_deletes_it_exactly_once():
    storage = FakeStorage()

    async def scenario():
        manager = _manager(storage)
        first = manager.on_asset_replaced(HERO_IMAGE, OTHER_OWNED)
        second = manager.on_asset_replaced(HERO_IMAGE, OTHER_OWNED)
        await manager.wait_idle()
        third = manager.on_asset_replaced(HERO_IMAGE, OTHER_OWNED)
        await manager.wait_idle()
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert (first, second, third) == (True, False, False)
    assert storage.deleted == [HERO_IMAGE]


def test_external_same_or_empty_urls_are_never_deleted():
    storage = FakeStorage()

    async def scenario():
        manager = _manager(storage)
        results = [
            manager.on_asset_replaced(EXTERNAL, OTHER_OWNED),
            manager.on_asset_replaced(HERO_IMAGE, HERO_IMAGE),
            manager.on_asset_replaced(None, OTHER_OWNED),
            manager.on_asset_replaced("", OTHER_OWNED),
        ]
        await manager.wait_idle()
        return results

    assert asyncio.run(scenario()) == [False, False, False, False]
    assert storage.deleted == []


def test_delete_failure_is_logged_not_raised(caplog):
    storage = FakeStorage(failing={HERO_IMAGE})

    async def scenario():
        manager = _manager(storage)
        manager.on_asset_replaced(HERO_IMAGE, OTHER_OWNED)
        await manager.wait_idle()
        return manager

    with caplog.at_level(logging.WARNING, logger="blueprint_studio.editor.assets"):
        manager = asyncio.run(scenario())

    assert storage.deleted == []
    assert manager.deleted == set()
    assert any(record.getMessage() == "asset_lifecycle.delete_failed" for record in caplog.records)


def test_collect_asset_urls_covers_sections_logo_and_metadata(blueprint):
    blueprint.metadata["og"] = {"image": f"{ASSET_HOST}/site-assets/user-1/site-1/og.png"}
    blueprint.home.layout[1].styles["backgroundImage"] = f"url({ASSET_HOST}/site-assets/user-1/site-1/bg.png)"

    urls = collect_asset_urls(blueprint)

    assert HERO_IMAGE in urls
    assert f"{ASSET_HOST}/site-assets/user-1/site-1/logo.svg" in urls
    assert f"{ASSET_HOST}/site-assets/user-1/site-1/og.png" in urls
    assert f"{ASSET_HOST}/site-assets/user-1/site-1/bg.png" in urls


def test_sweep_deletes_only_urls_no_retained_document_references(blueprint):
    storage = FakeStorage()
    after = clone_blueprint(blueprint)
    after.home.layout[0].content["image"] = OTHER_OWNED
    after.navigation.logo = EXTERNAL

    async def scenario():
        manager = _manager(storage)
        kept = manager.sweep([blueprint, after])
        deleted = manager.sweep([after])
        await manager.wait_idle()
        return kept, deleted

    kept, deleted = asyncio.run(scenario())

    assert kept == []
    assert deleted == sorted([HERO_IMAGE, f"{ASSET_HOST}/site-assets/user-1/site-1/logo.svg"])
    assert sorted(storage.deleted) == deleted


def test_sweep_keeps_urls_reused_elsewhere(blueprint):
    storage = FakeStorage()
    after = clone_blueprint(blueprint)
    after.home.layout[0].content["image"] = OTHER_OWNED
    after.pages["about"].layout[0].content["image"] = HERO_IMAGE

    async def scenario():
        manager = _manager(storage)
        manager.sweep([blueprint])
        deleted = manager.sweep([after])
        await manager.wait_idle()
        return deleted

    assert asyncio.run(scenario()) == []
    assert storage.deleted == []


def test_replacement_still_referenced_by_retained_document_is_kept(blueprint):
    storage = FakeStorage()

    async def scenario():
        manager = _manager(storage)
        result = manager.on_asset_replaced(HERO_IMAGE, OTHER_OWNED, retained=[blueprint])
        await manager.wait_idle()
        return result

    assert asyncio.run(scenario()) is False
    assert storage.deleted == []


def test_missing_storage_makes_cleanup_a_noop():
    async def scenario():
        manager = _manager(None)
        return manager.on_asset_replaced(HERO_IMAGE, OTHER_OWNED)

    assert asyncio.run(scenario()) is False
