import asyncio

import pytest
from pydantic import ValidationError

from blueprint_studio.errors import (
    EditorBusyError,
    EditorClosedError,
    PersistenceUnauthorizedError,
    RemoteUnavailableError,
    SectionNotFoundError,
)
from blueprint_studio.schemas.blueprint import blueprint_payload, same_content
from blueprint_studio.schemas.editor import SaveState

from conftest import ASSET_HOST, HERO_IMAGE, FakeGeneration, FakePersistence, FakeStorage


def _kinds(session):
    return [notification.kind for notification in session.notifier.pending]


def test_make_it_blue_commits_once_and_schedules_one_save(make_session):
    persistence = FakePersistence()

    async def scenario():
        session = make_session(persistence=persistence)
        queue = session.preview.subscribe()
        outcome = await session.submit_instruction("make it blue")
        pending_after_commit = session.persistence.has_pending
        await asyncio.sleep(0.15)
        await session.persistence.wait_idle()
        messages = [queue.get_nowait() for _ in range(queue.qsize())]
        return session, outcome, pending_after_commit, messages

    session, outcome, pending_after_commit, messages = asyncio.run(scenario())

    assert outcome.applied
    assert outcome.tier == "patcher"
    assert session.document.theme.primary == "#2563eb"
    assert session.document.theme.accent == "#2563eb"
    assert session.history.past_size == 1
    assert pending_after_commit
    assert len(persistence.updated) == 1
    assert persistence.updated[0][1].theme.primary == "#2563eb"
    assert session.save_status.state == SaveState.saved
    assert [message["type"] for message in messages] == ["command", "blueprint-update"]
    assert messages[1]["document"]["theme"]["primary"] == "#2563eb"
    assert _kinds(session) == ["saved"]


def test_commit_stamps_updated_at(make_session, blueprint):
    async def scenario():
        session = make_session()
        await session.submit_instruction("change the headline to Hello")
        await session.close()
        return session

    session = asyncio.run(scenario())

    assert blueprint.updatedAt is None
    assert session.document.updatedAt is not None


def test_already_satisfied_instruction_falls_through_to_later_tiers(make_session):
    generation = FakeGeneration(transform=lambda refined: refined)

    async def scenario():
        session = make_session(generation=generation)
        await session.submit_instruction("make it blue")
        second = await session.submit_instruction("make it blue")
        await session.close()
        return session, second

    session, second = asyncio.run(scenario())

    assert second.tier == "remote"
    assert [declined.tier for declined in second.declined] == ["patcher", "refinement"]
    assert generation.calls == ["make it blue"]
    assert second.message == "No changes needed."
    assert session.history.past_size == 1


def test_remote_failure_leaves_document_unchanged(make_session, blueprint):
    generation = FakeGeneration(error=RemoteUnavailableError("connection reset"))

    async def scenario():
        session = make_session(generation=generation)
        outcome = await session.submit_instruction("make the copy sound friendlier")
        await session.close()
        return session, outcome

    session, outcome = asyncio.run(scenario())

    assert outcome.status == "failed"
    assert outcome.tier == "remote"
    assert generation.calls == ["make the copy sound friendlier"]
    assert blueprint_payload(session.document) == blueprint_payload(blueprint)
    assert session.history.past_size == 0
    assert _kinds(session) == ["refinement_failed"]


def test_remote_success_replaces_document_and_keeps_id(make_session):
    generation = FakeGeneration()

    async def scenario():
        session = make_session(generation=generation)
        outcome = await session.submit_instruction("make the copy sound friendlier")
        await session.close()
        return session, outcome

    session, outcome = asyncio.run(scenario())

    assert outcome.tier == "remote"
    assert session.document.id == "site-1"
    assert session.document.description == "Refined: make the copy sound friendlier"


def test_instruction_while_remote_in_flight_is_rejected(make_session):
    async def scenario():
        gate = asyncio.Event()
        session = make_session(generation=FakeGeneration(gate=gate))
        first = asyncio.create_task(session.submit_instruction("make the copy sound friendlier"))
        await asyncio.sleep(0)
        generating = session.is_generating
        with pytest.raises(EditorBusyError):
            await session.submit_instruction("make it blue")
        gate.set()
        outcome = await first
        await session.close()
        return generating, outcome, session

    generating, outcome, session = asyncio.run(scenario())

    assert generating
    assert outcome.applied
    assert not session.is_generating


def test_remote_result_is_discarded_when_document_moved(make_session):
    async def scenario():
        gate = asyncio.Event()
        session = make_session(generation=FakeGeneration(gate=gate))
        pending = asyncio.create_task(session.submit_instruction("make the copy sound friendlier"))
        await asyncio.sleep(0)
        session.edit_field("hero-1", "headline", "Edited while waiting")
        gate.set()
        outcome = await pending
        await session.close()
        return session, outcome

    session, outcome = asyncio.run(scenario())

    assert outcome.status == "discarded"
    assert session.document.home.layout[0].content["headline"] == "Edited while waiting"
    assert session.document.description == "Neighbourhood bike repair"


def test_remote_result_is_discarded_after_close(make_session, blueprint):
    persistence = FakePersistence()

    async def scenario():
        gate = asyncio.Event()
        session = make_session(generation=FakeGeneration(gate=gate), persistence=persistence)
        pending = asyncio.create_task(session.submit_instruction("make the copy sound friendlier"))
        await asyncio.sleep(0)
        await session.close()
        gate.set()
        outcome = await pending
        await asyncio.sleep(0.1)
        return session, outcome

    session, outcome = asyncio.run(scenario())

    assert outcome.status == "discarded"
    assert same_content(session.document, blueprint)
    assert persistence.updated == []
    with pytest.raises(EditorClosedError):
        session.undo()


def test_follow_up_instruction_uses_refinement_memory(make_session):
    async def scenario():
        session = make_session()
        await session.submit_instruction("change the pricing title to Plans & prices")
        outcome = await session.submit_instruction("make it bigger")
        await session.close()
        return session, outcome

    session, outcome = asyncio.run(scenario())

    assert outcome.tier == "refinement"
    assert session.document.find_section("pricing-1")[2].styles["size"] == "lg"


def test_unresolved_instruction_without_remote_reports_failure(make_session):
    async def scenario():
        session = make_session()
        outcome = await session.submit_instruction("make the copy sound friendlier")
        await session.close()
        return session, outcome

    session, outcome = asyncio.run(scenario())

    assert outcome.status == "failed"
    assert [declined.tier for declined in outcome.declined] == ["patcher", "refinement"]
    assert _kinds(session) == ["instruction_unresolved"]


def test_undo_redo_broadcast_and_schedule_saves(make_session):
    persistence = FakePersistence()

    async def scenario():
        session = make_session(persistence=persistence)
        session.edit_field("hero-1", "headline", "Hello")
        queue = session.preview.subscribe()
        assert session.undo()
        undone = session.document.home.layout[0].content["headline"]
        assert session.redo()
        redone = session.document.home.layout[0].content["headline"]
        await asyncio.sleep(0.15)
        await session.persistence.wait_idle()
        return session, undone, redone, queue.qsize()

    session, undone, redone, broadcasts = asyncio.run(scenario())

    assert (undone, redone) == ("Welcome", "Hello")
    assert broadcasts == 2
    assert len(persistence.updated) == 1
    assert persistence.updated[0][1].home.layout[0].content["headline"] == "Hello"


def test_replaced_asset_is_kept_while_undo_can_restore_it(make_session):
    storage = FakeStorage()
    new_url = f"{ASSET_HOST}/site-assets/user-1/site-1/hero-v2.png"

    async def scenario():
        session = make_session(storage=storage)
        changed = session.replace_asset("hero-1", "image", new_url)
        await session.assets.wait_idle()
        while_open = list(storage.deleted)
        session.undo()
        restored = session.document.home.layout[0].content["image"]
        session.redo()
        await session.close()
        return session, changed, while_open, restored

    session, changed, while_open, restored = asyncio.run(scenario())

    assert changed
    assert while_open == []
    assert restored == HERO_IMAGE
    assert session.document.home.layout[0].content["image"] == new_url
    assert storage.deleted == [HERO_IMAGE]


def test_removed_section_assets_survive_undo(make_session):
    storage = FakeStorage()

    async def scenario():
        session = make_session(storage=storage)
        await session.submit_instruction("remove the hero section")
        await session.assets.wait_idle()
        session.undo()
        await session.close()
        return session

    session = asyncio.run(scenario())

    assert session.document.home.layout[0].content["image"] == HERO_IMAGE
    assert storage.deleted == []


def test_asset_is_deleted_once_evicted_from_history(make_session):
    storage = FakeStorage()
    new_url = f"{ASSET_HOST}/site-assets/user-1/site-1/hero-v2.png"

    async def scenario():
        session = make_session(storage=storage, history_limit=1)
        session.replace_asset("hero-1", "image", new_url)
        await session.assets.wait_idle()
        before_eviction = list(storage.deleted)
        session.edit_field("hero-1", "headline", "Hello")
        await session.assets.wait_idle()
        after_eviction = list(storage.deleted)
        await session.close()
        return before_eviction, after_eviction

    before_eviction, after_eviction = asyncio.run(scenario())

    assert before_eviction == []
    assert after_eviction == [HERO_IMAGE]
    assert storage.deleted == [HERO_IMAGE]


def test_asset_shared_by_two_sections_survives_replacement(make_session, blueprint):
    storage = FakeStorage()
    blueprint.home.layout[1].content["image"] = HERO_IMAGE
    new_url = f"{ASSET_HOST}/site-assets/user-1/site-1/hero-v2.png"

    async def scenario():
        session = make_session(blueprint, storage=storage, history_limit=1)
        session.replace_asset("hero-1", "image", new_url)
        session.edit_field("hero-1", "headline", "Hello")
        await session.assets.wait_idle()
        await session.close()
        return session

    session = asyncio.run(scenario())

    assert session.document.find_section("features-1")[2].content["image"] == HERO_IMAGE
    assert storage.deleted == []


def test_close_flushes_the_pending_save(make_session):
    persistence = FakePersistence()

    async def scenario():
        session = make_session(persistence=persistence, debounce_seconds=5.0)
        await session.submit_instruction("change the headline to Final")
        pending = session.persistence.has_pending
        report = await session.close()
        return pending, report

    pending, report = asyncio.run(scenario())

    assert pending
    assert report.ok
    assert len(persistence.updated) == 1
    assert persistence.updated[0][1].home.layout[0].content["headline"] == "Final"


def test_close_of_new_document_creates_the_record(make_session, blueprint):
    persistence = FakePersistence(next_id="remote-created")

    async def scenario():
        session = make_session(blueprint, persistence=persistence, remote_id=None, debounce_seconds=5.0)
        assert session.remote_id is None
        session.edit_field("hero-1", "headline", "Hello")
        await session.close()
        return session

    session = asyncio.run(scenario())

    assert len(persistence.created) == 1
    assert persistence.updated == []
    assert session.remote_id == "remote-created"


def test_replace_external_asset_deletes_nothing(make_session, blueprint):
    storage = FakeStorage()
    blueprint.home.layout[0].content["image"] = "https://images.unsplash.com/photo-1.jpg"

    async def scenario():
        session = make_session(blueprint, storage=storage)
        session.replace_asset("hero-1", "image", "https://images.unsplash.com/photo-2.jpg")
        await session.assets.wait_idle()
        await session.close()

    asyncio.run(scenario())

    assert storage.deleted == []


def test_explicit_save_creates_record_when_document_is_new(make_session, blueprint):
    blueprint.id = None
    persistence = FakePersistence(next_id="remote-created")

    async def scenario():
        session = make_session(blueprint, persistence=persistence, remote_id=None)
        session.edit_field("hero-1", "headline", "Hello")
        await asyncio.sleep(0.15)
        autosaved = list(persistence.created)
        report = await session.save()
        await session.close()
        return session, autosaved, report

    session, autosaved, report = asyncio.run(scenario())

    assert autosaved == []
    assert report.ok
    assert session.remote_id == "remote-created"
    assert len(persistence.created) == 1


def test_unauthorized_save_prompts_sign_in(make_session):
    persistence = FakePersistence(error=PersistenceUnauthorizedError("expired", status_code=401))

    async def scenario():
        session = make_session(persistence=persistence)
        report = await session.save()
        await session.close()
        return session, report

    session, report = asyncio.run(scenario())

    assert not report.ok
    assert session.save_status.state == SaveState.error
    assert _kinds(session) == ["sign_in_required"]


def test_direct_edits_validate_and_locate_sections(make_session):
    async def scenario():
        session = make_session()
        with pytest.raises(SectionNotFoundError):
            session.edit_field("missing", "title", "x")
        with pytest.raises(ValidationError):
            session.edit_section("hero-1", content={"headline": ["not", "a", "primitive"]})
        with pytest.raises(ValidationError):
            session.edit_theme({"mode": "neon"})
        unchanged = session.edit_field("hero-1", "headline", "Welcome")
        moved = session.move_section("contact-1", 0)
        added = session.add_section("gallery", title="Work")
        removed = session.remove_section("pricing-1")
        await session.close()
        return session, unchanged, moved, added, removed

    session, unchanged, moved, added, removed = asyncio.run(scenario())

    assert unchanged is False
    assert moved and removed
    layout = [section.id for section in session.document.home.layout]
    assert layout[0] == "contact-1"
    assert layout[-1] == added.id
    assert "pricing-1" not in layout
    assert session.document.home.layout[0].content["title"] == "Contact"
    assert session.history.past_size == 3
