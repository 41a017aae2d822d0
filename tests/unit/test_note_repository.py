"""
Note Repository Unit Tests

Runs against a throwaway SQLite database (aiosqlite), no Docker needed.
Covers ordering, partial updates, the monotonic status guard, view
filtering, trash/archive exclusivity and idempotent tag linking.
"""

import asyncio

import pytest

from cortex.core.exceptions import (
    NoteDeletedError,
    NotFoundError,
    StatusTransitionError,
    ValidationError,
)
from cortex.models import AIStatus
from cortex.repositories.notes import NoteFilter


async def _note(repo, session, title="Note", content="body", source_type="manual"):
    return await repo.create(
        session, {"title": title, "content": content, "source_type": source_type}
    )


@pytest.mark.asyncio
async def test_create_assigns_pending_and_increasing_sort_order(repo, session):
    first = await _note(repo, session, "first")
    second = await _note(repo, session, "second")

    assert first.ai_status == AIStatus.PENDING
    assert second.sort_order == first.sort_order + 1

    notes = await repo.list(session)
    assert [n.title for n in notes] == ["second", "first"]  # newest on top


@pytest.mark.asyncio
async def test_create_ignores_supplied_status(repo, session):
    note = await repo.create(
        session, {"title": "x", "content": "y", "ai_status": AIStatus.COMPLETED}
    )
    assert note.ai_status == AIStatus.PENDING


@pytest.mark.asyncio
async def test_update_touches_only_supplied_fields(repo, session):
    note = await _note(repo, session, "original", "keep me")
    before = note.updated_at

    await asyncio.sleep(0.01)
    await repo.update(session, note.id, {"title": "renamed"})

    updated = await repo.get(session, note.id)
    assert updated.title == "renamed"
    assert updated.content == "keep me"
    assert updated.updated_at > before


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(repo, session):
    note = await _note(repo, session)
    with pytest.raises(ValidationError):
        await repo.update(session, note.id, {"id": 42})


@pytest.mark.asyncio
async def test_update_missing_note_raises_not_found(repo, session):
    with pytest.raises(NotFoundError):
        await repo.update(session, 9999, {"title": "ghost"})


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "terminal", [AIStatus.COMPLETED, AIStatus.FAILED, AIStatus.CANCELLED]
)
async def test_terminal_status_is_final(repo, session, terminal):
    """No sequence of updates moves a note out of a terminal status."""
    note = await _note(repo, session)
    await repo.update(session, note.id, {"ai_status": terminal})

    for target in AIStatus:
        if target in (terminal, AIStatus.PENDING):
            continue
        with pytest.raises(StatusTransitionError):
            await repo.update(session, note.id, {"ai_status": target})

    with pytest.raises(StatusTransitionError):
        await repo.update(session, note.id, {"ai_status": AIStatus.PENDING})

    assert (await repo.get(session, note.id)).ai_status == terminal


@pytest.mark.asyncio
async def test_set_status_reports_refusal(repo, session):
    note = await _note(repo, session)

    assert await repo.set_status(session, note.id, AIStatus.CANCELLED) is True
    assert await repo.set_status(session, note.id, AIStatus.COMPLETED) is False
    assert await repo.set_status(session, 9999, AIStatus.FAILED) is False


@pytest.mark.asyncio
async def test_require_live_refuses_deleted_note(repo, session):
    note = await _note(repo, session)
    await repo.soft_delete(session, note.id)

    with pytest.raises(NoteDeletedError):
        await repo.update(session, note.id, {"summary": "late"}, require_live=True)
    assert (await repo.get(session, note.id)).summary == ""


@pytest.mark.asyncio
async def test_soft_delete_clears_archive_flag(repo, session):
    note = await _note(repo, session)
    await repo.archive(session, note.id)
    await repo.soft_delete(session, note.id)

    deleted = await repo.get(session, note.id)
    assert deleted.is_deleted is True
    assert deleted.is_archived is False


@pytest.mark.asyncio
async def test_archive_refuses_trashed_note(repo, session):
    note = await _note(repo, session)
    await repo.soft_delete(session, note.id)
    with pytest.raises(NoteDeletedError):
        await repo.archive(session, note.id)


@pytest.mark.asyncio
async def test_views_are_disjoint(repo, session):
    live = await _note(repo, session, "live")
    archived = await _note(repo, session, "archived")
    trashed = await _note(repo, session, "trashed")
    await repo.archive(session, archived.id)
    await repo.soft_delete(session, trashed.id)

    assert [n.id for n in await repo.list(session)] == [live.id]
    assert [n.id for n in await repo.list(session, NoteFilter.archived())] == [archived.id]
    assert [n.id for n in await repo.list(session, NoteFilter.deleted())] == [trashed.id]

    await repo.restore(session, trashed.id)
    assert {n.id for n in await repo.list(session)} == {live.id, trashed.id}


@pytest.mark.asyncio
async def test_filter_by_tag_source_and_collection(repo, collection_repo, session):
    tweet = await _note(repo, session, "tweet", source_type="twitter-thread")
    video = await _note(repo, session, "video", source_type="youtube")

    tag = await repo.get_or_create_tag(session, "python")
    await repo.link_tag(session, video.id, tag.id)
    collection = await collection_repo.create(session, "Watch later")
    await collection_repo.add_note(session, collection.id, tweet.id)

    by_tag = await repo.list(session, NoteFilter.by_tag("python"))
    by_source = await repo.list(session, NoteFilter.by_source_type("twitter"))
    by_collection = await repo.list(session, NoteFilter.by_collection(collection.id))

    assert [n.id for n in by_tag] == [video.id]
    assert [n.id for n in by_source] == [tweet.id]  # partial match
    assert [n.id for n in by_collection] == [tweet.id]


@pytest.mark.asyncio
async def test_list_pagination(repo, session):
    for i in range(5):
        await _note(repo, session, f"n{i}")

    page = await repo.list(session, limit=2, offset=2)
    assert [n.title for n in page] == ["n2", "n1"]


@pytest.mark.asyncio
async def test_reorder(repo, session):
    a = await _note(repo, session, "a")
    b = await _note(repo, session, "b")

    await repo.reorder(session, [a.id, b.id], [10, 1])
    assert [n.title for n in await repo.list(session)] == ["a", "b"]

    with pytest.raises(ValidationError):
        await repo.reorder(session, [a.id], [1, 2])


@pytest.mark.asyncio
async def test_tag_linking_is_idempotent(repo, session):
    note = await _note(repo, session)
    tag = await repo.get_or_create_tag(session, "ai")
    again = await repo.get_or_create_tag(session, "ai")

    assert again.id == tag.id
    assert await repo.link_tag(session, note.id, tag.id) is True
    assert await repo.link_tag(session, note.id, tag.id) is False
    assert [t.name for t in await repo.get_tags(session, note.id)] == ["ai"]

    assert await repo.unlink_tag(session, note.id, tag.id) is True
    assert await repo.get_tags(session, note.id) == []


@pytest.mark.asyncio
async def test_list_tags_counts_live_notes_only(repo, session):
    live = await _note(repo, session)
    trashed = await _note(repo, session)
    tag = await repo.get_or_create_tag(session, "shared")
    await repo.get_or_create_tag(session, "unused")
    await repo.link_tag(session, live.id, tag.id)
    await repo.link_tag(session, trashed.id, tag.id)
    await repo.soft_delete(session, trashed.id)

    counts = {t.name: count for t, count in await repo.list_tags(session)}
    assert counts == {"shared": 1, "unused": 0}


@pytest.mark.asyncio
async def test_purge_removes_note_and_associations(repo, session):
    note = await _note(repo, session)
    tag = await repo.get_or_create_tag(session, "gone")
    await repo.link_tag(session, note.id, tag.id)
    await repo.add_sources(session, note.id, [{"title": "src", "url": "https://x.io"}])

    assert await repo.purge(session, note.id) is True
    assert await repo.get(session, note.id) is None
    assert await repo.get_sources(session, note.id) == []
    assert await repo.get_tags_for_notes(session, [note.id]) == {note.id: []}
    assert await repo.purge(session, note.id) is False


@pytest.mark.asyncio
async def test_empty_trash_returns_purged_ids(repo, session):
    keep = await _note(repo, session)
    drop = await _note(repo, session)
    await repo.soft_delete(session, drop.id)

    assert await repo.empty_trash(session) == [drop.id]
    assert await repo.get(session, keep.id) is not None
    assert await repo.empty_trash(session) == []


@pytest.mark.asyncio
async def test_keyword_search(repo, session):
    hit = await _note(repo, session, "Async Python", "event loops")
    await _note(repo, session, "Groceries", "milk, eggs")
    trashed = await _note(repo, session, "python trash", "")
    await repo.soft_delete(session, trashed.id)

    results = await repo.search(session, "PYTHON")
    assert [n.id for n in results] == [hit.id]

    assert await repo.search(session, "100%") == []  # wildcard is escaped


@pytest.mark.asyncio
async def test_list_pending_skips_terminal_and_deleted(repo, session):
    pending = await _note(repo, session)
    done = await _note(repo, session)
    trashed = await _note(repo, session)
    await repo.update(session, done.id, {"ai_status": AIStatus.COMPLETED})
    await repo.soft_delete(session, trashed.id)

    assert [n.id for n in await repo.list_pending(session)] == [pending.id]
    assert await repo.list_completed_ids(session) == [done.id]


@pytest.mark.asyncio
async def test_collections_with_counts(repo, collection_repo, session):
    note = await _note(repo, session)
    reading = await collection_repo.create(session, "Reading")
    await collection_repo.create(session, {"name": "Empty", "description": "none"})

    assert await collection_repo.add_note(session, reading.id, note.id) is True
    assert await collection_repo.add_note(session, reading.id, note.id) is False

    counts = {c.name: n for c, n in await collection_repo.list_with_counts(session)}
    assert counts == {"Reading": 1, "Empty": 0}

    reused = await collection_repo.get_or_create(session, "Reading")
    assert reused.id == reading.id

    assert [c.name for c in await collection_repo.get_note_collections(session, note.id)] == [
        "Reading"
    ]
    assert await collection_repo.remove_note(session, reading.id, note.id) is True
    assert await collection_repo.remove(session, reading.id) is True
    assert await collection_repo.get(session, reading.id) is None


@pytest.mark.asyncio
async def test_collection_validation(repo, collection_repo, session):
    with pytest.raises(ValidationError):
        await collection_repo.create(session, "   ")

    reading = await collection_repo.create(session, "Reading")
    with pytest.raises(NotFoundError):
        await collection_repo.add_note(session, reading.id, 9999)
