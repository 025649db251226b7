"""Tests for the sync engine."""

import asyncio

import pytest

from memdex.core.enumeration import MemorySource, SyncPhase
from memdex.core.schema import SessionTranscript, SyncOptions
from memdex.core.sync import PARTIAL_HASH_PREFIX


async def _chunk_ids(store, path: str, source: MemorySource = MemorySource.MEMORY) -> list[int]:
    return [chunk.id for chunk in await store.get_file_chunks(path, source)]


async def _assert_index_matches_store(store, vector_index, model_key: str):
    """Vector index holds exactly the committed embeddings."""
    stored_ids = {chunk_id for chunk_id, _, _ in await store.list_embeddings(model_key)}
    assert len(vector_index) == len(stored_ids)
    assert all(chunk_id in vector_index for chunk_id in stored_ids)


async def test_sync_is_idempotent(sync_engine, store, vector_index, embedding_model, memory_dir):
    (memory_dir / "a.md").write_text("# Alpha\n\nalpha notes\n\n# Beta\n\nbeta notes", encoding="utf-8")
    (memory_dir / "b.txt").write_text("plain text memory", encoding="utf-8")

    first = await sync_engine.sync()

    assert first.phase == SyncPhase.COMPLETE
    assert first.files_processed == 2
    assert first.files_skipped == 0
    assert first.chunks_created == 3
    ids_a = await _chunk_ids(store, "a.md")
    ids_b = await _chunk_ids(store, "b.txt")

    second = await sync_engine.sync()

    assert second.files_skipped == 2
    assert second.chunks_created == 0
    assert second.embeddings_generated == 0
    assert await _chunk_ids(store, "a.md") == ids_a
    assert await _chunk_ids(store, "b.txt") == ids_b
    await _assert_index_matches_store(store, vector_index, embedding_model.model_key)


async def test_changed_file_is_reindexed(sync_engine, store, vector_index, embedding_model, memory_dir):
    (memory_dir / "a.md").write_text("original wording", encoding="utf-8")
    (memory_dir / "b.md").write_text("untouched file", encoding="utf-8")
    await sync_engine.sync()
    old_a = await _chunk_ids(store, "a.md")
    old_b = await _chunk_ids(store, "b.md")

    (memory_dir / "a.md").write_text("rewritten wording", encoding="utf-8")
    progress = await sync_engine.sync()

    assert progress.files_skipped == 1
    new_a = await _chunk_ids(store, "a.md")
    assert new_a and set(new_a).isdisjoint(old_a)
    assert all(chunk_id not in vector_index for chunk_id in old_a)
    assert await _chunk_ids(store, "b.md") == old_b
    assert [c.text for c in await store.get_file_chunks("a.md", MemorySource.MEMORY)] == ["rewritten wording"]
    await _assert_index_matches_store(store, vector_index, embedding_model.model_key)


async def test_forced_sync_reuses_cached_embeddings(sync_engine, store, vector_index, embedding_model, memory_dir):
    for i in range(5):
        (memory_dir / f"note{i}.md").write_text(f"note number {i} about topic {i}", encoding="utf-8")
    await sync_engine.sync()
    chunks_before = (await store.get_stats())["total_chunks"]
    calls_before = embedding_model.calls

    progress = await sync_engine.sync(SyncOptions(force=True, reason="test"))

    assert progress.files_processed == 5
    assert progress.files_skipped == 0
    assert progress.embeddings_generated == 0
    assert progress.embeddings_cached == chunks_before
    assert embedding_model.calls == calls_before
    assert (await store.get_stats())["total_chunks"] == chunks_before
    await _assert_index_matches_store(store, vector_index, embedding_model.model_key)


async def test_embedding_failure_drops_only_that_chunk(sync_engine, store, vector_index, embedding_model, memory_dir):
    text = "# One\n\nalpha body\n\n# Two\n\nSECOND body\n\n# Three\n\ngamma body"
    (memory_dir / "doc.md").write_text(text, encoding="utf-8")
    (memory_dir / "other.md").write_text("an unrelated file", encoding="utf-8")
    embedding_model.fail_on = "SECOND"

    progress = await sync_engine.sync()

    assert progress.chunks_failed == 1
    assert progress.files_failed == 0
    chunks = await store.get_file_chunks("doc.md", MemorySource.MEMORY)
    assert [c.start_line for c in chunks] == [1, 9]
    assert (await store.get_file("doc.md", MemorySource.MEMORY)).hash.startswith(PARTIAL_HASH_PREFIX)
    assert await _chunk_ids(store, "other.md")

    # The partially indexed file is retried on the next sync
    embedding_model.fail_on = None
    retry = await sync_engine.sync()

    assert retry.files_skipped == 1
    chunks = await store.get_file_chunks("doc.md", MemorySource.MEMORY)
    assert [c.start_line for c in chunks] == [1, 5, 9]
    assert not (await store.get_file("doc.md", MemorySource.MEMORY)).hash.startswith(PARTIAL_HASH_PREFIX)
    await _assert_index_matches_store(store, vector_index, embedding_model.model_key)


async def test_deleted_file_is_purged(sync_engine, store, vector_index, embedding_model, memory_dir):
    (memory_dir / "keep.md").write_text("keep me", encoding="utf-8")
    (memory_dir / "gone.md").write_text("delete me soon", encoding="utf-8")
    await sync_engine.sync()
    gone_ids = await _chunk_ids(store, "gone.md")

    (memory_dir / "gone.md").unlink()
    progress = await sync_engine.sync()

    assert progress.files_removed == 1
    assert await store.get_file("gone.md", MemorySource.MEMORY) is None
    assert all(chunk_id not in vector_index for chunk_id in gone_ids)
    assert await store.get_file("keep.md", MemorySource.MEMORY) is not None
    await _assert_index_matches_store(store, vector_index, embedding_model.model_key)


async def test_unreadable_file_is_skipped(sync_engine, store, memory_dir):
    (memory_dir / "good.txt").write_text("readable content", encoding="utf-8")
    (memory_dir / "bad.txt").write_bytes(b"\xff\xfe\x00broken")

    progress = await sync_engine.sync()

    assert progress.files_failed == 1
    assert progress.files_processed == 2
    assert await store.get_file("bad.txt", MemorySource.MEMORY) is None
    assert await store.get_file("good.txt", MemorySource.MEMORY) is not None


async def test_only_allowed_extensions_are_indexed(sync_engine, store, memory_dir):
    (memory_dir / "script.py").write_text("print('hi')", encoding="utf-8")
    (memory_dir / ".hidden.md").write_text("hidden notes", encoding="utf-8")
    (memory_dir / "sub").mkdir()
    (memory_dir / "sub" / "deep.md").write_text("nested notes", encoding="utf-8")

    await sync_engine.sync()

    assert [f.path for f in await store.list_files(MemorySource.MEMORY)] == ["sub/deep.md"]


async def test_sessions_are_indexed_as_rendered_text(sync_engine, store, sessions_dir):
    transcript = SessionTranscript(session_key="chat-1", title="Planning")
    transcript.add_user_message("what is on the roadmap")
    transcript.add_assistant_message("the search rewrite")
    await sync_engine.session_store.save(transcript)
    (sessions_dir / "broken.json").write_text("{not json", encoding="utf-8")

    progress = await sync_engine.sync()

    assert progress.files_failed == 1
    chunks = await store.get_file_chunks("chat-1.json", MemorySource.SESSIONS)
    text = "\n".join(c.text for c in chunks)
    assert "**User**" in text
    assert "the search rewrite" in text
    assert chunks[0].start_line == 1


async def test_sync_sources_limit_the_scan(sync_engine, store, memory_dir):
    (memory_dir / "a.md").write_text("memory only", encoding="utf-8")
    transcript = SessionTranscript(session_key="s1")
    transcript.add_user_message("session only")
    await sync_engine.session_store.save(transcript)

    await sync_engine.sync(SyncOptions(sources=[MemorySource.SESSIONS]))

    assert await store.list_files(MemorySource.MEMORY) == []
    assert len(await store.list_files(MemorySource.SESSIONS)) == 1


async def test_progress_reports_phases_in_order(sync_engine, memory_dir):
    (memory_dir / "a.md").write_text("first", encoding="utf-8")
    (memory_dir / "b.md").write_text("second", encoding="utf-8")
    events = []

    await sync_engine.sync(progress=events.append)

    phases = []
    for event in events:
        if not phases or phases[-1] != event.phase:
            phases.append(event.phase)
    assert phases == [
        SyncPhase.SCANNING,
        SyncPhase.INDEXING_MEMORY,
        SyncPhase.INDEXING_SESSIONS,
        SyncPhase.LOADING_VECTOR_INDEX,
        SyncPhase.COMPLETE,
    ]
    assert events[-1].progress_percent == 100.0
    # Callbacks receive snapshots, not the live state
    assert len({id(event) for event in events}) == len(events)


async def test_cancelled_sync_leaves_index_consistent(sync_engine, store, vector_index, embedding_model, memory_dir):
    """Files committed before cancellation stay; the index mirrors the store."""
    for name in ("a.md", "b.md", "c.md"):
        (memory_dir / name).write_text(f"content of {name}", encoding="utf-8")

    def cancel_on_second_file(event):
        if event.current_file == "b.md":
            raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await sync_engine.sync(progress=cancel_on_second_file)

    assert await store.get_file("a.md", MemorySource.MEMORY) is not None
    assert await store.get_file("b.md", MemorySource.MEMORY) is None
    assert not sync_engine.is_syncing
    await _assert_index_matches_store(store, vector_index, embedding_model.model_key)

    progress = await sync_engine.sync()
    assert progress.files_skipped == 1
    assert len(await store.list_files()) == 3


async def test_index_file_and_remove_file(sync_engine, store, vector_index, memory_dir, tmp_path):
    path = memory_dir / "direct.md"
    path.write_text("indexed without a scan", encoding="utf-8")

    progress = await sync_engine.index_file(path, MemorySource.MEMORY)

    assert progress.chunks_created == 1
    ids = await _chunk_ids(store, "direct.md")
    assert all(chunk_id in vector_index for chunk_id in ids)

    assert await sync_engine.remove_file("direct.md", MemorySource.MEMORY) == 1
    assert await store.get_file("direct.md", MemorySource.MEMORY) is None
    assert len(vector_index) == 0

    outside = tmp_path / "outside.md"
    outside.write_text("not under the memory dir", encoding="utf-8")
    with pytest.raises(ValueError):
        await sync_engine.index_file(outside, MemorySource.MEMORY)


async def test_clear_wipes_store_and_index(sync_engine, store, vector_index, memory_dir):
    (memory_dir / "a.md").write_text("something to forget", encoding="utf-8")
    await sync_engine.sync()

    await sync_engine.clear()

    assert len(vector_index) == 0
    assert (await store.get_stats())["total_chunks"] == 0
