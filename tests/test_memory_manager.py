"""End-to-end tests for MemoryIndexManager."""

import json

import pytest

from hybridmem.core.exceptions import MemoryConfigError
from hybridmem.core.memory_manager import MemoryIndexManager, MemorySearchConfig, get_memory_index_manager
from hybridmem.core.memory_manager.manager import FTS_ONLY_MODEL, INDEX_CACHE
from hybridmem.core.schema import FileMetadata


def write_memory(workspace, name, text):
    path = workspace / "memory" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def write_session(workspace, agent_id, session_id, messages):
    path = workspace / "sessions" / agent_id / f"{session_id}.jsonl"
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [json.dumps({"type": "session", "id": session_id})]
    for role, content in messages:
        lines.append(json.dumps({"type": "message", "message": {"role": role, "content": content}}))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


# ----------------------------------------------------------------------------
# Sync
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sync_indexes_memory_files_and_reports_progress(manager, workspace):
    write_memory(workspace, "deploy.md", "# Deploy\n\nRollback with the blue green switch.\n")
    (workspace / "MEMORY.md").write_text("Team prefers tabs over spaces.\n", encoding="utf-8")
    updates = []

    await manager.sync(reason="test", progress=updates.append)

    status = manager.status()
    assert status.files == 2
    assert status.chunks >= 2
    assert status.dirty is False
    assert updates[0].total == 2
    assert updates[0].label == "Indexing memory files..."
    assert (updates[-1].completed, updates[-1].total) == (2, 2)


@pytest.mark.asyncio
async def test_unchanged_files_are_not_reembedded(manager, workspace, fake_embedding):
    write_memory(workspace, "a.md", "alpha beta gamma\n")
    await manager.sync()
    calls = fake_embedding.calls

    manager.dirty = True
    await manager.sync()

    assert fake_embedding.calls == calls


@pytest.mark.asyncio
async def test_removed_files_are_dropped(manager, workspace):
    keep = write_memory(workspace, "keep.md", "kept note about kubernetes\n")
    gone = write_memory(workspace, "gone.md", "obsolete note about mainframes\n")
    await manager.sync()
    assert manager.status().files == 2

    gone.unlink()
    await manager.sync(force=True)

    assert manager.status().files == 1
    assert await manager.store.list_files("memory") == [f"memory/{keep.name}"]
    assert "memory/gone.md" not in {r.path for r in await manager.search("mainframes")}


@pytest.mark.asyncio
async def test_settings_change_forces_full_reindex(workspace, settings, fake_embedding):
    write_memory(workspace, "notes.md", "some durable fact\n")
    first = MemoryIndexManager("agent-1", str(workspace), settings, embedding_model=fake_embedding)
    await first.start()
    await first.sync()
    await first.close()

    reopened_same = MemoryIndexManager("agent-1", str(workspace), settings, embedding_model=fake_embedding)
    await reopened_same.start()
    assert reopened_same.needs_full_reindex is False
    await reopened_same.close()

    changed = settings.model_copy(update={"chunk_tokens": 128})
    reopened = MemoryIndexManager("agent-1", str(workspace), changed, embedding_model=fake_embedding)
    await reopened.start()
    try:
        assert reopened.needs_full_reindex is True
        await reopened.sync()
        assert reopened.needs_full_reindex is False
        assert reopened.status().files == 1
        meta = await reopened.store.read_meta()
        assert meta.chunk_tokens == 128
    finally:
        await reopened.close()


# ----------------------------------------------------------------------------
# Search
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_hybrid_search_finds_relevant_chunk(manager, workspace):
    write_memory(workspace, "deploy.md", "Rollback uses the blue green switch.\n")
    write_memory(workspace, "food.md", "Lunch order is pizza on fridays.\n")

    results = await manager.search("blue green rollback")

    assert results
    top = results[0]
    assert top.path == "memory/deploy.md"
    assert top.vector_score is not None
    assert top.text_score is not None
    assert top.score == pytest.approx(0.5 * top.vector_score + 0.5 * top.text_score)
    assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)


@pytest.mark.asyncio
async def test_search_limits_and_thresholds(manager, workspace):
    for i in range(6):
        write_memory(workspace, f"note{i}.md", f"shared keyword note number {i}\n")

    assert len(await manager.search("shared keyword", max_results=3)) == 3
    assert await manager.search("shared keyword", max_results=0) == []
    assert await manager.search("shared keyword", min_score=1.01) == []
    assert await manager.search("   ") == []


@pytest.mark.asyncio
async def test_repeated_query_reuses_query_embedding(manager, workspace, fake_embedding):
    write_memory(workspace, "ops.md", "The deploy key rotates every month.\n")
    await manager.sync()
    calls = fake_embedding.calls

    await manager.search("deploy key")
    assert fake_embedding.calls == calls + 1
    await manager.search("deploy key")
    assert fake_embedding.calls == calls + 1

    query_cache = manager.status().query_cache
    assert (query_cache.entries, query_cache.hits, query_cache.misses) == (1, 1, 1)


@pytest.mark.asyncio
async def test_failed_query_embedding_is_not_cached(manager, workspace, fake_embedding):
    write_memory(workspace, "ops.md", "The deploy key rotates every month.\n")
    await manager.sync()

    fake_embedding.fail = True
    await manager.search("deploy key")
    fake_embedding.fail = False
    calls = fake_embedding.calls
    await manager.search("deploy key")

    assert fake_embedding.calls == calls + 1
    assert len(manager.query_cache) == 1


@pytest.mark.asyncio
async def test_vector_only_search_after_enabling_vectors(workspace, settings, fake_embedding):
    """An index built with vector search off answers vector-only queries once it is turned on."""
    write_memory(workspace, "notes.md", "the orchestrator coordinates agents\n")
    plain = MemoryIndexManager(
        "agent-1",
        str(workspace),
        settings.model_copy(update={"vector_enabled": False}),
        embedding_model=fake_embedding,
    )
    await plain.start()
    await plain.sync()
    await plain.close()

    reopened = MemoryIndexManager(
        "agent-1",
        str(workspace),
        settings.model_copy(update={"hybrid_enabled": False}),
        embedding_model=fake_embedding,
    )
    await reopened.start()
    try:
        assert reopened.needs_full_reindex is False
        results = await reopened.search("orchestrator coordinates agents")
        assert [r.path for r in results] == ["memory/notes.md"]
    finally:
        await reopened.close()


@pytest.mark.asyncio
async def test_negative_max_results_rejected(manager):
    with pytest.raises(MemoryConfigError):
        await manager.search("anything", max_results=-1)


@pytest.mark.asyncio
async def test_search_survives_embedding_outage(manager, workspace, fake_embedding):
    write_memory(workspace, "db.md", "Postgres replicas lag during vacuum.\n")
    await manager.sync()

    fake_embedding.fail = True
    degraded = await manager.search("postgres vacuum")

    assert degraded
    assert degraded[0].path == "memory/db.md"
    assert degraded[0].vector_score is None
    assert degraded[0].score == degraded[0].text_score

    fake_embedding.fail = False
    recovered = await manager.search("postgres vacuum")

    assert recovered[0].path == "memory/db.md"
    assert recovered[0].vector_score is not None


@pytest.mark.asyncio
async def test_sync_failure_during_search_is_not_raised(manager, workspace, fake_embedding):
    write_memory(workspace, "new.md", "freshly written note\n")
    fake_embedding.fail = True

    assert await manager.search("freshly written") == []
    assert manager.dirty is True


@pytest.mark.asyncio
async def test_keyword_only_manager_without_provider(workspace, settings):
    write_memory(workspace, "ops.md", "Pager rotation switches on mondays.\n")
    mgr = MemoryIndexManager("agent-1", str(workspace), settings)
    await mgr.start()
    try:
        assert mgr.provider_model == FTS_ONLY_MODEL
        results = await mgr.search("pager rotation")
        assert [r.path for r in results] == ["memory/ops.md"]
        assert results[0].score == results[0].text_score
        assert results[0].vector_score is None
        assert mgr.status().cache.enabled is False
    finally:
        await mgr.close()


@pytest.mark.asyncio
async def test_negative_cache_cleared_by_sync(workspace, settings):
    write_memory(workspace, "base.md", "unrelated starting content\n")
    mgr = MemoryIndexManager("agent-1", str(workspace), settings)
    await mgr.start()
    try:
        assert await mgr.search("zeppelin") == []
        assert len(mgr.negative_cache) == 1

        # A search on a clean index keeps the cached miss
        assert await mgr.search("zeppelin") == []
        assert mgr.negative_cache.hits == 1

        write_memory(workspace, "airship.md", "The zeppelin docked at noon.\n")
        await mgr.sync(force=True)

        assert len(mgr.negative_cache) == 0
        assert [r.path for r in await mgr.search("zeppelin")] == ["memory/airship.md"]
    finally:
        await mgr.close()


@pytest.mark.asyncio
async def test_frontmatter_lines_are_counted(manager, workspace):
    write_memory(workspace, "tagged.md", "---\nnamespace: ops\n---\nfirst body line mentions grafana\n")

    results = await manager.search("grafana")

    assert results[0].start_line == 4
    assert results[0].metadata.namespace == "ops"


# ----------------------------------------------------------------------------
# Sessions
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_session_transcripts_are_indexed_per_session(workspace, fake_embedding):
    settings = MemorySearchConfig(
        store_path="index/memory.db",
        sources=["memory", "sessions"],
        chunk_tokens=64,
        chunk_overlap=8,
        db_retry_base_delay=0.0,
    )
    write_session(
        workspace,
        "agent-1",
        "s1",
        [("user", "How do I restart the ingest worker?"), ("assistant", [{"type": "text", "text": "Run  make  restart."}])],
    )
    write_session(workspace, "agent-1", "s2", [("user", "Restart the ingest worker again"), ("system", "ignored")])
    write_memory(workspace, "worker.md", "The ingest worker restarts nightly.\n")

    mgr = MemoryIndexManager("agent-1", str(workspace), settings, embedding_model=fake_embedding)
    await mgr.start()
    try:
        all_results = await mgr.search("ingest worker restart")
        assert {r.source for r in all_results} == {"memory", "sessions"}

        scoped = await mgr.search("ingest worker restart", session_key="s1")
        assert scoped
        assert {r.metadata.session_id for r in scoped} == {"s1"}
        assert {r.path for r in scoped} == {"sessions/agent-1/s1.jsonl"}
        assert "s1" in mgr.session_warm

        chunks = await mgr.store.get_chunks("sessions/agent-1/s1.jsonl", "sessions")
        assert chunks[0].text == "User: How do I restart the ingest worker?\nAssistant: Run make restart."

        memory_only = await mgr.search("ingest worker restart", sources=["memory"])
        assert {r.source for r in memory_only} == {"memory"}
    finally:
        await mgr.close()


# ----------------------------------------------------------------------------
# Ingestion API
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ingest_files_and_removed_paths(manager):
    records = [
        FileMetadata(
            path="imports/a.md",
            hash="hash-a",
            mtime_ms=0,
            size=10,
            content="---\nnamespace: crm\n---\nCustomer prefers email follow ups.\n",
        ),
        FileMetadata(path="imports/b.md", hash="hash-b", mtime_ms=0, size=10, content="Second imported note.\n"),
    ]

    assert await manager.ingest_files(records) == 2
    assert await manager.ingest_files(records) == 0

    results = await manager.search("email follow ups", namespace="crm")
    assert [r.path for r in results] == ["imports/a.md"]

    assert await manager.ingest_files([], removed=["imports/b.md", "imports/unknown.md"]) == 0
    assert await manager.store.get_file_metadata("imports/b.md", "memory") is None
    assert manager.status().files == 1


@pytest.mark.asyncio
async def test_ingest_file_requires_content_or_path(manager):
    with pytest.raises(MemoryConfigError):
        await manager.ingest_files([FileMetadata(path="x.md", hash="h", mtime_ms=0, size=0)])


@pytest.mark.asyncio
async def test_ingested_files_survive_workspace_sync(workspace, settings, fake_embedding):
    write_memory(workspace, "notes.md", "release trains leave every tuesday\n")
    record = FileMetadata(
        path="imports/crm.md",
        hash="hash-crm",
        mtime_ms=0,
        size=10,
        content="Customer prefers email follow ups.\n",
    )

    mgr = MemoryIndexManager("agent-1", str(workspace), settings, embedding_model=fake_embedding)
    await mgr.start()
    try:
        assert mgr.needs_full_reindex is True
        assert await mgr.ingest_files([record]) == 1
        assert mgr.needs_full_reindex is False

        await mgr.sync()
        await mgr.sync(force=True)

        assert sorted(await mgr.store.list_files("memory")) == ["imports/crm.md", "memory/notes.md"]
        assert await mgr.store.list_files("memory", include_external=False) == ["memory/notes.md"]
        assert (await mgr.store.get_file_metadata("imports/crm.md", "memory")).external is True
    finally:
        await mgr.close()

    reopened = MemoryIndexManager("agent-1", str(workspace), settings, embedding_model=fake_embedding)
    await reopened.start()
    try:
        assert reopened.needs_full_reindex is False
        results = await reopened.search("email follow ups")
        assert "imports/crm.md" in [r.path for r in results]
        assert reopened.status().files == 2
    finally:
        await reopened.close()


# ----------------------------------------------------------------------------
# Lifecycle
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_close_is_idempotent_and_blocks_further_use(workspace, settings, fake_embedding):
    mgr = MemoryIndexManager("agent-1", str(workspace), settings, embedding_model=fake_embedding)
    await mgr.start()

    await mgr.close()
    await mgr.close()

    assert mgr.conn is None
    with pytest.raises(RuntimeError):
        await mgr.search("anything")
    with pytest.raises(RuntimeError):
        await mgr.sync()
    with pytest.raises(RuntimeError):
        await mgr.start()


@pytest.mark.asyncio
async def test_unstarted_manager(workspace, settings):
    mgr = MemoryIndexManager("agent-1", str(workspace), settings)

    with pytest.raises(RuntimeError):
        await mgr.search("anything")
    await mgr.close()


@pytest.mark.asyncio
async def test_status_snapshot(manager, workspace):
    write_memory(workspace, "a.md", "status check content\n")
    await manager.sync()

    status = manager.status()

    assert status.agent_id == "agent-1"
    assert status.provider == "fake"
    assert status.model == "fake-embed"
    assert status.sources == ["memory"]
    assert status.fts.available is True
    assert status.db_path.endswith("memory.db")
    assert status.cache.enabled is True
    assert status.cache.entries >= 1
    assert status.query_cache.entries == 0
    assert status.negative_cache.entries == 0


@pytest.mark.asyncio
async def test_store_and_embedding_cache_share_one_lock(manager):
    assert manager.store.lock is manager.embedding_cache.lock


@pytest.mark.asyncio
async def test_get_memory_index_manager_reuses_instance(workspace, settings, fake_embedding):
    first = await get_memory_index_manager("agent-1", str(workspace), settings, embedding_model=fake_embedding)
    try:
        second = await get_memory_index_manager("agent-1", str(workspace), settings, embedding_model=fake_embedding)
        assert second is first
    finally:
        await first.close()

    assert first not in INDEX_CACHE.values()
    third = await get_memory_index_manager("agent-1", str(workspace), settings, embedding_model=fake_embedding)
    try:
        assert third is not first
    finally:
        await third.close()
