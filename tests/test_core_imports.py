import os

os.environ.setdefault("ARCHIVE_AUDIT_ENABLED", "true")


def test_core_imports():
    import archive_core.context  # noqa: F401
    import archive_core.models  # noqa: F401
    import archive_core.services.entity_service  # noqa: F401
    import archive_core.services.ingestion  # noqa: F401


def test_core_smoke_lifecycle(archive_db, content_repo, make_document, make_edge):
    import archive_core.services.entity_service as entity_service
    import archive_core.services.ingestion as ingestion

    content_repo.write_entity(make_document("proj-smoke", "project", title="Smoke project"))
    content_repo.write_entity(make_document("method-smoke", "method", title="Smoke method"))
    content_repo.write_edges([make_edge("e-smoke", "proj-smoke", "method-smoke", "implements")])

    report = ingestion.run_full_ingestion(content_repo.root)
    assert report["entities"] == {"total": 2, "valid": 2, "invalid": 0, "updated": 2}
    assert report["edges"] == {"total": 1, "valid": 1, "invalid": 0}

    search_result = entity_service.search_entities(query="smoke", mode="public")
    assert search_result["total"] == 2

    detail = entity_service.get_by_id("proj-smoke", mode="public")
    assert [edge["id"] for edge in detail["edges"]["outgoing"]] == ["e-smoke"]

    delete_result = ingestion.delete_entity("method-smoke", reason="smoke cleanup")
    assert delete_result["deleted"] is True

    search_after = entity_service.search_entities(query="smoke", mode="public")
    assert search_after["total"] == 1
    graph = entity_service.get_graph_data(mode="public")
    assert graph["edges"] == []

    rerun = ingestion.run_full_ingestion(content_repo.root)
    assert rerun["entities"]["updated"] == 1
    assert entity_service.get_by_id("method-smoke", mode="public") is not None
