"""HTTP surface: status codes, camelCase payloads and background processing."""

import httpx
import pytest
import pytest_asyncio

from conftest import seed_document, set_chunk_policy, token_text
from core.domain import DocumentStatus
from main import create_app

PROJECT = "api-project"
HEADERS = {"X-User-Id": "user-1"}


@pytest_asyncio.fixture
async def client(container):
    transport = httpx.ASGITransport(app=create_app(container))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def process_and_wait(client, container, document_id):
    response = await client.post(f"/documents/{document_id}/process")
    assert response.status_code == 202
    await container.runner.join()
    return response.json()


class TestDocuments:
    @pytest.mark.asyncio
    async def test_process_then_poll_status(self, client, container, blob_store):
        doc = await seed_document(container, blob_store, PROJECT, "Alpha", token_text(250))

        accepted = await process_and_wait(client, container, doc.id)

        assert accepted["documentId"] == doc.id
        assert accepted["status"] == "processing"
        task = (await client.get(f"/tasks/{accepted['taskId']}")).json()
        assert task["status"] == "completed"
        assert task["kind"] == "process"

        status = (await client.get(f"/documents/{doc.id}/status")).json()
        assert status["status"] == "completed"
        assert status["processedAt"] is not None
        assert status["errorMessage"] is None

    @pytest.mark.asyncio
    async def test_completed_document_without_force_is_not_requeued(self, client, container, blob_store):
        doc = await seed_document(container, blob_store, PROJECT, "Alpha", "text")
        await process_and_wait(client, container, doc.id)

        again = await client.post(f"/documents/{doc.id}/process")
        forced = await client.post(f"/documents/{doc.id}/process", json={"force": True})
        await container.runner.join()

        assert again.status_code == 200
        assert again.json()["status"] == "completed"
        assert again.json()["taskId"] is None
        assert forced.status_code == 202

    @pytest.mark.asyncio
    async def test_failed_processing_is_visible_in_status(self, client, container, blob_store):
        doc = await seed_document(container, blob_store, PROJECT, "Missing", None)
        await process_and_wait(client, container, doc.id)

        status = (await client.get(f"/documents/{doc.id}/status")).json()

        assert status["status"] == "failed"
        assert status["errorMessage"].startswith("[BLOB_UNAVAILABLE]")

    @pytest.mark.asyncio
    async def test_reprocess_while_processing_conflicts(self, client, container, blob_store):
        doc = await seed_document(container, blob_store, PROJECT, "Busy", "text",
                                  status=DocumentStatus.PROCESSING)

        response = await client.post(f"/documents/{doc.id}/reprocess")

        assert response.status_code == 409
        assert response.json()["detail"]["errorCode"] == "INVALID_TRANSITION"

    @pytest.mark.asyncio
    async def test_unknown_document(self, client):
        response = await client.get("/documents/nope/status")
        assert response.status_code == 404
        assert response.json()["detail"]["errorCode"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_chunks_listing(self, client, container, blob_store):
        await set_chunk_policy(container, PROJECT, size=1000)
        doc = await seed_document(container, blob_store, PROJECT, "Alpha", token_text(250))
        await process_and_wait(client, container, doc.id)

        body = (await client.get(f"/documents/{doc.id}/chunks", params={"limit": 2})).json()

        assert body["total"] == 3
        assert [c["chunkIndex"] for c in body["chunks"]] == [0, 1]
        assert body["chunks"][0]["chunkId"] == f"{doc.id}-chunk-0"
        assert body["chunks"][0]["documentName"] == "Alpha"

    @pytest.mark.asyncio
    async def test_reindex_project(self, client, container, blob_store):
        for name in ("A", "B"):
            await seed_document(container, blob_store, PROJECT, name, f"{name} body text")

        response = await client.post(f"/projects/{PROJECT}/reindex")
        await container.runner.join()

        assert response.status_code == 202
        body = response.json()
        assert body["documentsCount"] == 2
        task = (await client.get(f"/tasks/{body['taskId']}")).json()
        assert task["status"] == "completed"
        assert len(task["result"]["succeeded"]) == 2

    @pytest.mark.asyncio
    async def test_unknown_task(self, client):
        assert (await client.get("/tasks/nope")).status_code == 404


class TestSearch:
    @pytest.mark.asyncio
    async def test_three_modes(self, client, container, blob_store):
        doc = await seed_document(container, blob_store, PROJECT, "fruit.txt", "apples and pears")
        await process_and_wait(client, container, doc.id)
        payload = {"projectId": PROJECT, "query": "apples", "threshold": 0.0}

        for mode, source in (("vector", "vector"), ("keyword", "keyword"), ("hybrid", "hybrid")):
            body = (await client.post(f"/search/{mode}", json=payload)).json()
            assert body["mode"] == mode
            assert body["total"] == 1
            assert body["results"][0]["source"] == source
            assert body["results"][0]["documentName"] == "fruit.txt"
            assert body["results"][0]["snippet"] == "apples and pears"

    @pytest.mark.asyncio
    async def test_validation_errors(self, client):
        blank = await client.post("/search/hybrid", json={"projectId": PROJECT, "query": " "})
        bad_limit = await client.post("/search/vector", json={"projectId": PROJECT, "query": "x", "limit": 0})

        assert blank.status_code == 400
        assert blank.json()["detail"]["errorCode"] == "VALIDATION_FAILED"
        assert bad_limit.status_code == 400


class TestQueries:
    @pytest.mark.asyncio
    async def test_query_feedback_and_history(self, client, container, blob_store):
        await set_chunk_policy(container, PROJECT, size=1000, threshold=0.0)
        doc = await seed_document(container, blob_store, PROJECT, "fruit.txt", "apples grow on trees")
        await process_and_wait(client, container, doc.id)

        answer = await client.post("/queries", headers=HEADERS,
                                   json={"projectId": PROJECT, "query": "apples"})
        assert answer.status_code == 200
        body = answer.json()
        assert body["answer"] == "The answer is in the documents."
        assert body["sources"][0]["documentId"] == doc.id

        feedback = await client.post(f"/queries/{body['id']}/responses/{body['responseId']}/feedback",
                                     json={"rating": 5, "comment": "great"})
        assert feedback.status_code == 200
        assert feedback.json()["rating"] == 5

        detail = (await client.get(f"/queries/{body['id']}")).json()
        assert detail["userId"] == "user-1"
        assert detail["responses"][0]["feedbackRating"] == 5

        listing = (await client.get(f"/projects/{PROJECT}/queries")).json()
        assert [q["id"] for q in listing["queries"]] == [body["id"]]

        similar = (await client.post("/search/similar-queries",
                                     json={"projectId": PROJECT, "query": "apples"})).json()
        assert similar["results"][0]["queryId"] == body["id"]

    @pytest.mark.asyncio
    async def test_delete_query(self, client, container, blob_store):
        await set_chunk_policy(container, PROJECT, size=1000, threshold=0.0)
        doc = await seed_document(container, blob_store, PROJECT, "fruit.txt", "apples grow on trees")
        await process_and_wait(client, container, doc.id)
        body = (await client.post("/queries", headers=HEADERS,
                                  json={"projectId": PROJECT, "query": "apples"})).json()

        deleted = await client.delete(f"/queries/{body['id']}")

        assert deleted.status_code == 204
        assert (await client.get(f"/queries/{body['id']}")).status_code == 404
        assert (await client.get(f"/projects/{PROJECT}/queries")).json()["queries"] == []
        again = await client.delete(f"/queries/{body['id']}")
        assert again.status_code == 404
        assert again.json()["detail"]["errorCode"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_no_relevant_content(self, client):
        response = await client.post("/queries", headers=HEADERS,
                                     json={"projectId": "empty", "query": "anything?"})
        assert response.status_code == 404
        assert response.json()["detail"]["errorCode"] == "NO_RELEVANT_CONTENT"

    @pytest.mark.asyncio
    async def test_user_header_is_required(self, client):
        response = await client.post("/queries", json={"projectId": PROJECT, "query": "x"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_bad_rating(self, client):
        response = await client.post("/queries/q/responses/r/feedback", json={"rating": 9})
        assert response.status_code == 400


class TestProjectSettingsAndHealth:
    @pytest.mark.asyncio
    async def test_settings_round_trip(self, client):
        defaults = (await client.get(f"/projects/{PROJECT}/settings")).json()
        assert defaults["chunkSize"] == 1000

        updated = {"chunkSize": 400, "chunkOverlap": 40, "similarityThreshold": 0.5,
                   "maxDocumentsPerQuery": 3}
        assert (await client.put(f"/projects/{PROJECT}/settings", json=updated)).status_code == 200
        assert (await client.get(f"/projects/{PROJECT}/settings")).json() == updated

    @pytest.mark.asyncio
    async def test_invalid_settings(self, client):
        response = await client.put(f"/projects/{PROJECT}/settings", json={
            "chunkSize": 100, "chunkOverlap": 100, "similarityThreshold": 0.5, "maxDocumentsPerQuery": 3,
        })
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_health(self, client):
        body = (await client.get("/health")).json()
        assert body["status"] == "healthy"
        assert body["chunksIndexed"] == 0
        assert body["pendingTasks"] == 0
