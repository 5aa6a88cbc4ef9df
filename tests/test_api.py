import json
from datetime import datetime, timedelta

from config import MIB
from conftest import make_csv_bytes, make_image_bytes
from models.dataset_db_model import DatasetDB, utcnow
from services.chunk_session_service import chunk_key
from services.ingestion_service import COMPLETING, completion_key
from services.preview_cache import preview_key


def _init(client, filename, size, mime=""):
    resp = client.post("/upload/init", json={"filename": filename, "fileSize": size, "mimeType": mime})
    assert resp.status_code == 200, resp.text
    return resp.json()


def _send(client, plan, index, data, filename, size, mime=""):
    return client.post(
        "/upload/chunk",
        data={
            "uploadId": plan["uploadId"],
            "chunkIndex": str(index),
            "totalChunks": str(plan["totalChunks"]),
            "filename": filename,
            "fileSize": str(size),
            "mimeType": mime,
        },
        files={"chunk": (filename, data, "application/octet-stream")},
    )


def _upload(client, filename, content, mime="", order=None):
    plan = _init(client, filename, len(content), mime)
    size = plan["chunkSize"]
    last = None
    for index in order or range(plan["totalChunks"]):
        last = _send(client, plan, index, content[index * size:(index + 1) * size], filename, len(content), mime)
    return plan, last


def _sized_csv(size: int) -> bytes:
    lines = [b"id,value\n"]
    total = len(lines[0])
    i = 0
    while total < size - 200:
        line = f"{i},{'x' * 50}\n".encode()
        lines.append(line)
        total += len(line)
        i += 1
    tail = f"{i},".encode()
    lines.append(tail + b"y" * (size - total - len(tail) - 1) + b"\n")
    return b"".join(lines)


def test_root(client):
    assert client.get("/").status_code == 200


def test_init_returns_plan(client):
    body = _init(client, "big.csv", 60 * MIB, "text/csv")
    assert body["chunkSize"] == 5 * MIB
    assert body["totalChunks"] == 12
    assert body["uploadId"]


def test_init_rejects_files_over_one_gib(client, staging_store):
    resp = client.post("/upload/init", json={"filename": "x.csv", "fileSize": 1_073_741_825})
    assert resp.status_code == 413
    assert "1GB" in resp.json()["error"]
    assert len(staging_store) == 0


def test_init_requires_fields(client):
    assert client.post("/upload/init", json={"filename": "x.csv"}).status_code == 422


def test_out_of_order_upload_end_to_end(client, record_store):
    content = _sized_csv(12 * MIB)
    assert len(content) == 12 * MIB

    plan = _init(client, "big.csv", len(content), "text/csv")
    assert (plan["chunkSize"], plan["totalChunks"]) == (2 * MIB, 6)

    size = plan["chunkSize"]
    responses = []
    for index in (3, 0, 5, 1, 4, 2):
        resp = _send(client, plan, index, content[index * size:(index + 1) * size], "big.csv", len(content), "text/csv")
        assert resp.status_code == 200, resp.text
        responses.append(resp.json())

    assert [r["isComplete"] for r in responses] == [False] * 5 + [True]
    assert [r["progress"]["uploadedChunks"] for r in responses] == [1, 2, 3, 4, 5, 6]
    final = responses[-1]
    assert final["progress"]["percentage"] == 100
    assert final["previewUrl"] == f"/preview/{final['datasetId']}"

    record = record_store.get(final["datasetId"])
    assert record.content == content
    assert record.file_size == 12 * MIB
    assert record.status == "pending"
    assert record.batch_info["totalBatches"] == 6

    preview = client.get(f"/datasets/{final['datasetId']}/preview").json()
    assert preview["fileType"] == "dataset"
    assert preview["preview"]["headers"] == ["id", "value"]
    assert len(preview["preview"]["rows"]) == 10
    assert preview["preview"]["totalRows"] == content.count(b"\n") - 1


def test_duplicate_chunk_does_not_double_count(client):
    content = make_csv_bytes(10)
    plan = _init(client, "tiny.csv", 3 * MIB)
    first = _send(client, plan, 0, content, "tiny.csv", 3 * MIB).json()
    again = _send(client, plan, 0, content, "tiny.csv", 3 * MIB).json()

    assert first["progress"]["uploadedChunks"] == again["progress"]["uploadedChunks"] == 1
    assert not again["isComplete"]


def test_progress_endpoint(client):
    plan = _init(client, "a.csv", 5 * MIB)
    _send(client, plan, 1, b"a,b\n", "a.csv", 5 * MIB)

    body = client.get(f"/upload/progress/{plan['uploadId']}").json()
    assert body == {"uploadedChunks": 1, "totalChunks": 3, "percentage": 33, "isComplete": False}

    assert client.get("/upload/progress/unknown").status_code == 404


def test_progress_reports_dataset_after_completion(client, staging_store):
    plan, last = _upload(client, "small.csv", make_csv_bytes(3), "text/csv")
    body = client.get(f"/upload/progress/{plan['uploadId']}").json()

    assert body["isComplete"] is True
    assert body["datasetId"] == last.json()["datasetId"]
    # Chunks and session metadata are cleaned up after completion.
    assert staging_store.get(chunk_key(plan["uploadId"], 0)) is None


def test_chunk_for_unknown_session_without_metadata_is_404(client):
    resp = client.post(
        "/upload/chunk",
        data={"uploadId": "ghost", "chunkIndex": "0"},
        files={"chunk": ("x", b"data", "application/octet-stream")},
    )
    assert resp.status_code == 404


def test_chunk_bootstraps_session_when_init_was_lost(client):
    content = make_csv_bytes(4)
    resp = client.post(
        "/upload/chunk",
        data={
            "uploadId": "late",
            "chunkIndex": "0",
            "totalChunks": "1",
            "filename": "late.csv",
            "fileSize": str(len(content)),
            "mimeType": "text/csv",
        },
        files={"chunk": ("late.csv", content, "application/octet-stream")},
    )
    assert resp.status_code == 200
    assert resp.json()["isComplete"] is True


def test_missing_chunk_blob_fails_completion_without_dataset(client, staging_store, record_store):
    content = b"a,b\n" + b"1,2\n" * (MIB // 2)  # just over 2 MiB: two chunks
    plan = _init(client, "gap.csv", len(content), "text/csv")
    size = plan["chunkSize"]
    _send(client, plan, 0, content[:size], "gap.csv", len(content), "text/csv")
    staging_store.delete(chunk_key(plan["uploadId"], 0))

    resp = _send(client, plan, 1, content[size:], "gap.csv", len(content), "text/csv")

    assert resp.status_code == 400
    assert resp.json()["chunkIndex"] == 0
    assert record_store.find_by_staging_ref(plan["uploadId"]) is None

    # Re-sending the missing chunk completes the upload.
    retry = _send(client, plan, 0, content[:size], "gap.csv", len(content), "text/csv")
    assert retry.status_code == 200
    assert retry.json()["isComplete"] is True


def _dataset_count(record_store) -> int:
    with record_store.session_factory() as db:
        return db.query(DatasetDB).count()


def test_resending_final_chunk_returns_existing_dataset(client, record_store):
    content = make_csv_bytes(5)
    plan = _init(client, "once.csv", len(content), "text/csv")

    first = _send(client, plan, 0, content, "once.csv", len(content), "text/csv").json()
    again = _send(client, plan, 0, content, "once.csv", len(content), "text/csv").json()

    assert again["isComplete"] is True
    assert again["datasetId"] == first["datasetId"]
    assert again["previewUrl"] == first["previewUrl"]
    assert _dataset_count(record_store) == 1


def test_resending_chunk_after_completion_keeps_final_progress(client, record_store):
    content = b"a,b\n" + b"1,2\n" * (MIB // 2)
    plan, last = _upload(client, "pair.csv", content, "text/csv")
    assert plan["totalChunks"] == 2
    dataset_id = last.json()["datasetId"]

    size = plan["chunkSize"]
    resend = _send(client, plan, 0, content[:size], "pair.csv", len(content), "text/csv").json()

    assert resend["datasetId"] == dataset_id
    assert resend["progress"]["uploadedChunks"] == 2
    progress = client.get(f"/upload/progress/{plan['uploadId']}").json()
    assert progress == {
        "uploadedChunks": 2,
        "totalChunks": 2,
        "percentage": 100,
        "isComplete": True,
        "datasetId": dataset_id,
    }
    assert _dataset_count(record_store) == 1


def test_resend_after_completion_marker_expired_finds_dataset_by_upload(client, staging_store, record_store):
    content = make_csv_bytes(5)
    plan, last = _upload(client, "late-retry.csv", content, "text/csv")
    staging_store.delete(completion_key(plan["uploadId"]))

    again = _send(client, plan, 0, content, "late-retry.csv", len(content), "text/csv").json()

    assert again["datasetId"] == last.json()["datasetId"]
    assert _dataset_count(record_store) == 1


def test_chunk_while_upload_is_completing_does_not_ingest_twice(client, staging_store, record_store):
    content = b"a,b\n" + b"1,2\n" * (MIB // 2)
    plan = _init(client, "busy.csv", len(content), "text/csv")
    size = plan["chunkSize"]
    _send(client, plan, 0, content[:size], "busy.csv", len(content), "text/csv")
    staging_store.set(completion_key(plan["uploadId"]), COMPLETING, 60)

    resp = _send(client, plan, 1, content[size:], "busy.csv", len(content), "text/csv")

    assert resp.status_code == 200
    body = resp.json()
    assert body["isComplete"] is False
    assert body["message"] == "Upload is being finalized"
    assert "datasetId" not in body
    assert _dataset_count(record_store) == 0


def test_image_upload_creates_image_preview(client, record_store):
    content = make_image_bytes(1000, 500)
    _, last = _upload(client, "pic.png", content, "image/png")
    dataset_id = last.json()["datasetId"]

    body = client.get(f"/datasets/{dataset_id}/preview").json()
    assert body["fileType"] == "image"
    assert body["preview"]["type"] == "image"
    assert body["preview"]["dimensions"] == {"width": 1000, "height": 500}
    assert record_store.get(dataset_id).content is None


def test_corrupt_image_aborts_without_dataset(client, record_store, staging_store):
    plan, last = _upload(client, "broken.jpg", b"\x00" * 1000, "image/jpeg")

    assert last.status_code == 422
    assert record_store.find_by_staging_ref(plan["uploadId"]) is None
    assert staging_store.get(chunk_key(plan["uploadId"], 0)) is None


def test_document_upload_gets_fallback_preview(client):
    _, last = _upload(client, "notes.pdf", b"%PDF-1.4 fake", "application/pdf")
    body = client.get(f"/datasets/{last.json()['datasetId']}/preview").json()

    assert body["fileType"] == "document"
    assert body["preview"]["rows"] == [["File content preview not available"]]


def test_csv_with_image_urls_is_resolved(client, fetcher):
    urls = [f"https://img.example.com/{i}.png" for i in range(3)]
    for url in urls[:2]:
        fetcher.responses[url] = make_image_bytes(50, 50)
    csv = "sku,image_url\n" + "".join(f"s{i},{u}\n" for i, u in enumerate(urls))

    _, last = _upload(client, "products.csv", csv.encode(), "text/csv")
    preview = client.get(f"/datasets/{last.json()['datasetId']}/preview").json()["preview"]

    assert preview["hasImages"] is True
    assert preview["imageColumns"] == [{"index": 1, "name": "image_url", "confidence": 1.0}]
    cells = [row[1] for row in preview["rows"]]
    assert all(c["type"] == "image" for c in cells)
    assert cells[0]["thumbnail"] and cells[0]["error"] is None
    assert cells[2]["thumbnail"] is None and cells[2]["error"] == "HTTP 404"
    assert preview["rows"][0][0] == "s0"


def test_preview_falls_back_to_durable_record(client, staging_store):
    plan, last = _upload(client, "data.csv", make_csv_bytes(3), "text/csv")
    dataset_id = last.json()["datasetId"]
    staging_store.delete(preview_key(plan["uploadId"]))

    resp = client.get(f"/datasets/{dataset_id}/preview")
    assert resp.status_code == 200
    assert resp.json()["preview"]["totalRows"] == 3


def test_preview_prefers_fast_store(client, staging_store):
    plan, last = _upload(client, "data.csv", make_csv_bytes(3), "text/csv")
    cached = json.loads(staging_store.get(preview_key(plan["uploadId"])))
    cached["totalRows"] = 999
    staging_store.set(preview_key(plan["uploadId"]), json.dumps(cached), 60)

    body = client.get(f"/datasets/{last.json()['datasetId']}/preview").json()
    assert body["preview"]["totalRows"] == 999


def test_preview_reports_expiry(client):
    _, last = _upload(client, "data.csv", make_csv_bytes(3), "text/csv")
    body = client.get(f"/datasets/{last.json()['datasetId']}/preview").json()

    assert body["status"] == "pending"
    assert body["expiresAt"] is not None
    assert 0 < body["timeRemainingMs"] <= 24 * 3600 * 1000
    assert body["batchInfo"]["isComplete"] is True


def test_timestamps_are_serialized_as_utc(client):
    _, last = _upload(client, "data.csv", make_csv_bytes(3), "text/csv")
    dataset_id = last.json()["datasetId"]

    body = client.get(f"/datasets/{dataset_id}/preview").json()
    uploaded = datetime.fromisoformat(body["uploadedAt"].replace("Z", "+00:00"))
    expires = datetime.fromisoformat(body["expiresAt"].replace("Z", "+00:00"))

    assert body["uploadedAt"].endswith("Z")
    assert uploaded.utcoffset() == timedelta(0)
    assert expires - uploaded == timedelta(hours=24)

    finalized = client.post(f"/datasets/{dataset_id}/finalize").json()["finalizedAt"]
    assert finalized.endswith("Z")


def test_finalize_twice_succeeds_and_keeps_timestamp(client):
    _, last = _upload(client, "data.csv", make_csv_bytes(3), "text/csv")
    dataset_id = last.json()["datasetId"]

    first = client.post(f"/datasets/{dataset_id}/finalize")
    second = client.post(f"/datasets/{dataset_id}/finalize")

    assert first.status_code == second.status_code == 200
    assert first.json()["status"] == "finalized"
    assert second.json()["finalizedAt"] == first.json()["finalizedAt"]
    assert second.json()["message"] == "Dataset is already finalized"

    preview = client.get(f"/datasets/{dataset_id}/preview").json()
    assert preview["expiresAt"] is None
    assert preview["timeRemainingMs"] is None


def test_expired_dataset_is_gone(client, record_store):
    _, last = _upload(client, "data.csv", make_csv_bytes(3), "text/csv")
    dataset_id = last.json()["datasetId"]
    record = record_store.get(dataset_id)
    record.expires_at = utcnow() - timedelta(seconds=1)
    record_store.save(record)

    assert client.get(f"/datasets/{dataset_id}/preview").status_code == 410
    assert client.post(f"/datasets/{dataset_id}/finalize").status_code == 410


def test_unknown_dataset_is_404(client):
    assert client.get("/datasets/nope/preview").status_code == 404
    assert client.post("/datasets/nope/finalize").status_code == 404


def test_cancel_upload(client, staging_store):
    plan = _init(client, "a.csv", 5 * MIB)
    _send(client, plan, 0, b"a,b\n", "a.csv", 5 * MIB)

    resp = client.delete(f"/upload/{plan['uploadId']}")
    assert resp.json()["removedKeys"] == 3
    assert client.get(f"/upload/progress/{plan['uploadId']}").status_code == 404


def test_single_shot_upload(client):
    resp = client.post("/upload/file", files={"file": ("quick.csv", make_csv_bytes(12), "text/csv")})
    assert resp.status_code == 200

    body = client.get(resp.json()["previewUrl"].replace("/preview/", "/datasets/") + "/preview").json()
    assert body["preview"]["totalRows"] == 12
    assert len(body["preview"]["rows"]) == 10


def test_bulk_image_resolution_endpoint(client, fetcher):
    urls = [f"https://img.example.com/{i}.jpg" for i in range(5)]
    for url in urls:
        fetcher.responses[url] = make_image_bytes(30, 30, fmt="JPEG")

    resp = client.post("/images/resolve", json={"uploadId": "bulk", "urls": urls, "batchSize": 2})
    results = resp.json()["results"]

    assert [r["url"] for r in results] == urls
    assert all(r["thumbnail"] for r in results)
