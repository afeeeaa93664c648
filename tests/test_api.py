import asyncio
from datetime import timedelta

from gallery.blobs import BlobStore
from gallery.limiter import UsageLimiter, get_limiter

from conftest import login


def _upload(client, auth, sizes, album="us", day="2026-03-01"):
    res = client.post("/api/upload/prepare", headers=auth,
                      json={"files": [{"name": f"{i}.jpg", "size": s, "type": "image/jpeg"} for i, s in enumerate(sizes)]})
    assert res.status_code == 200, res.json()
    body = res.json()
    for target in body["uploads"]:
        assert client.put(target["uploadUrl"], content=b"full", headers={"content-type": "image/jpeg"}).status_code == 200
        assert client.put(target["thumbnailUploadUrl"], content=b"thumb").status_code == 200
    photos = [{"id": t["id"], "filename": f"{i}.jpg", "note": "", "day": day, "size": s}
              for i, (t, s) in enumerate(zip(body["uploads"], sizes))]
    res = client.post("/api/upload/commit", headers=auth,
                      json={"reservationId": body["reservationId"], "album": album, "photos": photos})
    assert res.status_code == 200, res.json()
    return body["reservationId"], [t["id"] for t in body["uploads"]]


# ==== auth ====

def test_health(client):
    assert client.get("/health").json() == {"ok": True}

def test_wrong_password(client):
    res = client.post("/api/auth/verify", json={"password": "nope", "user": "u1"})
    assert res.status_code == 401
    assert res.json() == {"ok": False, "error": "Unauthorized"}

def test_unknown_user(client):
    res = client.post("/api/auth/verify", json={"password": "letmein", "user": "mallory"})
    assert res.status_code == 400

def test_endpoints_need_token(client):
    res = client.get("/api/gallery")
    assert res.status_code == 401
    assert res.json() == {"ok": False, "error": "missing_token"}
    assert client.get("/api/usage", headers={"Authorization": "Bearer junk"}).status_code == 401

def test_me(client, auth):
    assert client.get("/api/auth/me", headers=auth).json() == {"ok": True, "user": "u1"}


# ==== upload flow ====

def test_upload_then_browse(client, auth):
    _, ids = _upload(client, auth, [300, 200])
    res = client.get("/api/gallery", headers=auth)
    body = res.json()
    assert body["ok"] is True
    assert body["totalBytes"] == 500
    assert body["totalPhotos"] == 2
    assert {p["id"] for p in body["photos"]} == set(ids)
    assert body["albums"][0]["day"] == "2026-03-01"
    assert body["photos"][0]["uploaderId"] == "u1"
    assert body["photos"][0]["albumTag"] == "us"

    usage = client.get("/api/usage", headers=auth).json()
    assert usage["totalBytes"] == 500
    assert usage["uploadsToday"] == 1
    assert usage["maxBytes"] == 1000
    assert usage["maxUploadsPerDay"] == 5

def test_prepare_rejects_over_quota(client, auth):
    _upload(client, auth, [600])
    res = client.post("/api/upload/prepare", headers=auth, json={"files": [{"name": "a.jpg", "size": 500}]})
    assert res.status_code == 400
    assert res.json() == {"ok": False, "error": "Not enough storage. 400 bytes remaining.", "remainingBytes": 400}

def test_prepare_rejects_too_many_files(client, auth):
    files = [{"name": f"{i}.jpg", "size": 1} for i in range(4)]
    res = client.post("/api/upload/prepare", headers=auth, json={"files": files})
    assert res.status_code == 400
    assert res.json()["error"] == "Max 3 files per upload"

def test_prepare_rejects_large_batch(client, auth):
    res = client.post("/api/upload/prepare", headers=auth, json={"files": [{"name": "a.jpg", "size": 900}]})
    assert res.status_code == 400

def test_daily_limit(client, auth):
    for _ in range(5):
        client.post("/api/upload/prepare", headers=auth, json={"files": [{"name": "a.jpg", "size": 1}]})
    res = client.post("/api/upload/prepare", headers=auth, json={"files": [{"name": "a.jpg", "size": 1}]})
    assert res.status_code == 400
    assert "Daily upload limit" in res.json()["error"]

def test_double_commit(client, auth):
    rid, ids = _upload(client, auth, [100])
    res = client.post("/api/upload/commit", headers=auth, json={
        "reservationId": rid, "album": "us",
        "photos": [{"id": f"{rid}-1", "day": "2026-03-01", "size": 100}],
    })
    assert res.status_code == 409
    assert res.json() == {"ok": False, "error": "Reservation already committed"}
    assert client.get("/api/usage", headers=auth).json()["totalBytes"] == 100

def test_commit_unknown_reservation(client, auth):
    res = client.post("/api/upload/commit", headers=auth, json={
        "reservationId": "missing", "album": "us",
        "photos": [{"id": "missing-0", "day": "2026-03-01", "size": 1}],
    })
    assert res.status_code == 404
    assert res.json()["error"] == "Invalid or expired reservation"

def test_commit_rejects_foreign_ids_and_albums(client, auth):
    rid = client.post("/api/upload/prepare", headers=auth,
                      json={"files": [{"name": "a.jpg", "size": 10}]}).json()["reservationId"]
    bad_id = client.post("/api/upload/commit", headers=auth, json={
        "reservationId": rid, "album": "us", "photos": [{"id": "other-0", "day": "2026-03-01", "size": 10}],
    })
    assert bad_id.status_code == 400
    bad_album = client.post("/api/upload/commit", headers=auth, json={
        "reservationId": rid, "album": "nobody", "photos": [{"id": f"{rid}-0", "day": "2026-03-01", "size": 10}],
    })
    assert bad_album.status_code == 400

def test_malformed_body(client, auth):
    res = client.post("/api/upload/prepare", headers=auth, json={"files": [{"name": "a.jpg", "size": -5}]})
    assert res.status_code == 400
    assert res.json()["ok"] is False

def test_blob_upload_needs_valid_token(client, auth):
    body = client.post("/api/upload/prepare", headers=auth,
                       json={"files": [{"name": "a.jpg", "size": 10}]}).json()
    url = body["uploads"][0]["uploadUrl"]
    assert client.put(url.split("?")[0] + "?token=forged", content=b"x").status_code == 403
    # token for the full image does not open the thumbnail key
    other = body["uploads"][0]["thumbnailUploadUrl"].split("?")[0]
    assert client.put(other + "?" + url.split("?")[1], content=b"x").status_code == 403

def test_read_url_round_trip(client, auth):
    _, [pid] = _upload(client, auth, [100])
    res = client.post("/api/photo/url", headers=auth, json={"key": f"photos/{pid}-full"})
    url = res.json()["url"]
    blob = client.get(url)
    assert blob.status_code == 200
    assert blob.content == b"full"
    assert blob.headers["content-type"] == "image/jpeg"

def test_read_url_for_unknown_key(client, auth):
    res = client.post("/api/photo/url", headers=auth, json={"key": "photos/ghost-full"})
    assert res.status_code == 404


# ==== photo lifecycle ====

def test_favorite_toggle(client, auth):
    _, [pid] = _upload(client, auth, [100])
    first = client.post("/api/photo/favorite", headers=auth, json={"photoId": pid}).json()
    assert first["favoritedBy"] == ["u1"]
    assert [p["id"] for p in client.get("/api/favorites", headers=auth).json()["photos"]] == [pid]
    second = client.post("/api/photo/favorite", headers=auth, json={"photoId": pid}).json()
    assert second["favoritedBy"] == []

def test_edit_note_and_date(client, auth):
    _, [pid] = _upload(client, auth, [100])
    other = login(client, "u2")
    note = client.post("/api/photo/edit", headers=other, json={"photoId": pid, "note": "beach"}).json()
    assert note["photo"]["note"] == "beach"
    assert note["photo"]["noteAuthor"] == "u2"
    moved = client.post("/api/photo/edit-date", headers=auth, json={"photoId": pid, "day": "2025-12-24"}).json()
    assert moved["photo"]["albumDay"] == "2025-12-24"
    assert moved["photo"]["uploadedAt"].startswith("2025-12-24")
    bad = client.post("/api/photo/edit-date", headers=auth, json={"photoId": pid, "day": "tomorrow"})
    assert bad.status_code == 400

def test_delete_restore_purge(client, auth, env):
    _, [keep, drop] = _upload(client, auth, [100, 200])

    client.post("/api/photo/delete", headers=auth, json={"photoId": drop})
    recycle = client.get("/api/recycle", headers=auth).json()
    assert [p["id"] for p in recycle["photos"]] == [drop]
    assert recycle["photos"][0]["daysRemaining"] == 30
    assert recycle["totalBytes"] == 300

    res = client.post("/api/photo/restore", headers=auth, json={"photoId": keep})
    assert res.status_code == 400
    assert res.json() == {"ok": False, "error": "Photo is not deleted"}

    res = client.post("/api/photo/purge", headers=auth, json={"photoId": keep})
    assert res.status_code == 400

    res = client.post("/api/photo/purge", headers=auth, json={"photoId": drop})
    assert res.json()["ok"] is True
    assert not (env / "blobs" / "photos" / f"{drop}-full").exists()
    assert (env / "blobs" / "photos" / f"{keep}-full").exists()
    assert client.get("/api/usage", headers=auth).json()["totalBytes"] == 100
    assert client.get("/api/recycle", headers=auth).json()["photos"] == []

    missing = client.post("/api/photo/restore", headers=auth, json={"photoId": drop})
    assert missing.status_code == 404

def test_recycle_read_auto_purges(client, auth, env):
    _, [pid] = _upload(client, auth, [100])
    limiter = get_limiter()
    deleted_at = limiter.soft_delete(pid).deleted_at
    limiter.sweep(deleted_at + timedelta(days=31))
    assert client.get("/api/recycle", headers=auth).json()["photos"] == []
    assert client.get("/api/usage", headers=auth).json()["totalBytes"] == 0
    assert not (env / "blobs" / "photos" / f"{pid}-thumb").exists()

def test_reconcile_blobs(client, auth, env):
    _upload(client, auth, [100])
    orphan = env / "blobs" / "photos" / "lost-full"
    orphan.write_bytes(b"zzz")
    pending = client.post("/api/upload/prepare", headers=auth, json={"files": [{"name": "a.jpg", "size": 5}]}).json()
    client.put(pending["uploads"][0]["uploadUrl"], content=b"in-flight")

    res = client.post("/api/maintenance/reconcile-blobs", headers=auth).json()

    assert res == {"ok": True, "removed": 1, "bytesFreed": 3}
    assert not orphan.exists()
    assert (env / "blobs" / "photos" / f"{pending['uploads'][0]['id']}-full").exists()

def test_blob_upload_blocking_work_runs_in_worker_threads(client, auth, monkeypatch):
    seen = []

    def record(fn):
        def wrapper(*args, **kwargs):
            try:
                asyncio.get_running_loop()
                seen.append((fn.__name__, "event-loop"))
            except RuntimeError:
                seen.append((fn.__name__, "worker"))
            return fn(*args, **kwargs)
        return wrapper

    monkeypatch.setattr(BlobStore, "put", record(BlobStore.put))
    monkeypatch.setattr(UsageLimiter, "open_reservation_ids", record(UsageLimiter.open_reservation_ids))
    _upload(client, auth, [10])
    assert {name for name, _ in seen} == {"put", "open_reservation_ids"}
    assert {where for _, where in seen} == {"worker"}
