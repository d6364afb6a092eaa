import datetime as dt

from app.models import ShareLink, utcnow

API = "/api/v1"


def _token(link: dict) -> str:
    return link["link"].rsplit("/", 1)[-1]


def _expire(session_factory, link_id: int):
    session = session_factory()
    try:
        session.get(ShareLink, link_id).expires_at = utcnow() - dt.timedelta(minutes=1)
        session.commit()
    finally:
        session.close()


def test_create_link_for_file(client, register, upload):
    u = register()
    f = upload(u["headers"], "report.pdf")
    resp = client.post(f"{API}/link/file/{f['id']}", json={"type": "public", "password": "sharepw"}, headers=u["headers"])
    assert resp.status_code == 201
    link = resp.json()["data"]
    assert link["shareable_type"] == "file"
    assert link["shareable_id"] == f["id"]
    assert link["permissions"] == "view"
    assert link["password_protected"] is True
    assert "password" not in link and "password_hash" not in link
    assert link["link"] == f"http://localhost:8000/share/{link['token']}"
    assert len(link["token"]) == 32


def test_link_validation(client, register, upload):
    u = register()
    f = upload(u["headers"], "a.txt")
    url = f"{API}/link/file/{f['id']}"
    resp = client.post(url, json={"type": "email"}, headers=u["headers"])
    assert resp.status_code == 422
    assert "recipient_email" in resp.json()["data"]

    past = (dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=1)).isoformat()
    resp = client.post(url, json={"type": "public", "expires_at": past}, headers=u["headers"])
    assert resp.status_code == 422
    assert "expires_at" in resp.json()["data"]

    assert client.post(url, json={}, headers=u["headers"]).status_code == 422
    assert client.post(url, json={"type": "public", "password": "123"}, headers=u["headers"]).status_code == 422
    assert client.post(url, json={"type": "public", "permissions": "admin"}, headers=u["headers"]).status_code == 422


def test_link_requires_owned_active_target(client, register, upload):
    alice, bob = register("alice"), register("bob")
    f = upload(alice["headers"], "a.txt")
    assert client.post(f"{API}/link/file/{f['id']}", json={"type": "public"}, headers=bob["headers"]).status_code == 404
    client.delete(f"{API}/file/{f['id']}", headers=alice["headers"])
    assert client.post(f"{API}/link/file/{f['id']}", json={"type": "public"}, headers=alice["headers"]).status_code == 404


def test_link_detail_update_delete(client, register, make_folder):
    u = register()
    folder = make_folder(u["headers"], "Shared")
    link = client.post(f"{API}/link/folder/{folder['id']}", json={"type": "public"}, headers=u["headers"]).json()["data"]

    assert client.get(f"{API}/link/folder/{link['id']}", headers=u["headers"]).status_code == 200
    # scoped to the target kind
    assert client.get(f"{API}/link/file/{link['id']}", headers=u["headers"]).status_code == 404

    resp = client.patch(
        f"{API}/link/folder/{link['id']}",
        json={"permissions": "upload-download-view", "password": "newpass"},
        headers=u["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["permissions"] == "upload-download-view"
    assert resp.json()["data"]["password_protected"] is True

    resp = client.patch(f"{API}/link/folder/{link['id']}", json={"password": None}, headers=u["headers"])
    assert resp.json()["data"]["password_protected"] is False

    resp = client.patch(f"{API}/link/folder/{link['id']}", json={"type": "email"}, headers=u["headers"])
    assert resp.status_code == 422

    assert client.delete(f"{API}/link/folder/{link['id']}", headers=u["headers"]).status_code == 200
    assert client.get(f"{API}/link/folder/{link['id']}", headers=u["headers"]).status_code == 404


def test_public_view_streams_inline_without_counting(client, register, upload):
    u = register()
    f = upload(u["headers"], "photo.txt", b"look")
    link = client.post(f"{API}/link/file/{f['id']}", json={"type": "public"}, headers=u["headers"]).json()["data"]

    resp = client.get(f"/share/{_token(link)}")
    assert resp.status_code == 200
    assert resp.content == b"look"
    assert resp.headers["content-disposition"].startswith("inline;")
    assert client.get(f"{API}/file/{f['id']}", headers=u["headers"]).json()["data"]["total_downloads"] == 0


def test_public_download_counts(client, register, upload):
    u = register()
    f = upload(u["headers"], "data.csv", b"a,b")
    link = client.post(
        f"{API}/link/file/{f['id']}",
        json={"type": "public", "permissions": "upload-download-view"},
        headers=u["headers"],
    ).json()["data"]

    resp = client.get(f"/share/{_token(link)}")
    assert resp.status_code == 200
    assert resp.headers["content-disposition"].startswith("attachment;")
    assert client.get(f"{API}/file/{f['id']}", headers=u["headers"]).json()["data"]["total_downloads"] == 1


def test_public_access_checks(client, register, upload, session_factory):
    u = register()
    f = upload(u["headers"], "secret.txt", b"s")
    link = client.post(f"{API}/link/file/{f['id']}", json={"type": "public", "password": "letmein"}, headers=u["headers"]).json()["data"]
    token = _token(link)

    assert client.get("/share/unknown-token").status_code == 404
    resp = client.get(f"/share/{token}")
    assert resp.status_code == 401
    assert resp.json()["message"] == "Incorrect password."
    assert client.request("GET", f"/share/{token}", json={"password": "wrong!"}).status_code == 401
    assert client.request("GET", f"/share/{token}", json={"password": "letmein"}).status_code == 200
    # the password is never read from the URL
    assert client.get(f"/share/{token}", params={"password": "letmein"}).status_code == 401

    _expire(session_factory, link["id"])
    resp = client.request("GET", f"/share/{token}", json={"password": "letmein"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Share link has expired."


def test_public_access_to_trashed_target(client, register, upload):
    u = register()
    f = upload(u["headers"], "bye.txt")
    link = client.post(f"{API}/link/file/{f['id']}", json={"type": "public"}, headers=u["headers"]).json()["data"]
    client.delete(f"{API}/file/{f['id']}", headers=u["headers"])
    resp = client.get(f"/share/{_token(link)}")
    assert resp.status_code == 404
    assert resp.json()["message"] == "Shared content not found."


def test_public_folder_lists_direct_children(client, register, make_folder, upload):
    u = register()
    h = u["headers"]
    folder = make_folder(h, "Album")
    sub = make_folder(h, "2024", parent_id=folder["id"])
    upload(h, "cover.jpg", b"jpg", folder_id=folder["id"], content_type="image/jpeg")
    upload(h, "deep.jpg", b"jpg", folder_id=sub["id"], content_type="image/jpeg")
    link = client.post(f"{API}/link/folder/{folder['id']}", json={"type": "public"}, headers=h).json()["data"]

    resp = client.get(f"/share/{_token(link)}")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["folder"]["id"] == folder["id"]
    assert [f["name"] for f in data["files"]] == ["cover.jpg"]
    assert [f["name"] for f in data["subfolders"]] == ["2024"]


def test_shared_with_me(client, register, make_folder, upload, session_factory):
    alice, bob = register("alice"), register("bob")
    h = alice["headers"]
    f = upload(h, "for-bob.txt")
    folder = make_folder(h, "Bob folder")
    gone = upload(h, "gone.txt")
    expired = upload(h, "expired.txt")
    for kind, item in (("file", f), ("file", f), ("folder", folder), ("file", gone)):
        resp = client.post(f"{API}/link/{kind}/{item['id']}", json={"type": "email", "recipient_email": "BOB@example.com"}, headers=h)
        assert resp.status_code == 201
    old = client.post(f"{API}/link/file/{expired['id']}", json={"type": "email", "recipient_email": "bob@example.com"}, headers=h).json()["data"]
    _expire(session_factory, old["id"])
    client.delete(f"{API}/file/{gone['id']}", headers=h)

    data = client.get(f"{API}/shared-with-me", headers=bob["headers"]).json()["data"]
    assert [x["id"] for x in data["shared_files"]] == [f["id"]]
    assert [x["id"] for x in data["shared_folders"]] == [folder["id"]]
    assert client.get(f"{API}/shared-with-me", headers=alice["headers"]).json()["data"] == {"shared_files": [], "shared_folders": []}


def test_alice_shares_docs_folder(client, register, make_folder, upload):
    alice = register("alice", password="alice-password")
    h = alice["headers"]
    docs = make_folder(h, "Docs")
    upload(h, "report.pdf", b"%PDF-report", folder_id=docs["id"], content_type="application/pdf")
    link = client.post(f"{API}/link/folder/{docs['id']}", json={"type": "public"}, headers=h).json()["data"]
    token = _token(link)

    resp = client.get(f"/share/{token}")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["folder"]["name"] == "Docs"
    assert [f["name"] for f in data["files"]] == ["report.pdf"]

    resp = client.patch(f"{API}/link/folder/{link['id']}", json={"password": "topsecret"}, headers=h)
    assert resp.json()["data"]["password_protected"] is True
    resp = client.get(f"/share/{token}")
    assert resp.status_code == 401
    assert resp.json()["message"] == "Incorrect password."
    resp = client.request("GET", f"/share/{token}", json={"password": "topsecret"})
    assert resp.status_code == 200
    assert [f["name"] for f in resp.json()["data"]["files"]] == ["report.pdf"]
