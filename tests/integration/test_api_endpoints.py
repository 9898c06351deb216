import base64
import io
import json

from PIL import Image


def decode_data_url(url: str) -> Image.Image:
    header, payload = url.split(",", 1)
    assert header.startswith("data:image/") and header.endswith(";base64")
    return Image.open(io.BytesIO(base64.b64decode(payload)))


def test_root_and_health(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["service"] == "photopipe-backend"
    r = client.get("/health")
    assert r.json() == {"status": "healthy"}
    assert "X-Process-Time-Ms" in r.headers


def test_process_image_rotation_keeps_source_format(client, jpeg_bytes):
    edits = {"rotation": 90, "exportFormat": "original"}
    files = {"image": ("photo.jpg", jpeg_bytes, "image/jpeg")}
    r = client.post("/process-image", files=files, data={"edits": json.dumps(edits)})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    meta = body["metadata"]
    assert meta["format"] == "jpeg"
    assert (meta["width"], meta["height"]) == (300, 400)
    assert meta["originalSize"] == len(jpeg_bytes)
    assert meta["skippedSteps"] == []
    assert decode_data_url(body["imageUrl"]).size == (300, 400)


def test_process_image_without_edits_field(client, png_bytes):
    files = {"image": ("a.png", png_bytes, "image/png")}
    r = client.post("/process-image", files=files)
    assert r.status_code == 200, r.text
    assert r.json()["metadata"]["format"] == "webp"


def test_process_image_skips_unreachable_overlay(client, png_bytes):
    edits = {"composite": {"enabled": True, "input": "http://127.0.0.1:9/overlay.png"}, "exportFormat": "png"}
    files = {"image": ("a.png", png_bytes, "image/png")}
    r = client.post("/process-image", files=files, data={"edits": json.dumps(edits)})
    assert r.status_code == 200, r.text
    assert r.json()["metadata"]["skippedSteps"] == ["composite"]


def test_process_image_bad_json(client, png_bytes):
    files = {"image": ("a.png", png_bytes, "image/png")}
    r = client.post("/process-image", files=files, data={"edits": "{not json"})
    assert r.status_code == 422
    body = r.json()
    assert body["success"] is False
    assert body["error"] == "ValidationError"


def test_process_image_free_rotation_rejected(client, png_bytes):
    files = {"image": ("a.png", png_bytes, "image/png")}
    r = client.post("/process-image", files=files, data={"edits": json.dumps({"rotation": 45})})
    assert r.status_code == 422
    assert "rotation" in r.json()["details"]


def test_process_image_out_of_range(client, png_bytes):
    files = {"image": ("a.png", png_bytes, "image/png")}
    r = client.post("/process-image", files=files, data={"edits": json.dumps({"brightness": 500})})
    assert r.status_code == 422
    assert r.json()["error"] == "ValidationError"


def test_process_image_rejects_unsupported_type(client, png_bytes):
    files = {"image": ("a.pdf", png_bytes, "application/pdf")}
    r = client.post("/process-image", files=files)
    assert r.status_code == 400
    assert r.json()["error"] == "UploadRejected"


def test_process_image_rejects_undecodable(client):
    files = {"image": ("a.png", b"not an image at all", "image/png")}
    r = client.post("/process-image", files=files)
    assert r.status_code == 400
    assert r.json()["error"] == "DecodeError"


def test_classify(client):
    r = client.post("/classify", json={"edits": {"brightness": 10, "grayscale": True}})
    assert r.status_code == 200
    body = r.json()
    assert body["liveOnly"] is True
    assert body["cssFilter"] == "brightness(110%) grayscale(100%)"

    r = client.post("/classify", json={"edits": {"brightness": 10, "hue": 30}})
    body = r.json()
    assert body["liveOnly"] is False
    assert body["cssFilter"] == "none"

    r = client.post("/classify", json={"edits": {"quality": 0}})
    assert r.status_code == 422


def test_session_flow(client, png_bytes):
    r = client.post("/sessions", files={"image": ("holiday.png", png_bytes, "image/png")})
    assert r.status_code == 201, r.text
    state = r.json()
    sid = state["sessionId"]
    assert state["historyLength"] == 1
    assert state["canUndo"] is False
    assert state["processedImage"] is None

    r = client.post(f"/sessions/{sid}/edits", json={"edits": {"brightness": 20, "exportFormat": "jpeg"}, "action": "Brightness"})
    assert r.status_code == 200
    state = r.json()
    assert state["liveOnly"] is True
    assert state["cssFilter"] == "brightness(120%)"
    assert state["canUndo"] is True

    r = client.post(f"/sessions/{sid}/render")
    assert r.status_code == 200, r.text
    render = r.json()
    assert render["status"] == "applied"
    assert render["metadata"]["format"] == "jpeg"

    r = client.get(f"/sessions/{sid}")
    assert r.json()["processedImage"]["format"] == "jpeg"

    r = client.post(f"/sessions/{sid}/save")
    assert r.status_code == 200
    saved = r.json()
    assert saved["action"] == "Saved changes as new base"
    assert saved["state"]["edits"]["exportFormat"] == "jpeg"
    assert saved["state"]["edits"]["brightness"] == 0
    assert saved["state"]["baseImage"]["format"] == "jpeg"

    r = client.get(f"/sessions/{sid}/history")
    history = r.json()
    assert len(history["entries"]) == 1
    assert history["historyIndex"] == 0

    r = client.post(f"/sessions/{sid}/undo")
    assert r.json()["changed"] is False

    r = client.get(f"/sessions/{sid}/download")
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/jpeg"
    assert 'filename="holiday-pp-edited.jpg"' in r.headers["content-disposition"]
    assert Image.open(io.BytesIO(r.content)).format == "JPEG"

    assert client.delete(f"/sessions/{sid}").status_code == 200
    assert client.get(f"/sessions/{sid}").status_code == 404


def test_session_undo_redo_and_reset(client, make_image):
    png = make_image(32, 32)
    sid = client.post("/sessions", files={"image": ("s.png", png, "image/png")}).json()["sessionId"]
    client.post(f"/sessions/{sid}/edits", json={"edits": {"contrast": 10}})
    client.post(f"/sessions/{sid}/edits", json={"edits": {"contrast": 30}})

    r = client.post(f"/sessions/{sid}/undo")
    body = r.json()
    assert body["changed"] is True
    assert body["state"]["edits"]["contrast"] == 10

    r = client.post(f"/sessions/{sid}/redo")
    assert r.json()["state"]["edits"]["contrast"] == 30

    r = client.post(f"/sessions/{sid}/reset")
    body = r.json()
    assert body["action"] == "Reset all edits"
    assert body["state"]["edits"]["contrast"] == 0
    assert body["state"]["canUndo"] is True


def test_session_rejects_invalid_edit_atomically(client, png_bytes):
    sid = client.post("/sessions", files={"image": ("a.png", png_bytes, "image/png")}).json()["sessionId"]
    r = client.post(f"/sessions/{sid}/edits", json={"edits": {"brightness": 10, "quality": 500}})
    assert r.status_code == 422
    state = client.get(f"/sessions/{sid}").json()
    assert state["edits"]["brightness"] == 0
    assert state["historyLength"] == 1


def test_save_without_render_conflicts(client, png_bytes):
    sid = client.post("/sessions", files={"image": ("a.png", png_bytes, "image/png")}).json()["sessionId"]
    client.post(f"/sessions/{sid}/edits", json={"edits": {"negate": True}})
    r = client.post(f"/sessions/{sid}/save")
    assert r.status_code == 409


def test_unknown_session(client):
    assert client.get("/sessions/does-not-exist").status_code == 404
    assert client.post("/sessions/does-not-exist/undo").status_code == 404
    assert client.delete("/sessions/does-not-exist").status_code == 404


def test_session_rejects_non_image(client):
    r = client.post("/sessions", files={"image": ("a.png", b"nope", "image/png")})
    assert r.status_code == 400


def test_download_requires_rendered_edits(client, png_bytes):
    sid = client.post("/sessions", files={"image": ("photo.png", png_bytes, "image/png")}).json()["sessionId"]
    client.post(f"/sessions/{sid}/edits", json={"edits": {"rotation": 90, "exportFormat": "png"}})

    r = client.get(f"/sessions/{sid}/download")
    assert r.status_code == 409

    assert client.post(f"/sessions/{sid}/render").json()["status"] == "applied"
    r = client.get(f"/sessions/{sid}/download")
    assert r.status_code == 200
    assert Image.open(io.BytesIO(r.content)).size == (48, 64)


def test_list_presets(client):
    r = client.get("/presets")
    assert r.status_code == 200
    presets = {p["name"]: p for p in r.json()["presets"]}
    assert presets["Noir"]["edits"]["grayscale"] is True
    assert presets["Noir"]["liveOnly"] is True
    assert presets["None"]["cssFilter"] == "none"


def test_apply_preset_to_session(client, png_bytes):
    sid = client.post("/sessions", files={"image": ("a.png", png_bytes, "image/png")}).json()["sessionId"]
    r = client.post(f"/sessions/{sid}/presets/technicolor")
    assert r.status_code == 200
    assert r.json()["edits"]["saturation"] == 40
    history = client.get(f"/sessions/{sid}/history").json()
    assert history["entries"][-1]["action"] == "Technicolor"

    assert client.post(f"/sessions/{sid}/presets/polaroid").status_code == 404


def test_process_image_checks_decoded_container(client, make_image):
    bmp = make_image(8, 8, fmt="BMP")
    files = {"image": ("a.bin", bmp, "application/octet-stream")}
    r = client.post("/process-image", files=files)
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "UploadRejected"
    assert "image/bmp" in body["details"]
