import io


def test_upload_rejects_non_image_type(app_client):
    data = {"images": [(io.BytesIO(b"not an image"), "file.txt")]}
    resp = app_client.post("/api/jobs", data=data, content_type="multipart/form-data")
    assert resp.status_code == 400


def test_single_shot_rejects_non_image(app_client):
    data = {"image": (io.BytesIO(b"not an image"), "file.txt")}
    resp = app_client.post("/api/convert", data=data, content_type="multipart/form-data")
    assert resp.status_code == 400


def test_single_shot_rejects_out_of_range_duration(app_client, make_image):
    data = {"image": (io.BytesIO(make_image()), "a.jpg"), "duration": "0.2"}
    resp = app_client.post("/api/convert", data=data, content_type="multipart/form-data")
    assert resp.status_code == 400


def test_delete_unknown_job(app_client):
    assert app_client.delete("/api/jobs/v_missing").status_code == 404


def test_unknown_endpoint(app_client):
    resp = app_client.get("/nope")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Endpoint not found"
