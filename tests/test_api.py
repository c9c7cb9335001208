import io
import json

from google.api_core.exceptions import ResourceExhausted
from PIL import Image
from pypdf import PdfReader

from medo_backend.config import MAX_ATTACHMENT_BYTES
from medo_backend.main import app
from medo_backend import main
from tests.fakes import bearer, interactive_questions


def _png(width, height):
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), "green").save(buffer, format="PNG")
    return buffer.getvalue()


def test_home(client):
    body = client.get("/").json()
    assert body["status"] == "Medo.Ai Backend Running"
    assert body["firebase_ready"] and body["model_ready"]


def test_model_unavailable(client):
    app.state.model = None
    response = client.post("/chat", data={"message": "hi"})
    assert response.status_code == 503


def test_anonymous_sign_in_creates_profile(client, db, fake_auth):
    body = client.post("/auth/anonymous").json()
    assert body == {"uid": "anon-1", "customToken": "token-for-anon-1"}
    assert db.docs["users/anon-1"]["anonymous"] is True


# -- chat --

def test_chat_exchange(client, model):
    model.responses.append({"response": "التفسير"})
    response = client.post("/chat", data={"task": "explain", "message": "اشرح الجاذبية"})
    assert response.status_code == 200
    user, bot = response.json()["messages"]
    assert user["sender"] == "user" and user["text"] == "اشرح الجاذبية"
    assert bot["sender"] == "bot" and bot["text"] == "التفسير"


def test_chat_with_image(client, model):
    model.responses.append({"response": "a red square"})
    response = client.post(
        "/chat",
        data={"task": "explain", "message": "what is this?", "language": "en"},
        files={"file": ("square.png", _png(4, 4), "image/png")},
    )
    assert response.status_code == 200
    assert response.json()["messages"][0]["text"] == "what is this? | square.png"
    parts, _ = model.calls[0]
    assert parts[1]["mime_type"] == "image/png"


def test_chat_rejects_oversized_file_before_calling_model(client, model):
    response = client.post(
        "/chat",
        data={"message": "x"},
        files={"file": ("big.png", b"\0" * (MAX_ATTACHMENT_BYTES + 1), "image/png")},
    )
    assert response.status_code == 413
    assert response.json()["kind"] == "too_large"
    assert model.calls == []


def test_chat_rejects_wrong_type_before_calling_model(client, model):
    response = client.post(
        "/chat",
        data={"message": "x", "language": "en"},
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert response.status_code == 415
    assert response.json()["detail"] == "Please select an image or PDF file only."
    assert model.calls == []


def test_chat_requires_input(client, model):
    assert client.post("/chat", data={"message": "  "}).status_code == 400
    assert model.calls == []


def test_chat_quota_error(client, model):
    model.responses.append(ResourceExhausted("Quota exceeded"))
    response = client.post("/chat", data={"message": "hi", "language": "en"})
    assert response.status_code == 429
    assert response.json()["detail"] == "Quota exceeded. Please wait a moment."


def test_chat_backend_error(client, model):
    model.responses.append(RuntimeError("connection reset"))
    response = client.post("/chat", data={"message": "hi"})
    assert response.status_code == 502
    assert response.json()["detail"] == "فشل الاتصال بمساعد الذكاء الاصطناعي."


# -- questions --

def test_generate_questions(client, model):
    model.responses.append({"questions": [{"question": "Q", "answer": "A", "explanation": "E"}]})
    response = client.post("/questions/generate", data={"context": "text", "questionCount": 1})
    assert response.status_code == 200
    assert response.json() == {
        "mode": "static",
        "questions": [{"question": "Q", "answer": "A", "explanation": "E"}],
    }


def test_generate_questions_requires_content(client, model):
    response = client.post("/questions/generate", data={"context": "", "language": "en"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Please enter text or upload a file to generate questions."
    assert model.calls == []


def test_generate_questions_count_bounds(client):
    assert client.post("/questions/generate", data={"context": "t", "questionCount": 21}).status_code == 422


def test_generate_questions_rejects_audio_attachment(client, model):
    response = client.post(
        "/questions/generate",
        data={"context": "t"},
        files={"file": ("a.webm", b"abc", "audio/webm")},
    )
    assert response.status_code == 415
    assert model.calls == []


# -- quiz --

def test_interactive_quiz_scenario(client, model):
    correct = [0, 1, 2, 3, 1]
    model.responses.append(interactive_questions(5, correct))
    session = client.post("/quiz/sessions", data={"context": "biology", "questionCount": 5}).json()
    assert session["state"] == "answering"
    assert len(session["questions"]) == 5
    session_id = session["sessionId"]

    chosen = [0, 1, 1, 3, 0]
    for index, option in enumerate(chosen):
        assert client.post(f"/quiz/sessions/{session_id}/score").status_code == 409
        view = client.put(f"/quiz/sessions/{session_id}/answers/{index}", json={"optionIndex": option}).json()
    assert view["canScore"] is True

    result = client.post(f"/quiz/sessions/{session_id}/score").json()
    assert result["score"] == sum(1 for c, a in zip(correct, chosen) if c == a) == 3
    assert result == client.post(f"/quiz/sessions/{session_id}/score").json()
    assert client.get(f"/quiz/sessions/{session_id}").json()["state"] == "scored"

    restarted = client.post(f"/quiz/sessions/{session_id}/restart").json()
    assert restarted["state"] == "configuring" and restarted["questions"] == []


def test_quiz_answer_validation(client, model):
    model.responses.append(interactive_questions(2))
    session_id = client.post("/quiz/sessions", data={"context": "c", "questionCount": 2}).json()["sessionId"]
    assert client.put(f"/quiz/sessions/{session_id}/answers/9", json={"optionIndex": 0}).status_code == 422
    assert client.put(f"/quiz/sessions/{session_id}/answers/0", json={"optionIndex": 4}).status_code == 422
    assert client.get("/quiz/sessions/unknown").status_code == 404


# -- voice --

def test_transcribe(client, model):
    model.responses.append("مرحبا بالعالم")
    response = client.post("/voice/transcribe", files={"audio": ("rec.webm", b"\x1aE\xdf\xa3", "audio/webm")})
    assert response.json() == {"text": "مرحبا بالعالم"}


def test_transcribe_error_uses_requested_language(client, model):
    model.responses.append(RuntimeError("connection reset"))
    response = client.post(
        "/voice/transcribe",
        data={"language": "en"},
        files={"audio": ("rec.webm", b"\x1aE\xdf\xa3", "audio/webm")},
    )
    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to connect to the AI assistant."


def test_summarize_fallback_language(client, model):
    response = client.post("/voice/summarize", json={"text": "some text", "language": "en"})
    assert response.json() == {"summary": "Sorry, I could not summarize the text."}
    response = client.post("/voice/summarize", json={"text": "نص", "language": "ar"})
    assert response.json() == {"summary": "عذراً، لم أتمكن من تلخيص النص."}


def test_summarize_requires_text(client):
    assert client.post("/voice/summarize", json={"text": "   "}).status_code == 422


def test_save_recording(client, bucket, db):
    response = client.post(
        "/voice/recordings",
        data={"uid": "u1", "fileName": "lecture"},
        files={"audio": ("blob", b"audio-bytes", "audio/webm")},
    )
    assert response.status_code == 200
    record = response.json()
    assert record["fileName"] == "lecture.webm"
    assert record["storagePath"] == "user-uploads/u1/audio/lecture.webm"
    assert bucket.objects["user-uploads/u1/audio/lecture.webm"]["data"] == b"audio-bytes"
    assert f"users/u1/uploadedFiles/{record['id']}" in db.docs


def test_save_recording_needs_name(client):
    response = client.post(
        "/voice/recordings",
        data={"uid": "u1", "fileName": " "},
        files={"audio": ("blob", b"audio-bytes", "audio/webm")},
    )
    assert response.status_code == 400


def test_save_recording_metadata_rejected(client, db):
    db.deny_write = lambda path, data: True
    response = client.post(
        "/voice/recordings",
        data={"uid": "u1", "fileName": "lecture", "language": "en"},
        files={"audio": ("blob", b"audio-bytes", "audio/webm")},
    )
    assert response.status_code == 502
    assert "permissions" in response.json()["detail"]


def test_export_transcript(client):
    response = client.post("/voice/export", json={"transcribedText": "a", "summarizedText": "b"})
    assert response.headers["content-disposition"] == "attachment; filename*=UTF-8''transcription.txt"
    assert response.content.decode("utf-8") == "النص الأصلي:\na\n\nالملخص:\nb"

    response = client.post("/voice/export", json={"transcribedText": "a", "summarizedText": "b", "format": "pdf"})
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")


# -- image to pdf --

def test_convert_images_to_pdf(client):
    response = client.post(
        "/pdf/convert",
        data={"fileName": "واجب"},
        files=[
            ("images", ("1.png", _png(300, 100), "image/png")),
            ("images", ("2.png", _png(100, 300), "image/png")),
        ],
    )
    assert response.status_code == 200
    assert "filename*=UTF-8''%D9%88%D8%A7%D8%AC%D8%A8.pdf" in response.headers["content-disposition"]
    assert len(PdfReader(io.BytesIO(response.content)).pages) == 2


def test_convert_requires_name_and_images(client):
    files = [("images", ("1.png", _png(10, 10), "image/png"))]
    assert client.post("/pdf/convert", data={"fileName": ""}, files=files).status_code == 400
    assert client.post("/pdf/convert", data={"fileName": "x"}).status_code == 400


def test_convert_rejects_non_images(client):
    response = client.post(
        "/pdf/convert",
        data={"fileName": "x"},
        files=[("images", ("doc.pdf", b"%PDF", "application/pdf"))],
    )
    assert response.status_code == 415


def test_convert_broken_image(client):
    response = client.post(
        "/pdf/convert",
        data={"fileName": "x", "language": "en"},
        files=[
            ("images", ("1.png", _png(10, 10), "image/png")),
            ("images", ("2.png", b"garbage", "image/png")),
        ],
    )
    assert response.status_code == 422
    assert response.json()["detail"].startswith("Failed to convert the images to PDF.")


# -- files --

def test_batch_upload_with_one_network_failure(client, bucket):
    bucket.fail_upload = lambda path: path.endswith("_b.pdf")
    response = client.post(
        "/users/u1/files",
        data={"language": "en"},
        files=[
            ("files", ("a.pdf", b"aaa", "application/pdf")),
            ("files", ("b.pdf", b"bbb", "application/pdf")),
            ("files", ("c.pdf", b"ccc", "application/pdf")),
        ],
    )
    assert response.status_code == 202
    batch_id = response.json()["batchId"]
    assert response.json()["total"] == 3

    # TestClient returns after background tasks complete.
    summary = client.get(f"/uploads/{batch_id}").json()
    assert summary["settled"] is True
    assert summary["message"] == "2 of 3 succeeded."
    assert [t["status"] for t in summary["tasks"]] == ["succeeded", "failed", "succeeded"]

    listed = client.get("/users/u1/files").json()
    assert sorted(r["fileName"] for r in listed) == ["a.pdf", "c.pdf"]


def test_batch_upload_rejects_oversized_file_before_any_upload(client, bucket):
    response = client.post(
        "/users/u1/files",
        files=[
            ("files", ("ok.pdf", b"ok", "application/pdf")),
            ("files", ("big.bin", b"\0" * (MAX_ATTACHMENT_BYTES + 1), "application/octet-stream")),
        ],
    )
    assert response.status_code == 413
    assert bucket.objects == {}


def test_batch_upload_requires_files(client):
    assert client.post("/users/u1/files", data={"language": "ar"}).status_code == 400
    assert client.get("/uploads/nope").status_code == 404


def test_delete_file(client, bucket):
    response = client.post("/users/u1/files", files=[("files", ("a.pdf", b"aaa", "application/pdf"))])
    record_id = client.get(f"/uploads/{response.json()['batchId']}").json()["tasks"][0]["recordId"]

    deleted = client.delete(f"/users/u1/files/{record_id}", params={"lang": "en"}).json()
    assert deleted["outcome"] == "deleted"
    assert deleted["message"] == 'The file "a.pdf" was permanently deleted.'
    assert client.get("/users/u1/files").json() == []
    assert client.delete(f"/users/u1/files/{record_id}").status_code == 404


def test_delete_file_with_missing_blob(client, bucket):
    response = client.post("/users/u1/files", files=[("files", ("a.pdf", b"aaa", "application/pdf"))])
    record_id = client.get(f"/uploads/{response.json()['batchId']}").json()["tasks"][0]["recordId"]
    bucket.objects.clear()

    deleted = client.delete(f"/users/u1/files/{record_id}").json()
    assert deleted["outcome"] == "metadata_only"
    assert client.get("/users/u1/files").json() == []


def test_delete_file_hard_failure(client, bucket):
    response = client.post("/users/u1/files", files=[("files", ("a.pdf", b"aaa", "application/pdf"))])
    record_id = client.get(f"/uploads/{response.json()['batchId']}").json()["tasks"][0]["recordId"]
    bucket.deny_delete = True

    assert client.delete(f"/users/u1/files/{record_id}").status_code == 502
    assert len(client.get("/users/u1/files").json()) == 1


def test_files_stream_sends_current_listing(client, db, monkeypatch):
    client.post("/users/u1/files", files=[("files", ("a.pdf", b"aaa", "application/pdf"))])
    monkeypatch.setattr(main, "FILES_STREAM_LIFETIME_SECONDS", 0.2)

    with client.stream("GET", "/users/u1/files/stream") as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = [line[len("data: "):] for line in response.iter_lines() if line.startswith("data: ")]

    assert [r["fileName"] for r in json.loads(events[0])] == ["a.pdf"]
    assert db.watches == []


# -- ownership --

def test_owner_can_manage_own_files(client):
    response = client.post("/users/u2/files", headers=bearer("u2"),
                           files=[("files", ("mine.pdf", b"abc", "application/pdf"))])
    assert response.status_code == 202
    listed = client.get("/users/u2/files", headers=bearer("u2")).json()
    assert [r["fileName"] for r in listed] == ["mine.pdf"]
    assert client.delete(f"/users/u2/files/{listed[0]['id']}", headers=bearer("u2")).status_code == 200


def test_other_users_files_are_off_limits(client, bucket):
    response = client.post("/users/victim/files", headers=bearer("victim"),
                           files=[("files", ("a.pdf", b"aaa", "application/pdf"))])
    record_id = client.get(f"/uploads/{response.json()['batchId']}").json()["tasks"][0]["recordId"]

    # The default client is signed in as "u1".
    assert client.get("/users/victim/files").status_code == 403
    assert client.get("/users/victim/files/stream").status_code == 403
    assert client.delete(f"/users/victim/files/{record_id}").status_code == 403
    upload = client.post("/users/victim/files", files=[("files", ("x.pdf", b"x", "application/pdf"))])
    assert upload.status_code == 403
    recording = client.post(
        "/voice/recordings",
        data={"uid": "victim", "fileName": "lecture"},
        files={"audio": ("blob", b"audio-bytes", "audio/webm")},
    )
    assert recording.status_code == 403

    assert len(bucket.objects) == 1
    assert len(client.get("/users/victim/files", headers=bearer("victim")).json()) == 1


def test_file_routes_require_a_valid_id_token(client):
    assert client.get("/users/u1/files", headers={"Authorization": ""}).status_code == 401
    assert client.get("/users/u1/files", headers={"Authorization": "Bearer forged"}).status_code == 401
    assert client.delete("/users/u1/files/x", headers={"Authorization": "Basic abc"}).status_code == 401
