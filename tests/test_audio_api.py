"""
Audio processing API tests
"""

import base64
import json
from unittest.mock import patch

from canvas_api.llm.client import LLMTimeoutError

AUDIO = base64.b64encode(b"fake-webm-audio").decode()

TRANSCRIPT = "Ogni lunedì Anna prepara il report vendite in Excel, ci mette circa mezz'ora."

EXTRACTION = {
    "workflows": [
        {"titolo": "Report vendite", "descrizione": "Report settimanale", "tempoMedio": 30, "frequenza": 4},
        {"titolo": "Invio report", "descrizione": "Email alla direzione", "tempoMedio": 5, "frequenza": 4},
    ]
}


class TestProcessAudio:
    def test_transcribe_and_extract(self, client, groq_stub, openrouter_stub):
        groq_stub.transcription = TRANSCRIPT
        openrouter_stub.replies = [json.dumps(EXTRACTION)]

        response = client.post("/api/process-audio", json={"audio": AUDIO, "filename": "workshop.webm"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["transcription"] == TRANSCRIPT
        assert [w["id"] for w in data["workflows"]] == ["W001", "W002"]
        assert [w["tempoTotale"] for w in data["workflows"]] == [120, 20]
        assert groq_stub.calls[0]["audio"] == b"fake-webm-audio"
        assert groq_stub.calls[0]["filename"] == "workshop.webm"
        assert TRANSCRIPT in openrouter_stub.calls[0]["messages"][0]["content"]

    def test_default_filename(self, client, groq_stub, openrouter_stub):
        groq_stub.transcription = TRANSCRIPT
        openrouter_stub.replies = ['{"workflows": []}']

        data = client.post("/api/process-audio", json={"audio": AUDIO}).json()

        assert data["workflows"] == []
        assert groq_stub.calls[0]["filename"] == "audio.webm"

    def test_data_url_prefix(self, client, groq_stub, openrouter_stub):
        groq_stub.transcription = TRANSCRIPT
        openrouter_stub.replies = ['{"workflows": []}']

        response = client.post("/api/process-audio", json={"audio": "data:audio/webm;base64," + AUDIO})

        assert response.status_code == 200
        assert groq_stub.calls[0]["audio"] == b"fake-webm-audio"

    def test_missing_audio(self, client):
        response = client.post("/api/process-audio", json={})

        assert response.status_code == 400
        assert response.json()["fields"] == [{"field": "audio", "message": "Nessun dato audio fornito"}]

    def test_invalid_base64(self, client, groq_stub):
        response = client.post("/api/process-audio", json={"audio": "abc"})

        assert response.status_code == 400
        assert response.json() == {"error": "Audio non valido: codifica base64 errata"}
        assert groq_stub.calls == []

    def test_provider_key_missing(self, client, openrouter_stub, groq_stub):
        openrouter_stub.configured = False

        response = client.post("/api/process-audio", json={"audio": AUDIO})

        assert response.status_code == 500
        assert response.json() == {"error": "Configurazione del server non valida"}
        assert groq_stub.calls == []

    def test_transcription_failure(self, client, groq_stub, openrouter_stub):
        groq_stub.transcription = LLMTimeoutError("groq: request timeout")

        response = client.post("/api/process-audio", json={"audio": AUDIO})

        assert response.status_code == 500
        assert response.json() == {"error": "Errore durante la trascrizione dell'audio"}
        assert openrouter_stub.calls == []

    def test_unparseable_extraction(self, client, groq_stub, openrouter_stub):
        groq_stub.transcription = TRANSCRIPT
        openrouter_stub.replies = ["workflows: nessuno"]

        response = client.post("/api/process-audio", json={"audio": AUDIO})

        assert response.status_code == 500
        assert response.json()["preview"] == "workflows: nessuno"

    def test_not_enough_time_left_for_extraction(self, client, groq_stub, openrouter_stub):
        groq_stub.transcription = TRANSCRIPT

        with patch("canvas_api.routers.audio.request_time_remaining", return_value=3.0):
            response = client.post("/api/process-audio", json={"audio": AUDIO})

        assert response.status_code == 504
        assert openrouter_stub.calls == []

    def test_rate_limit(self, client, groq_stub, openrouter_stub):
        groq_stub.transcription = TRANSCRIPT
        openrouter_stub.replies = ['{"workflows": []}'] * 3
        for _ in range(3):
            assert client.post("/api/process-audio", json={"audio": AUDIO}).status_code == 200

        response = client.post("/api/process-audio", json={"audio": AUDIO})

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "300"
