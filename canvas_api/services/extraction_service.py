"""
Workflow extraction from workshop audio and free-text descriptions

Audio: Groq Whisper transcript -> OpenRouter JSON-mode extraction.
Text: a single workflow extracted from a description.

Extracted workflows get sequential IDs (W001, W002, ...) and
tempoTotale = tempoMedio x frequenza.
"""

import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, List

from ..llm.client import LLMClient, LLMError
from .workflow_logic import as_number, calculate_total_time, format_workflow_id

logger = logging.getLogger(__name__)

MAX_AUDIO_BYTES = 25 * 1024 * 1024
PREVIEW_CHARS = 200

WORKFLOW_FIELDS_HELP = """- fase: fase del processo (es. "Analisi", "Produzione", "Controllo")
- titolo: titolo breve e chiaro (max 50 caratteri)
- descrizione: cosa viene fatto (2-3 frasi)
- tool: array di strumenti/software utilizzati
- input: array di input necessari
- output: array di output prodotti
- tempoMedio: minuti per singola esecuzione (stima ragionevole se non menzionato)
- frequenza: esecuzioni al mese (stima ragionevole se non menzionato)
- painPoints: problemi menzionati (stringa, può essere vuota)
- pii: true se gestisce dati personali
- hitl: true se richiede supervisione umana
- citazioni: true se necessita citazioni fonti
- owner: responsabile (stringa vuota se non menzionato)
- note: note aggiuntive (stringa, può essere vuota)"""

AUDIO_EXTRACTION_PROMPT = f"""Sei un esperto di mappatura processi aziendali.
Analizza questa trascrizione di un workshop ed estrai i workflow menzionati.
Per ogni workflow estrai:
{WORKFLOW_FIELDS_HELP}

Rispondi SOLO con JSON valido nel formato {{"workflows": [{{...}}]}}.
Se la trascrizione non contiene processi chiari, ritorna un array vuoto.

TRASCRIZIONE:
"""

TEXT_EXTRACTION_PROMPT = f"""Sei un esperto di mappatura processi aziendali.
Estrai UN workflow strutturato dalla descrizione seguente, con i campi:
{WORKFLOW_FIELDS_HELP}

Rispondi SOLO con un oggetto JSON valido, senza testo aggiuntivo.

DESCRIZIONE:
"""

REQUIRED_WORKFLOW_FIELDS = (
    "fase",
    "titolo",
    "descrizione",
    "tool",
    "input",
    "output",
    "tempoMedio",
    "frequenza",
)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class AudioDecodeError(ValueError):
    pass


class AudioTooLargeError(ValueError):
    pass


class ExtractionParseError(LLMError):
    """AI output is not the expected JSON; `preview` holds its start"""

    def __init__(self, message: str, raw: str, cause=None):
        super().__init__(message, cause)
        self.preview = (raw or "")[:PREVIEW_CHARS]


class IncompleteWorkflowError(LLMError):
    def __init__(self, missing: List[str]):
        super().__init__(f"Missing workflow fields: {', '.join(missing)}")
        self.missing = missing


def decode_audio(data: str) -> bytes:
    """
    Raises:
        AudioDecodeError: not base64
        AudioTooLargeError: decoded size over MAX_AUDIO_BYTES
    """
    # data: URLs from the browser recorder carry a "data:audio/webm;base64," prefix
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        audio = base64.b64decode(data)
    except (binascii.Error, ValueError) as e:
        raise AudioDecodeError(str(e))
    if not audio:
        raise AudioDecodeError("empty audio")
    if len(audio) > MAX_AUDIO_BYTES:
        raise AudioTooLargeError(f"{len(audio)} bytes")
    return audio


def normalize_workflows(items: Any) -> List[Dict[str, Any]]:
    """Assign W001... IDs and compute tempoTotale"""
    if not isinstance(items, list):
        return []
    workflows = []
    for index, item in enumerate(i for i in items if isinstance(i, dict)):
        workflow = dict(item)
        workflow["id"] = format_workflow_id(index + 1)
        workflow["tempoTotale"] = calculate_total_time(
            as_number(item.get("tempoMedio")), as_number(item.get("frequenza"))
        )
        workflows.append(workflow)
    return workflows


def parse_json_object(raw: str, search: bool = False) -> Dict[str, Any]:
    """
    Parse the model output as a JSON object

    With `search`, the first {...} block is taken, so chatter around the
    JSON is tolerated.
    """
    text = raw or ""
    if search:
        match = _JSON_OBJECT.search(text)
        if not match:
            raise ExtractionParseError("No JSON object in AI output", raw)
        text = match.group(0)
    try:
        parsed = json.loads(text)
    except ValueError as e:
        raise ExtractionParseError("AI output is not valid JSON", raw, cause=e)
    if not isinstance(parsed, dict):
        raise ExtractionParseError("AI output is not a JSON object", raw)
    return parsed


async def transcribe_audio(groq: LLMClient, model: str, audio: bytes, filename: str) -> str:
    transcription = await groq.transcribe(audio, model, filename=filename, language="it")
    logger.info(f"Transcribed {len(audio)} bytes into {len(transcription)} characters")
    return transcription


async def extract_workflows_from_transcript(
    openrouter: LLMClient,
    model: str,
    transcription: str,
) -> List[Dict[str, Any]]:
    raw = await openrouter.complete(
        [{"role": "user", "content": AUDIO_EXTRACTION_PROMPT + "\n\n" + transcription}],
        model,
        temperature=0.3,
        response_format={"type": "json_object"},
    )
    result = parse_json_object(raw or "{}")
    return normalize_workflows(result.get("workflows", []))


async def extract_workflow_from_text(openrouter: LLMClient, model: str, description: str) -> Dict[str, Any]:
    """
    Raises:
        ExtractionParseError: no JSON object in the reply
        IncompleteWorkflowError: required fields missing
    """
    raw = await openrouter.complete(
        [{"role": "user", "content": TEXT_EXTRACTION_PROMPT + description}],
        model,
        temperature=0.3,
        max_tokens=1500,
    )
    workflow = parse_json_object(raw, search=True)
    missing = [f for f in REQUIRED_WORKFLOW_FIELDS if f not in workflow]
    if missing:
        raise IncompleteWorkflowError(missing)
    workflow["tempoTotale"] = calculate_total_time(
        as_number(workflow.get("tempoMedio")), as_number(workflow.get("frequenza"))
    )
    return workflow
