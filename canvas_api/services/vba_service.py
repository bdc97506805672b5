"""
VBA macro generation

Groq writes the module; output that does not look like VBA (no Sub/Function)
falls back to a fixed skeleton with logging and error handling.
"""

import re
from datetime import datetime
from typing import Any, Dict, List

from ..llm.client import LLMClient, LLMResponseError
from ..llm.fallback import FallbackResult, Strategy, run_fallback_chain

SYSTEM_PROMPT = (
    "Sei un Senior VBA Developer. Generi codice VBA professionale, modulare e "
    "production-ready. Output SOLO codice, senza spiegazioni o markdown."
)

_FENCE = re.compile(r"```(?:vba|vb)?\n?", re.IGNORECASE)


def sanitize_filename(title: str) -> str:
    """ASCII letters, digits, '_' and '-' only, at most 50 characters"""
    name = re.sub(r"[^a-zA-Z0-9_\-]", "_", title or "")
    name = re.sub(r"_+", "_", name)
    return name[:50] or "workflow"


def _tools(workflow: Dict[str, Any]) -> List[str]:
    tools = workflow.get("tool") or []
    if not isinstance(tools, list):
        tools = [tools]
    return [str(t).lower() for t in tools]


def build_vba_prompt(workflow: Dict[str, Any]) -> str:
    tools = _tools(workflow)
    uses_excel = any("excel" in t for t in tools)
    uses_outlook = any("outlook" in t or "email" in t for t in tools)
    uses_word = any("word" in t for t in tools)

    lines = [
        "Genera codice VBA production-ready per automatizzare questo workflow.",
        "",
        "**WORKFLOW:**",
        f"Titolo: {workflow['titolo']}",
        f"Descrizione: {workflow['descrizione']}",
    ]
    for key, label in (("tool", "Tool attualmente usati"), ("input", "Input richiesti"), ("output", "Output prodotti")):
        value = workflow.get(key)
        if value:
            lines.append(f"{label}: {', '.join(map(str, value)) if isinstance(value, list) else value}")
    if workflow.get("painPoints"):
        lines.append(f"Pain Points da risolvere: {workflow['painPoints']}")
    if workflow.get("tempoMedio"):
        lines.append(f"Tempo attuale: {workflow['tempoMedio']} minuti (da ridurre)")

    lines += [
        "",
        "**REQUISITI:**",
        "- Option Explicit, Sub Main() che orchestra gli step, una Sub per step",
        "- On Error GoTo ErrorHandler in ogni routine, con LogInfo/LogError su un foglio di log",
        "- Application.ScreenUpdating = False durante l'esecuzione, ripristinato alla fine",
        "- Validazione input e pulizia degli oggetti",
    ]
    if uses_excel:
        lines.append("- Excel: Range/Worksheet, AutoFilter, WorksheetFunction, array per operazioni massive")
    if uses_outlook:
        lines.append('- Outlook: CreateObject("Outlook.Application"), email con allegati')
    if uses_word:
        lines.append('- Word: CreateObject("Word.Application"), bookmark per inserimenti dinamici')
    lines += ["", "RISPONDI SOLO CON CODICE VBA, SENZA MARKDOWN O SPIEGAZIONI."]
    return "\n".join(lines)


def clean_vba_output(raw: str) -> str:
    """
    Raises:
        LLMResponseError: output has neither a Sub nor a Function
    """
    code = _FENCE.sub("", raw or "").strip()
    if "Sub " not in code and "Function " not in code:
        raise LLMResponseError("AI output is not VBA code")
    return code


def generate_simple_vba(workflow: Dict[str, Any], now: datetime = None) -> str:
    """Module skeleton with Main, one step, logging and error handling"""
    now = now or datetime.now()
    title = " ".join(str(workflow.get("titolo", "")).split()).replace('"', "'")
    description = " ".join(str(workflow.get("descrizione", "")).split())
    module = sanitize_filename(title)
    return f"""' ===================================
' Modulo: Main_{module}
' Data: {now.strftime("%d/%m/%Y %H:%M:%S")}
' Descrizione: {description}
' ===================================
Option Explicit

Const LOG_SHEET As String = "AutomationLog"

Public Sub Main()
    On Error GoTo ErrorHandler

    Application.ScreenUpdating = False
    Call LogInfo("Workflow iniziato: {title}")

    Call EseguiWorkflow

    Application.ScreenUpdating = True
    Call LogInfo("Workflow completato")
    MsgBox "Workflow completato con successo!", vbInformation
    Exit Sub

ErrorHandler:
    Application.ScreenUpdating = True
    Call LogError(Err.Number, Err.Description, "Main")
    MsgBox "Errore: " & Err.Description, vbCritical
End Sub

Private Sub EseguiWorkflow()
    ' Implementare qui gli step di "{title}"
End Sub

Private Sub LogInfo(ByVal message As String)
    Call WriteLog("INFO", message)
End Sub

Private Sub LogError(ByVal errNum As Long, ByVal errDesc As String, ByVal source As String)
    Call WriteLog("ERROR", source & " - " & errNum & ": " & errDesc)
End Sub

Private Sub WriteLog(ByVal level As String, ByVal message As String)
    Dim ws As Worksheet
    On Error Resume Next
    Set ws = ThisWorkbook.Worksheets(LOG_SHEET)
    On Error GoTo 0
    If ws Is Nothing Then
        Set ws = ThisWorkbook.Worksheets.Add
        ws.Name = LOG_SHEET
        ws.Range("A1:C1").Value = Array("Timestamp", "Livello", "Messaggio")
    End If
    With ws
        Dim nextRow As Long
        nextRow = .Cells(.Rows.Count, 1).End(xlUp).Row + 1
        .Cells(nextRow, 1).Value = Now
        .Cells(nextRow, 2).Value = level
        .Cells(nextRow, 3).Value = message
    End With
End Sub
"""


async def generate_vba_with_ai(client: LLMClient, model: str, prompt: str) -> str:
    raw = await client.complete(
        [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        model,
        temperature=0.3,
        max_tokens=6000,
    )
    return clean_vba_output(raw)


async def generate_vba(workflow: Dict[str, Any], client: LLMClient, model: str) -> FallbackResult[str]:
    prompt = build_vba_prompt(workflow)
    return await run_fallback_chain([
        Strategy("ai", lambda: generate_vba_with_ai(client, model, prompt)),
        Strategy("template", lambda: generate_simple_vba(workflow)),
    ])
