"""
BPMN 2.0 generation

The AI output is accepted only when it is a well-formed BPMN definitions
document; anything else falls through to a deterministic
start -> task -> end diagram.
"""

import logging
import re
from typing import Any, Dict, List, Optional
from xml.etree import ElementTree
from xml.sax.saxutils import escape

from ..llm.client import LLMClient, LLMResponseError
from ..llm.fallback import FallbackResult, Strategy, run_fallback_chain

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "Sei un esperto di BPMN 2.0. Generi sempre XML valido senza spiegazioni."

_FENCE = re.compile(r"```(?:xml)?", re.IGNORECASE)


def escape_xml(value: Any) -> str:
    return escape(str(value or ""), {'"': "&quot;", "'": "&apos;"})


def collect_owners(workflow: Dict[str, Any], related: Optional[List[Dict[str, Any]]]) -> List[str]:
    """Distinct non-empty string owners in first-seen order"""
    owners: List[str] = []
    for item in [workflow, *(related or [])]:
        owner = item.get("owner") if isinstance(item, dict) else None
        if not isinstance(owner, str):
            continue
        owner = owner.strip()
        if owner and owner not in owners:
            owners.append(owner)
    return owners


def _join(values: Any) -> str:
    if isinstance(values, list):
        return ", ".join(str(v) for v in values)
    return str(values or "")


def build_bpmn_prompt(workflow: Dict[str, Any], related: Optional[List[Dict[str, Any]]] = None) -> str:
    owners = collect_owners(workflow, related)
    lines = [
        "Analizza questo processo e genera un XML BPMN 2.0 completo e VALIDO.",
        "",
        "**PROCESSO PRINCIPALE:**",
        f"Titolo: {workflow['titolo']}",
        f"Descrizione: {workflow['descrizione']}",
    ]
    for key, label in (("tool", "Tool usati"), ("input", "Input"), ("output", "Output")):
        if workflow.get(key):
            lines.append(f"{label}: {_join(workflow[key])}")
    if workflow.get("painPoints"):
        lines.append(f"Pain Points: {workflow['painPoints']}")
    if workflow.get("owner"):
        lines.append(f"Responsabile: {_join(workflow['owner'])}")

    if related:
        lines += ["", "**PROCESSI CORRELATI:**"]
        for i, item in enumerate(related, start=1):
            owner = f" (Responsabile: {_join(item['owner'])})" if item.get("owner") else ""
            lines.append(f"{i}. {item.get('titolo', '')} - {item.get('descrizione', '')}{owner}")

    lines += ["", "**REQUISITI:**"]
    if len(owners) > 1:
        lines += [
            f"Ci sono {len(owners)} responsabili diversi: {', '.join(owners)}.",
            f"Crea una <bpmn:collaboration> con un pool e {len(owners)} lane "
            "(una per responsabile) in un <bpmn:laneSet>.",
        ]
    else:
        lines.append("Usa un singolo <bpmn:process>.")
    lines += [
        "- Namespace bpmn, bpmndi, dc, di completi e ID univoci",
        "- Elementi: startEvent, task, serviceTask, userTask, exclusiveGateway, parallelGateway, endEvent",
        "- Layout orizzontale left-to-right con BPMNShape e BPMNEdge per ogni elemento",
        "- Task 100x80, gateway 50x50, eventi 36x36, distanza orizzontale 180-200px",
        "- Nomi descrittivi in italiano",
        "",
        "RISPONDI SOLO CON XML VALIDO, SENZA MARKDOWN O SPIEGAZIONI.",
    ]
    return "\n".join(lines)


def clean_bpmn_output(raw: str) -> str:
    """
    Strip code fences and leading chatter, then check the document

    Raises:
        LLMResponseError: not a parseable bpmn:definitions document
    """
    text = _FENCE.sub("", raw or "").strip()
    start = text.find("<?xml")
    if start == -1:
        raise LLMResponseError("BPMN output has no XML declaration")
    text = text[start:]
    if "bpmn:definitions" not in text:
        raise LLMResponseError("BPMN output has no bpmn:definitions element")
    try:
        ElementTree.fromstring(text.encode("utf-8"))
    except ElementTree.ParseError as e:
        raise LLMResponseError("BPMN output is not well-formed XML", cause=e)
    return text


def generate_simple_bpmn(workflow: Dict[str, Any]) -> str:
    """Deterministic single-task diagram"""
    title = escape_xml(workflow.get("titolo"))
    description = escape_xml(workflow.get("descrizione"))
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<bpmn:definitions xmlns:bpmn="http://www.omg.org/spec/BPMN/20100524/MODEL"
                  xmlns:bpmndi="http://www.omg.org/spec/BPMN/20100524/DI"
                  xmlns:dc="http://www.omg.org/spec/DD/20100524/DC"
                  xmlns:di="http://www.omg.org/spec/DD/20100524/DI"
                  id="Definitions_1"
                  targetNamespace="http://bpmn.io/schema/bpmn">
  <bpmn:process id="Process_1" name="{title}" isExecutable="false">
    <bpmn:startEvent id="StartEvent_1" name="Inizio">
      <bpmn:outgoing>Flow_1</bpmn:outgoing>
    </bpmn:startEvent>
    <bpmn:task id="Task_1" name="{title}">
      <bpmn:documentation>{description}</bpmn:documentation>
      <bpmn:incoming>Flow_1</bpmn:incoming>
      <bpmn:outgoing>Flow_2</bpmn:outgoing>
    </bpmn:task>
    <bpmn:endEvent id="EndEvent_1" name="Fine">
      <bpmn:incoming>Flow_2</bpmn:incoming>
    </bpmn:endEvent>
    <bpmn:sequenceFlow id="Flow_1" sourceRef="StartEvent_1" targetRef="Task_1" />
    <bpmn:sequenceFlow id="Flow_2" sourceRef="Task_1" targetRef="EndEvent_1" />
  </bpmn:process>
  <bpmndi:BPMNDiagram id="BPMNDiagram_1">
    <bpmndi:BPMNPlane id="BPMNPlane_1" bpmnElement="Process_1">
      <bpmndi:BPMNShape id="Shape_StartEvent_1" bpmnElement="StartEvent_1">
        <dc:Bounds x="160" y="202" width="36" height="36" />
      </bpmndi:BPMNShape>
      <bpmndi:BPMNShape id="Shape_Task_1" bpmnElement="Task_1">
        <dc:Bounds x="280" y="180" width="100" height="80" />
      </bpmndi:BPMNShape>
      <bpmndi:BPMNShape id="Shape_EndEvent_1" bpmnElement="EndEvent_1">
        <dc:Bounds x="460" y="202" width="36" height="36" />
      </bpmndi:BPMNShape>
      <bpmndi:BPMNEdge id="Edge_Flow_1" bpmnElement="Flow_1">
        <di:waypoint x="196" y="220" />
        <di:waypoint x="280" y="220" />
      </bpmndi:BPMNEdge>
      <bpmndi:BPMNEdge id="Edge_Flow_2" bpmnElement="Flow_2">
        <di:waypoint x="380" y="220" />
        <di:waypoint x="460" y="220" />
      </bpmndi:BPMNEdge>
    </bpmndi:BPMNPlane>
  </bpmndi:BPMNDiagram>
</bpmn:definitions>"""


async def generate_bpmn_with_ai(client: LLMClient, model: str, prompt: str) -> str:
    raw = await client.complete(
        [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        model,
        temperature=0.2,
        max_tokens=5000,
    )
    return clean_bpmn_output(raw)


async def generate_bpmn(
    workflow: Dict[str, Any],
    related: Optional[List[Dict[str, Any]]],
    client: LLMClient,
    model: str,
) -> FallbackResult[str]:
    """AI diagram first, local template when the AI path fails"""
    return await run_fallback_chain([
        Strategy("ai", lambda: generate_bpmn_with_ai(client, model, build_bpmn_prompt(workflow, related))),
        Strategy("template", lambda: generate_simple_bpmn(workflow)),
    ])
