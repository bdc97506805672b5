"""
AI implementation plan (30/60/90 days)

Workflows with an evaluation are summarised, highest priority first, and sent
to a reasoning model on OpenRouter. The fallback model is only used when the
primary one is saturated; other failures surface to the caller.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..llm.client import LLMClient, LLMResponseError, is_saturation_error
from ..llm.fallback import FallbackResult, Strategy, run_fallback_chain
from .workflow_logic import (
    as_number,
    calculate_monthly_savings,
    calculate_priority,
    calculate_roi,
    calculate_strategy,
)

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = ("implementation-plan",)

IMPLEMENTATION_PLAN_PROMPT = """Sei un consulente esperto di trasformazione digitale e AI.
Analizza i workflow valutati e crea un piano di implementazione pratico con
roadmap 30/60/90 giorni, priorità, quick wins e azioni concrete.

Rispondi in markdown, in italiano, con queste sezioni:
## 📊 Analisi Overview
## 🎯 Quick Wins (0-30 giorni)
## 🚀 Medium Term (30-60 giorni)
## 🎓 Long Term (60-90 giorni)
## ⚠️ Attenzioni Critiche (PII, supervisione umana)
## 💡 Raccomandazioni Strategiche

Sii specifico, pratico e orientato all'azione."""


@dataclass
class WorkflowSummary:
    workflow_id: str
    text: str
    priority: float


def _strategy_name(evaluation: Dict[str, Any]) -> str:
    strategy = evaluation.get("strategy")
    if isinstance(strategy, dict) and strategy.get("name"):
        return strategy["name"]
    return calculate_strategy(
        as_number(evaluation.get("autoScore")), as_number(evaluation.get("cogScore"))
    ).name


def _priority(evaluation: Dict[str, Any]) -> float:
    if "priorita" in evaluation:
        return as_number(evaluation.get("priorita"))
    return calculate_priority(as_number(evaluation.get("impatto")), as_number(evaluation.get("complessita")))


def summarize_workflow(
    workflow: Dict[str, Any],
    evaluation: Dict[str, Any],
    costo_orario: Optional[float],
) -> WorkflowSummary:
    total = as_number(workflow.get("tempoTotale"))
    complessita = as_number(evaluation.get("complessita"))
    priority = _priority(evaluation)
    tools = workflow.get("tool") if isinstance(workflow.get("tool"), list) else []

    savings_text = ""
    if costo_orario:
        savings = calculate_monthly_savings(total, costo_orario)
        savings_text = f" (€{savings:.0f}/mese risparmio, ROI {calculate_roi(savings, complessita):.0f}%)"

    lines = [
        f"**Workflow {workflow.get('id', '?')}: {workflow.get('titolo', '')}**",
        f"- Fase: {workflow.get('fase', 'N/A')}",
        f"- Tempo totale: {total:g} min/mese{savings_text}",
        f"- Tool attuali: {', '.join(map(str, tools)) or 'N/A'}",
        f"- Strategia AI: {_strategy_name(evaluation)}",
        f"- Score: Automazione {as_number(evaluation.get('autoScore')):g}/8, "
        f"Carico Cognitivo {as_number(evaluation.get('cogScore')):g}/8",
        f"- Complessità implementazione: {complessita:g}/5",
        f"- Priorità: {priority:.1f}",
        f"- PII: {'Sì' if workflow.get('pii') else 'No'}, HITL: {'Sì' if workflow.get('hitl') else 'No'}",
    ]
    if workflow.get("painPoints"):
        lines.append(f"- Pain points: {workflow['painPoints']}")
    return WorkflowSummary(str(workflow.get("id", "")), "\n".join(lines), priority)


def build_context(
    workflows: List[Dict[str, Any]],
    evaluations: Dict[str, Any],
    costo_orario: Optional[float],
) -> str:
    summaries = [
        summarize_workflow(w, evaluations[str(w.get("id"))], costo_orario)
        for w in workflows
        if isinstance(evaluations.get(str(w.get("id"))), dict)
    ]
    summaries.sort(key=lambda s: s.priority, reverse=True)

    total_time = sum(as_number(w.get("tempoTotale")) for w in workflows)
    lines = [
        "CONTESTO GENERALE:",
        f"- Workflow totali: {len(workflows)}",
        f"- Tempo mensile totale: {total_time:g} minuti",
    ]
    if costo_orario:
        total_savings = calculate_monthly_savings(total_time, costo_orario)
        lines.append(f"- Risparmio potenziale: €{total_savings:.0f}/mese (costo orario: €{costo_orario:g}/ora)")
    lines += ["", "WORKFLOW DETTAGLIATI (ordinati per priorità decrescente):", ""]
    lines.append("\n\n".join(s.text for s in summaries))
    return "\n".join(lines)


async def _plan(client: LLMClient, model: str, prompt: str) -> str:
    text = await client.complete([{"role": "user", "content": prompt}], model, temperature=0.7)
    if not text.strip():
        raise LLMResponseError(f"{model} returned an empty plan")
    return text


async def generate_implementation_plan(
    workflows: List[Dict[str, Any]],
    evaluations: Dict[str, Any],
    costo_orario: Optional[float],
    client: LLMClient,
    primary_model: str,
    fallback_model: str,
) -> FallbackResult[str]:
    """
    Returns the plan and, as `strategy`, the model that wrote it

    Raises:
        LLMError: primary failed for a non-saturation reason
        FallbackExhausted: both models failed while saturated
    """
    prompt = IMPLEMENTATION_PLAN_PROMPT + "\n\n" + build_context(workflows, evaluations, costo_orario)
    logger.info(f"Implementation plan for {len(workflows)} workflows via {primary_model}")
    return await run_fallback_chain([
        Strategy(primary_model, lambda: _plan(client, primary_model, prompt), fallback_on=is_saturation_error),
        Strategy(fallback_model, lambda: _plan(client, fallback_model, prompt)),
    ])
