"""
Context-aware canvas assistant

Groq answers first; OpenRouter takes over when Groq fails.
"""

from typing import Any, Dict, List, Optional

from ..llm.client import LLMClient
from ..llm.fallback import FallbackResult, Strategy, run_fallback_chain

HISTORY_LIMIT = 10
EMPTY_REPLY = "Nessuna risposta disponibile."

STEP_NAMES = {
    1: "Dashboard",
    2: "Mappatura Workflow",
    3: "Valutazione Workflow",
    4: "Risultati e Strategie AI",
}

BASE_PROMPT = """Sei un assistente AI esperto in:
- Framework "AI Collaboration Canvas"
- Analisi e mappatura processi aziendali
- Strategie di adozione AI in azienda
- Valutazione automazione e carico cognitivo

Aiuta l'utente a compilare i workflow, capire il framework, individuare
opportunità di automazione AI e rispondere a domande sulle strategie AI.

Rispondi in italiano, in modo conciso e pratico (max 3-4 frasi), specifico
al contesto dell'utente e con esempi concreti quando utile.
"""


def build_system_prompt(context: Optional[Dict[str, Any]]) -> str:
    prompt = BASE_PROMPT
    context = context or {}

    step = context.get("currentStep")
    if isinstance(step, int) and step in STEP_NAMES:
        prompt += f"\nL'utente è nello step: {step} - {STEP_NAMES[step]}\n"

    workflow = context.get("currentWorkflow")
    if isinstance(workflow, dict):
        tools = workflow.get("tool")
        tools = ", ".join(map(str, tools)) if isinstance(tools, list) and tools else "Nessuno"
        prompt += (
            "\nWorkflow corrente in editing:\n"
            f"- Titolo: {workflow.get('titolo') or 'Non compilato'}\n"
            f"- Descrizione: {workflow.get('descrizione') or 'Non compilata'}\n"
            f"- Tool: {tools}\n"
            f"- Tempo medio: {workflow.get('tempoMedio') or 'Non specificato'} min\n"
            f"- Frequenza: {workflow.get('frequenza') or 'Non specificata'} volte/mese\n"
        )

    workflows = context.get("allWorkflows")
    if isinstance(workflows, list) and workflows:
        prompt += f"\nL'utente ha {len(workflows)} workflow già mappati.\n"

    prompt += "\nRicorda: risposte brevi, pratiche e contestualizzate."
    return prompt


def trim_history(history: Optional[List[Dict[str, Any]]]) -> List[Dict[str, str]]:
    """Last HISTORY_LIMIT user/assistant turns with string content"""
    turns = [
        {"role": m["role"], "content": m["content"]}
        for m in history or []
        if isinstance(m, dict)
        and m.get("role") in ("user", "assistant")
        and isinstance(m.get("content"), str)
    ]
    return turns[-HISTORY_LIMIT:]


def build_messages(
    message: str,
    context: Optional[Dict[str, Any]],
    history: Optional[List[Dict[str, Any]]],
) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": build_system_prompt(context)},
        *trim_history(history),
        {"role": "user", "content": message},
    ]


async def _ask(client: LLMClient, model: str, messages: List[Dict[str, str]]) -> str:
    reply = await client.complete(messages, model, temperature=0.7, max_tokens=500, top_p=0.9)
    return reply.strip() or EMPTY_REPLY


async def answer(
    message: str,
    context: Optional[Dict[str, Any]],
    history: Optional[List[Dict[str, Any]]],
    groq: LLMClient,
    groq_model: str,
    openrouter: LLMClient,
    openrouter_model: str,
) -> FallbackResult[str]:
    """
    Raises:
        FallbackExhausted: both providers failed
    """
    messages = build_messages(message, context, history)
    return await run_fallback_chain([
        Strategy("groq", lambda: _ask(groq, groq_model, messages)),
        Strategy("openrouter", lambda: _ask(openrouter, openrouter_model, messages)),
    ])
