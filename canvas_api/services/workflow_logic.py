"""
Workflow scoring rules

The 2x2 matrix maps an automation score and a cognitive-load score (0-8
each) to one of four AI strategies. The other helpers derive monthly time,
savings and priority from a workflow and its evaluation.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Strategy:
    name: str
    color: str
    desc: str


KEEP_HUMAN = Strategy(
    name="🔴 Mantienilo umano",
    color="#dc3545",
    desc="Non delegare all'IA, rimane gestione manuale",
)
AUTOMATED_TOOL = Strategy(
    name="🔧 Strumento automatizzato",
    color="#17a2b8",
    desc="Trova un tool specifico che automatizza completamente",
)
AI_BRAINSTORMING = Strategy(
    name="💡 Brainstorming con l'intelligenza artificiale",
    color="#9c27b0",
    desc="Usa l'IA come partner di pensiero per esplorare idee",
)
AI_ASSISTANT = Strategy(
    name="🤝 Assistente AI",
    color="#28a745",
    desc="Crea un prompt riutilizzabile per delegare sistematicamente",
)


def calculate_strategy(auto_score: float, cog_score: float) -> Strategy:
    """Strategy for a (automation, cognitive) pair; 5 or more counts as high"""
    high_auto = auto_score >= 5
    high_cog = cog_score >= 5
    if not high_auto and not high_cog:
        return KEEP_HUMAN
    if high_auto and not high_cog:
        return AUTOMATED_TOOL
    if not high_auto and high_cog:
        return AI_BRAINSTORMING
    return AI_ASSISTANT


def calculate_total_time(tempo_medio: float, frequenza: float) -> float:
    """Minutes per month"""
    return tempo_medio * frequenza


def calculate_priority(impatto: float, complessita: float) -> float:
    if not complessita:
        return 0.0
    return impatto / complessita


def calculate_monthly_savings(minutes: float, costo_orario: Optional[float]) -> float:
    """Euro per month saved when `minutes` are no longer spent"""
    if not costo_orario:
        return 0.0
    return (minutes / 60) * costo_orario


def calculate_roi(savings: float, complessita: float) -> float:
    if not complessita:
        return 0.0
    return (savings / complessita) * 20


def format_workflow_id(number: int) -> str:
    return f"W{number:03d}"


def as_number(value, default: float = 0.0) -> float:
    """Numeric value from loosely typed AI/JSON payloads"""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.replace(",", "."))
        except ValueError:
            return default
    return default
