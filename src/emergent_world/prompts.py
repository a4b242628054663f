from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .council import Advisor, GameEvent
    from .evaluation import PlayerChoice

_DIRECTOR_METRICS_LIST = (
    "Public Opinion:\n\nEconomy:\n\nNational Security:\n\nGeopolitical Standing:\n\n"
    "Tech Sector Confidence:\n\nCivil Liberties:"
)

_IMPACT_LEVEL_SCHEMA = """{"impacts":{
  "economy":{"level":"low|medium|high|extreme","direction":"+|-|0","justification":"<why>"},
  "security":{"level":"low|medium|high|extreme","direction":"+|-|0","justification":"<why>"},
  "diplomacy":{"level":"low|medium|high|extreme","direction":"+|-|0","justification":"<why>"},
  "environment":{"level":"low|medium|high|extreme","direction":"+|-|0","justification":"<why>"},
  "approval":{"level":"low|medium|high|extreme","direction":"+|-|0","justification":"<why>"},
  "stability":{"level":"low|medium|high|extreme","direction":"+|-|0","justification":"<why>"}
}}"""


def advisor_primary_prompt(advisor: Advisor, event: GameEvent) -> str:
    persona = f"{advisor.name} ({advisor.title}) specialty={advisor.specialty} traits={advisor.personality}"
    return (
        "ROLE: Senior presidential advisor.\n"
        f"Persona: {persona}\n"
        f"Event: {event.title}\n"
        f"Category: {event.category} Severity: {event.severity}/10\n"
        f"Description: {event.description}\n"
        "Task: Provide one concise, actionable advisory opinion (policy recommendation or strategic action).\n"
        'Style and Voice: Address the President directly using second-person ("you", "your"); '
        'do not refer to the President in third person. No self-reference (avoid "I", "we").\n'
        "Constraints: 2-4 sentences. No internal reasoning, no preamble.\n"
        'Output ONLY valid JSON: {"advisor_opinion":"<your concise advisory>"}\n'
        "If unsure, still give best judgment."
    )


def advisor_secondary_prompt(advisor: Advisor, event: GameEvent) -> str:
    return (
        f"You are {advisor.name} ({advisor.title}), a senior presidential advisor.\n"
        f"Event: {event.title}\n"
        f"Category: {event.category} (severity {event.severity}/10)\n"
        f"Description: {event.description}\n"
        "Task: Provide one concise, actionable advisory opinion.\n"
        "Constraints: 2-4 sentences. No internal reasoning, no preamble, no self-reference.\n"
        'Output ONLY valid JSON exactly like: {"advisor_opinion":"<your concise advisory>"}\n'
        "No markdown."
    )


def director_primary_prompt(event: GameEvent, choice: PlayerChoice) -> str:
    reasoning = choice.reasoning or "(no player reasoning provided)"
    return (
        "Event Evaluation Prompt\n"
        "You are an expert political and economic analyst AI. Your task is to evaluate a player's action "
        "in response to a specific event within a presidential simulator game.\n\n"
        "Analyze the provided Event Description and the player's Chosen Action. Based on this analysis, "
        "determine the impact on the given Game Metrics. For each metric change, you must provide a brief, "
        "clear justification.\n\n"
        f"1. Event Description\n{event.description} ({event.category}, severity {event.severity}/10)\n\n"
        f"2. Player's Chosen Action\n{choice.option}: {reasoning}\n\n"
        f"3. Game Metrics\n{_DIRECTOR_METRICS_LIST}\n\n"
        "4. Evaluation Task\nInstructions:\n"
        "- Step 1: Analyze the Action's Logic and Consequences. Briefly summarize immediate and long-term "
        "consequences.\n"
        "- Step 2: Choose an impact level and direction for each metric with a one-sentence justification.\n\n"
        "Example Output Structure:\nAction Analysis: <2-4 sentences>\n\n"
        "CRUCIAL: After your analysis, output exactly ONE final line containing ONLY a JSON object with this "
        f"schema:\n{_IMPACT_LEVEL_SCHEMA}\n"
        "Map as follows: Public Opinion->approval, Economy->economy, National Security->security, "
        "Geopolitical Standing->diplomacy, Tech Sector Confidence->stability, Civil Liberties->approval. "
        "Do NOT include any text or markdown after the JSON."
    )


def director_secondary_prompt(event: GameEvent, choice: PlayerChoice) -> str:
    return (
        "Event Evaluation Prompt\n"
        "You are an expert political and economic analyst AI. Evaluate the player's action for its impact "
        "on game metrics.\n\n"
        "Provide:\n"
        "1) Action Analysis: 2-4 concise sentences.\n"
        "2) A final single-line JSON object with categorical impact levels and directions per metric. "
        "Use exactly this schema keys and ranges:\n"
        f"{_IMPACT_LEVEL_SCHEMA}\n"
        "Rules:\n"
        "- Choose a LEVEL per metric: low (5-10), medium (15-30), high (30-50), extreme (maximal effect).\n"
        '- Direction: "+" increases the metric, "-" decreases it, "0" means no change.\n'
        "- Output ONLY the JSON object on the final line. No markdown after it.\n\n"
        f"Event Description:\n{event.description}\n\n"
        f"Player's Chosen Action:\n{choice.option}. {choice.reasoning}".rstrip()
    )


def event_image_prompt(event: GameEvent) -> str:
    return (
        "Create a realistic news photo of this event. Keep it neutral and grounded.\n\n"
        f"Title: {event.title}\n"
        f"Category: {event.category} (Severity {event.severity}/10)\n"
        f"Details: {event.description}\n\n"
        "Style:\n"
        "- Photojournalism look (BBC/AP).\n"
        "- Realistic lighting.\n"
        "- Show the place and context (signs, buildings, equipment).\n"
        "- Medium-wide shot. Avoid close-ups of faces.\n"
        "- Professional camera look (35-50mm)."
    )
