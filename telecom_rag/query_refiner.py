"""
Query refinement ("ghost prompt").

A lightweight, low-temperature LLM call that disambiguates terse questions
before retrieval. It only ever adds a few domain-context tokens; any failure
falls back to the user's own wording.
"""
import json
import re
from dataclasses import dataclass, field
from typing import Protocol

import sentry_sdk

from telecom_rag.logging_config import get_logger

logger = get_logger(__name__)


GHOST_PROMPT_SYSTEM = """You are a LIGHT query-refinement assistant for Algérie Télécom's Front Office document retrieval system.

Your goal is NOT to rewrite queries aggressively.
Your goal is ONLY to resolve ambiguity and add missing Algérie Télécom context when needed, keeping the query close to the user's original wording.

Rules:
- Preserve the user's key keywords and phrasing.
- Only add context tokens when they are clearly missing (e.g., "Algérie Télécom", "Idoom Fibre", "ADSL", "4G LTE", "FTTH", "facture", "paiement", "résiliation", "NGBSS").
- Do NOT add long OR lists (no game lists, no marketing buzzwords).
- Do NOT broaden to other domains unless the user is ambiguous.
- If the query is already specific, return it unchanged (isAmbiguous=false).
- Add at most 2-5 extra tokens total.

Output ONLY valid JSON in this schema:
{
  "refinedQuery": "string (same language as input)",
  "intent": "short intent",
  "entities": ["string", "string"],
  "isAmbiguous": true/false
}"""

GHOST_PROMPT_EXAMPLES = """Examples:
User: "gaming" ->
{"refinedQuery":"offre Gamers Algérie Télécom","intent":"find gamers offer","entities":["Gamers"],"isAmbiguous":true}

User: "what's the deal?" ->
{"refinedQuery":"offres promotions Algérie Télécom","intent":"find current promotions","entities":["offres","promotions"],"isAmbiguous":true}

User: "cheapest GAMES offer" ->
{"refinedQuery":"offre Gamers Algérie Télécom prix moins cher","intent":"find cheapest gamers offer","entities":["Gamers","prix"],"isAmbiguous":true}

User: "fibre 100mb price" ->
{"refinedQuery":"fibre FTTH 100 Mbps prix Algérie Télécom","intent":"price for 100 Mbps fiber","entities":["FTTH","100 Mbps","prix"],"isAmbiguous":false}

User: "comment payer facture" ->
{"refinedQuery":"paiement facture Algérie Télécom","intent":"how to pay bill","entities":["paiement","facture"],"isAmbiguous":false}

User: "NGBSS activer offre Gamers" ->
{"refinedQuery":"NGBSS activation offre Gamers","intent":"NGBSS activation steps","entities":["NGBSS","Gamers"],"isAmbiguous":false}"""


AMBIGUOUS_PATTERNS = [
    re.compile(r"^(what|how|where|when|why|qui|quoi|comment|où|quand|pourquoi)\s", re.IGNORECASE),
    re.compile(r"^(tell me|show me|give me|dis moi|montre)", re.IGNORECASE),
    re.compile(r"\?$"),
    re.compile(r"^(the|le|la|les|un|une|des)\s+\w+$", re.IGNORECASE),
]


class ChatCompleter(Protocol):
    async def complete_chat(
        self,
        messages: list[dict],
        temperature: float = 0.2,
        model: str | None = None,
    ) -> str:
        ...


@dataclass
class RefinedQuery:
    original_query: str
    refined_query: str
    intent: str = "unknown"
    entities: list[str] = field(default_factory=list)
    is_ambiguous: bool = False

    @classmethod
    def unrefined(cls, query: str) -> "RefinedQuery":
        return cls(original_query=query, refined_query=query)


def is_query_likely_ambiguous(query: str) -> bool:
    """
    Quick check if a query is likely ambiguous and worth refining.

    Very short queries, WH-questions, imperative openers, trailing question
    marks and bare determiner + noun phrases all count as ambiguous.
    """
    trimmed = query.strip().lower()

    if len(trimmed.split()) <= 2:
        return True

    return any(pattern.search(trimmed) for pattern in AMBIGUOUS_PATTERNS)


def extract_json_object(text: str) -> str | None:
    """
    Return the first balanced {...} block in text, or None.

    Braces inside JSON strings (including escaped quotes) are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this opening brace, try the next one
        start = text.find("{", start + 1)
    return None


def parse_refinement(query: str, response: str) -> RefinedQuery:
    """
    Parse the ghost prompt response into a RefinedQuery.

    Raises:
        ValueError: If no JSON object can be found or decoded.
    """
    block = extract_json_object(response)
    if block is None:
        raise ValueError("no JSON object in refinement response")

    parsed = json.loads(block)
    if not isinstance(parsed, dict):
        raise ValueError("refinement response is not a JSON object")

    refined = parsed.get("refinedQuery")
    intent = parsed.get("intent")
    entities = parsed.get("entities")
    return RefinedQuery(
        original_query=query,
        refined_query=refined.strip() if isinstance(refined, str) and refined.strip() else query,
        intent=intent.strip() if isinstance(intent, str) and intent.strip() else "unknown",
        entities=[str(e) for e in entities] if isinstance(entities, list) else [],
        is_ambiguous=bool(parsed.get("isAmbiguous")),
    )


async def refine_query(
    query: str,
    chat: ChatCompleter,
    model: str | None = None,
    temperature: float = 0.1,
) -> RefinedQuery:
    """
    Refine an ambiguous query with one LLM round-trip.

    Fail-open: on any error the unrefined query is returned with
    intent "unknown", so refinement never aborts the pipeline.
    """
    messages = [
        {"role": "system", "content": GHOST_PROMPT_SYSTEM + "\n\n" + GHOST_PROMPT_EXAMPLES},
        {"role": "user", "content": f'Refine this query: "{query}"'},
    ]

    try:
        response = await chat.complete_chat(messages, temperature=temperature, model=model)
        result = parse_refinement(query, response)
    except Exception as e:
        logger.warning(f"query_refinement failed | error={type(e).__name__}: {e} | fallback=original_query")
        sentry_sdk.capture_exception(e)
        return RefinedQuery.unrefined(query)

    logger.info(
        f"query_refinement | refined={result.refined_query!r} | intent={result.intent} | "
        f"entities={result.entities} | ambiguous={result.is_ambiguous}"
    )
    return result
