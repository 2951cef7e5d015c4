"""Prompts for reviewer and quiz generation."""

from typing import List, Tuple


def reviewer_prompt(text: str, title: str) -> Tuple[str, str, str]:
    """
    Return (system_prompt, user_prompt, schema_hint) for a study reviewer.
    ``text`` must be pre-truncated by the caller.
    """
    system = """You turn study notes into a structured reviewer for a student. Do not add facts that are not in the notes.
Group related material into short sections. Pull out the key concepts with one-line definitions.
Output JSON only, no markdown, no code blocks."""

    schema = """Output schema (JSON only):
{
  "sections": [{"heading": "string", "points": ["string", ...]}],
  "concepts": [{"term": "string", "definition": "string"}]
}"""

    user = f"""Title: {title}

Notes:
{text}

Produce the reviewer. Output JSON only."""

    return system, user, schema


def quiz_prompt(text: str, concepts: List) -> Tuple[str, str, str]:
    """
    Return (system_prompt, user_prompt, schema_hint) for quiz questions.
    """
    system = """You write quiz questions that can be answered from the given notes only.
Every question must have exactly one correct answer.
Output JSON only, no markdown, no code blocks."""

    schema = """Output schema (JSON only):
{
  "multipleChoice": [{"question": "string", "choices": ["string", "string", "string", "string"], "answer": "string"}],
  "trueFalse": [{"statement": "string", "answer": true}],
  "identification": [{"question": "string", "answer": "string"}]
}"""

    terms = []
    for concept in concepts or []:
        if isinstance(concept, dict):
            terms.append(str(concept.get("term") or concept.get("name") or ""))
        else:
            terms.append(str(concept))
    focus = ", ".join(t for t in terms if t) or "(none given)"

    user = f"""Key concepts: {focus}

Notes:
{text}

Write the quiz. Output JSON only."""

    return system, user, schema
