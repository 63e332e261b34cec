"""
LLM response parsing for ticket generation.

Turns raw completion text into candidates for the ticket validator. LLM output
is noisy: prose around the JSON, markdown fences, raw newlines inside strings,
trailing commas. Everything here is best-effort; when nothing can be
extracted the validator receives an empty list instead of an exception.

This module does not call any model. It only handles text that a completion
client already returned.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from ticket_gate.config import settings
from ticket_gate.models.ticket import ProjectDocument
from ticket_gate.models.validation import ValidationContext, ValidationResult
from ticket_gate.validators.ticket_validator import validate_and_repair_tickets

logger = logging.getLogger(__name__)

# AI-SDK data stream: text parts are lines of the form 0:"<json string>"
STREAM_TEXT_PREFIX = "0:"

_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_RECOMMENDATIONS_BLOCK = re.compile(r'"recommendations"\s*:\s*{\s*([\s\S]*?)\s*}')
_QUOTED_ITEM = re.compile(r'"([^"\\]*(?:\\.[^"\\]*)*)"')
_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")
_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)

# Query intent, substring match on the lower-cased query
_PEOPLE_QUERY = re.compile(r"who|people|person|team|stakeholder|owner|involved|participants")
_PROBLEM_QUERY = re.compile(r"problem|issue|risk|challenge|blocker|concern|highlight")

NO_OWNERS_SUMMARY = "None explicitly named in documents."
NO_OWNERS_QUESTION = "Who are the project owners or stakeholders?"
NO_PROBLEMS_SUMMARY = "No explicit problems or blockers were identified in the documents."


class ResponseParseError(ValueError):
    """Raised internally when no JSON value can be recovered from a response."""
    pass


def decode_stream(stream_text: str) -> str:
    """
    Concatenate the text parts of an AI-SDK data-stream response.

    Lines that are not text parts, or whose payload is not a JSON string,
    are skipped.
    """
    parts = []
    for line in stream_text.split("\n"):
        if not line.startswith(STREAM_TEXT_PREFIX):
            continue
        try:
            text_part = json.loads(line[len(STREAM_TEXT_PREFIX):])
        except json.JSONDecodeError:
            continue
        if isinstance(text_part, str):
            parts.append(text_part)
    return "".join(parts)


def sanitize_json_string(raw: str) -> str:
    """
    Best-effort JSON sanitization for LLM outputs.

    - Escapes raw newlines, carriage returns and tabs inside quoted strings
    - Removes trailing commas before } or ]
    - Repairs "recommendations": {"a", "b"} into {"notes": ["a", "b"]}
    """
    out = []
    in_string = False
    escaping = False

    for ch in raw:
        if in_string:
            if escaping:
                out.append(ch)
                escaping = False
            elif ch == "\\":
                out.append(ch)
                escaping = True
            elif ch == '"':
                in_string = False
                out.append(ch)
            elif ch == "\n":
                out.append("\\n")
            elif ch == "\r":
                out.append("\\r")
            elif ch == "\t":
                out.append("\\t")
            else:
                out.append(ch)
            continue
        if ch == '"':
            in_string = True
        out.append(ch)

    cleaned = _TRAILING_COMMA.sub(r"\1", "".join(out))
    return fix_recommendations_shape(cleaned)


def fix_recommendations_shape(raw: str) -> str:
    """
    Fix the set-literal shape models sometimes emit for recommendations:
    "recommendations": { "item 1", "item 2" }
    becomes
    "recommendations": {"notes": ["item 1", "item 2"]}
    """
    def _replace(match: "re.Match[str]") -> str:
        inner = match.group(1)
        if ":" in inner:
            return match.group(0)
        items = _QUOTED_ITEM.findall(inner)
        if not items:
            return match.group(0)
        joined = ", ".join(f'"{item}"' for item in items)
        return f'"recommendations":{{"notes":[{joined}]}}'

    return _RECOMMENDATIONS_BLOCK.sub(_replace, raw)


def load_json_payload(response: str, prefer_object: bool = False) -> Any:
    """
    Recover the JSON value embedded in a noisy response.

    Tries the fenced block (if any) or the whole text first, then the widest
    [...] span and the widest {...} span (object first when prefer_object).
    Each attempt is sanitized before parsing.

    Raises:
        ResponseParseError: if none of the attempts parse
    """
    fenced = _CODE_FENCE.search(response)
    text = fenced.group(1) if fenced else response

    spans = []
    array_match = _JSON_ARRAY.search(text)
    if array_match:
        spans.append(array_match.group(0))
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        object_span = text[start:end + 1]
        if prefer_object:
            spans.insert(0, object_span)
        else:
            spans.append(object_span)
    attempts = [text.strip()] + spans

    last_error: Optional[Exception] = None
    for attempt in attempts:
        if not attempt:
            continue
        try:
            return json.loads(sanitize_json_string(attempt))
        except json.JSONDecodeError as e:
            last_error = e
    raise ResponseParseError(f"No JSON value found in response: {last_error}")


def extract_ticket_candidates(response: Any) -> List[Any]:
    """
    Extract the list of raw ticket candidates from a completion.

    Accepts a bare JSON array, an object with a "tickets" array, or a single
    ticket object. Returns [] when nothing usable is found; never raises.
    """
    if not isinstance(response, str) or not response.strip():
        return []
    try:
        payload = load_json_payload(response)
    except ResponseParseError as e:
        logger.warning(
            "[ResponseParser] %s. Raw response (truncated): %s",
            e, response[:settings.raw_response_log_chars],
        )
        return []

    if isinstance(payload, dict):
        if isinstance(payload.get("tickets"), list):
            payload = payload["tickets"]
        elif "title" in payload:
            payload = [payload]
    if not isinstance(payload, list):
        logger.warning("[ResponseParser] Parsed response is not a ticket array")
        return []

    return [_migrate_legacy_fields(item) for item in payload]


def parse_ticket_response(
    response: str,
    documents: Sequence[ProjectDocument],
) -> ValidationResult:
    """
    Parse a ticket-generation completion and run it through the validator.

    The validation context comes from the documents the prompt was built
    from, so tickets in a document-backed run are always grounded. Without
    documents there is nothing to ground on and the result is empty.
    """
    if not documents:
        logger.info("[ResponseParser] No documents in run, skipping ticket extraction")
        return ValidationResult()
    candidates = extract_ticket_candidates(response)
    return validate_and_repair_tickets(candidates, ValidationContext.from_documents(documents))


def parse_structured_answer(
    response: str,
    context: ValidationContext,
    query: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Parse a structured document-intelligence answer.

    The answer is a JSON object (summary, keyFindings, tickets, citations,
    recommendations). Its tickets are validated, keyFindings.nextSteps is
    replaced with the validated titles and the log is attached under
    "_validation". Unparseable answers fall back to default_answer().
    When the query is given the answer is reshaped by normalize_answer_for_query().
    """
    answer = _parse_answer_object(response, context)
    if query is not None:
        answer = normalize_answer_for_query(query, answer)
    return answer


def normalize_answer_for_query(query: str, answer: Any) -> Any:
    """
    Reshape an answer to match the intent of the user's query.

    People queries ("who owns...") keep only owners; problem queries
    ("what are the risks...") keep only blockers and open questions. A query
    can match both, in which case the problem shape wins. Follow-up queries
    are cleared in either case. Other queries are returned untouched.
    """
    if not isinstance(answer, dict):
        return answer

    q = query.lower() if isinstance(query, str) else ""
    key_findings = answer.get("keyFindings") if isinstance(answer.get("keyFindings"), dict) else {}

    if _PEOPLE_QUERY.search(q):
        owners = _list_or_empty(key_findings.get("owners"))
        owners_summary = "; ".join(owners) if owners else NO_OWNERS_SUMMARY
        answer["summary"] = [f"People involved: {owners_summary}"]
        key_findings = {
            "blockers": [],
            "decisions": [],
            "owners": owners,
            "openQuestions": [] if owners else [NO_OWNERS_QUESTION],
            "nextSteps": [],
        }
        answer["keyFindings"] = key_findings
        _clear_follow_up_queries(answer)

    if _PROBLEM_QUERY.search(q):
        blockers = _list_or_empty(key_findings.get("blockers"))
        open_questions = _list_or_empty(key_findings.get("openQuestions"))
        problems = blockers or open_questions or [NO_PROBLEMS_SUMMARY]
        answer["summary"] = problems[:3]
        answer["keyFindings"] = {
            "blockers": blockers,
            "decisions": [],
            "owners": [],
            "openQuestions": open_questions,
            "nextSteps": [],
        }
        _clear_follow_up_queries(answer)

    return answer


def _parse_answer_object(response: Any, context: ValidationContext) -> Dict[str, Any]:
    try:
        parsed = load_json_payload(response, prefer_object=True) if isinstance(response, str) else None
    except ResponseParseError as e:
        logger.error("[ResponseParser] Failed to parse structured answer: %s", e)
        logger.error(
            "[ResponseParser] Raw response (truncated): %s",
            response[:settings.raw_response_log_chars],
        )
        parsed = None

    if not isinstance(parsed, dict):
        return default_answer()

    if isinstance(parsed.get("tickets"), list):
        candidates = [_migrate_legacy_fields(item) for item in parsed["tickets"]]
        logger.info("[ResponseParser] Raw tickets from model: %d", len(candidates))
        result = validate_and_repair_tickets(candidates, context)
        parsed["tickets"] = [ticket.to_record() for ticket in result.tickets]
        key_findings = parsed.get("keyFindings")
        if not isinstance(key_findings, dict):
            key_findings = {}
            parsed["keyFindings"] = key_findings
        key_findings["nextSteps"] = [ticket.title for ticket in result.tickets]
        parsed["_validation"] = result.log.model_dump()
    return parsed


def default_answer() -> Dict[str, Any]:
    """Answer returned when the model output could not be parsed at all."""
    return {
        "summary": ["Analysis completed with limited results"],
        "keyFindings": {
            "blockers": [],
            "decisions": [],
            "owners": [],
            "openQuestions": ["Unable to parse detailed analysis"],
            "nextSteps": ["Review search results manually"],
        },
        "tickets": [],
        "referencedItems": {"documents": [], "tickets": []},
        "citations": [],
        "recommendations": {"filters": [], "followUpQueries": []},
    }


def _migrate_legacy_fields(item: Any) -> Any:
    """Carry edge_cases over to known_edge_cases when only the old name is set."""
    if isinstance(item, dict) and item.get("known_edge_cases") is None and "edge_cases" in item:
        migrated = dict(item)
        migrated["known_edge_cases"] = migrated.pop("edge_cases")
        return migrated
    return item


def _list_or_empty(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _clear_follow_up_queries(answer: Dict[str, Any]) -> None:
    recommendations = answer.get("recommendations")
    if isinstance(recommendations, dict):
        answer["recommendations"] = {**recommendations, "followUpQueries": []}
