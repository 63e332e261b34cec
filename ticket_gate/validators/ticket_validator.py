"""
Ticket validation and repair pipeline.

This module is the single hard gate for ticket quality. Every ticket that
leaves the LLM response parser, and every ticket edited after generation,
goes through validate_and_repair_tickets() before it is stored or returned.

Per candidate, in this order:
1. Drop candidates without a usable title (the only rejection)
2. Promote tickets with fewer than 2 acceptance criteria to decision tickets
3. Normalize type / priority / estimated_effort through alias tables
4. Recalibrate confidence with fixed, ordered penalties
5. Enforce grounding: a document-backed ticket must cite something
6. Apply the known-edge-cases policy
7. Fill every remaining canonical field with a safe default
8. Preserve or generate the ticket identifier

Malformed input never raises. Legacy field names (depends_on, assignee_role,
assignee, edge_cases) are read where each field is extracted.
"""
import logging
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional, Tuple, TypeVar

from ticket_gate.config import settings
from ticket_gate.models.enums import (
    TicketType,
    EffortSize,
    Priority,
    Readiness,
    SetupRequirementType,
    SourceMode,
)
from ticket_gate.models.ticket import Ticket, TicketCitation, SetupRequirement
from ticket_gate.models.validation import ValidationContext, ValidationLog, ValidationResult

logger = logging.getLogger(__name__)

E = TypeVar("E", TicketType, EffortSize, Priority)


# --- Alias tables (lower-cased raw value -> canonical) ---

TYPE_ALIASES: Dict[str, TicketType] = {
    "feature": TicketType.USER_STORY,
    "story": TicketType.USER_STORY,
    "user_story": TicketType.USER_STORY,
    "user story": TicketType.USER_STORY,
    "task": TicketType.TASK,
    "bug": TicketType.BUG,
    "fix": TicketType.BUG,
    "defect": TicketType.BUG,
    "spike": TicketType.SPIKE,
    "research": TicketType.SPIKE,
    "exploration": TicketType.SPIKE,
    "infrastructure": TicketType.INFRASTRUCTURE,
    "infra": TicketType.INFRASTRUCTURE,
    "devops": TicketType.INFRASTRUCTURE,
    "decision": TicketType.DECISION,
    "policy": TicketType.DECISION,
    # Non-canonical kinds seen in chat-panel output
    "qa": TicketType.TASK,
    "testing": TicketType.TASK,
    "improvement": TicketType.TASK,
    "enhancement": TicketType.TASK,
    "docs": TicketType.TASK,
}

EFFORT_ALIASES: Dict[str, EffortSize] = {
    "xs": EffortSize.XS, "xsmall": EffortSize.XS, "x-small": EffortSize.XS, "xsm": EffortSize.XS,
    "s": EffortSize.S, "small": EffortSize.S, "sm": EffortSize.S,
    "m": EffortSize.M, "medium": EffortSize.M, "med": EffortSize.M,
    "l": EffortSize.L, "large": EffortSize.L, "lg": EffortSize.L,
    "xl": EffortSize.XL, "xlarge": EffortSize.XL, "x-large": EffortSize.XL, "xlg": EffortSize.XL,
}

PRIORITY_ALIASES: Dict[str, Priority] = {
    "critical": Priority.CRITICAL, "urgent": Priority.CRITICAL, "blocker": Priority.CRITICAL, "p0": Priority.CRITICAL,
    "high": Priority.HIGH, "p1": Priority.HIGH,
    "medium": Priority.MEDIUM, "normal": Priority.MEDIUM, "p2": Priority.MEDIUM,
    "low": Priority.LOW, "minor": Priority.LOW, "p3": Priority.LOW,
}


# --- Fixed repair values ---

MIN_ACCEPTANCE_CRITERIA = 2

DECISION_ACCEPTANCE_CRITERIA = [
    "Document the decision outcome",
    "Communicate decision to affected stakeholders",
]

NEEDS_CLARIFICATION_PREFIX = "[Needs clarification] "

DEFAULT_EDGE_CASE = "Handle basic success case"

# Substring match, case-insensitive
PLACEHOLDER_EDGE_CASES = [
    "handle basic success case",
    "handle success case",
    "handle basic case",
    "handle errors",
]

DEFAULT_ASSIGNEE = "Unassigned"

INFERRED_CHUNK_ID = "inferred"


# --- Confidence calibration ---

DEFAULT_CONFIDENCE = 0.75
PROMOTED_CONFIDENCE_CAP = 0.6
TYPE_PENALTY = 0.05
PRIORITY_PENALTY = 0.03
EFFORT_PENALTY = 0.10
UNGROUNDED_PENALTY = 0.05
DERIVED_PENALTY = 0.10
DECISION_CONFIDENCE_MIN = 0.4
DECISION_CONFIDENCE_MAX = 0.75


# --- Public entry point ---

def validate_and_repair_tickets(
    raw_candidates: Any,
    context: Optional[Any] = None,
) -> ValidationResult:
    """
    Validate and repair a batch of ticket-shaped candidates.

    Args:
        raw_candidates: Sequence of loosely-typed candidates (dicts, or Ticket
            models being re-validated after an edit). Anything else is treated
            as an empty batch.
        context: ValidationContext (or a mapping with the same keys) describing
            the source documents of the run. Defaults to a synthetic run.

    Returns:
        ValidationResult with schema-complete tickets and the validation log.
        Never raises for malformed candidates.
    """
    ctx = _coerce_context(context)
    candidates = list(raw_candidates) if isinstance(raw_candidates, (list, tuple)) else []

    log = ValidationLog(total_input=len(candidates))
    tickets: List[Ticket] = []

    for index, item in enumerate(candidates):
        ticket = _validate_single_ticket(item, index, ctx, log)
        if ticket is not None:
            tickets.append(ticket)

    log.total_output = len(tickets)

    logger.info(
        "[TicketValidator] Input: %d | Output: %d | Repaired: %d | Dropped: %d | "
        "Promoted->Decision: %d | Citations injected: %d",
        log.total_input, log.total_output, log.repaired, log.dropped,
        log.promoted_to_decision, log.citations_injected,
    )
    if log.reasons and settings.log_reasons:
        logger.info("[TicketValidator] Reasons: %s", "; ".join(log.reasons))

    return ValidationResult(tickets=tickets, log=log)


# --- Single ticket ---

def _validate_single_ticket(
    item: Any,
    index: int,
    ctx: ValidationContext,
    log: ValidationLog,
) -> Optional[Ticket]:
    if isinstance(item, Ticket):
        item = item.to_record()
    raw: Mapping[str, Any] = item if isinstance(item, Mapping) else {}

    # Hard fail: title
    title = raw.get("title")
    title = title.strip() if isinstance(title, str) else ""
    if not title:
        log.dropped += 1
        log.reasons.append(f"dropped: candidate #{index + 1} has no title")
        return None

    events: List[str] = []
    filled: List[str] = []

    # Acceptance criteria sufficiency; promotion touches type, AC and open
    # questions together and must be settled before anything keys off type.
    acceptance_criteria = _to_string_list(raw.get("acceptance_criteria"))
    open_questions = _to_string_list(raw.get("open_questions"))
    promoted = len(acceptance_criteria) < MIN_ACCEPTANCE_CRITERIA
    if promoted:
        log.promoted_to_decision += 1
        events.append(
            f'promoted_to_decision: "{title}" had {len(acceptance_criteria)} acceptance criteria'
        )
        open_questions = open_questions + [
            f"{NEEDS_CLARIFICATION_PREFIX}{criterion}" for criterion in acceptance_criteria
        ]
        acceptance_criteria = list(DECISION_ACCEPTANCE_CRITERIA)

    # Enum normalization
    penalty = 0.0
    normalized_type, type_changed = normalize_enum(raw.get("type"), TYPE_ALIASES, TicketType.TASK)
    ticket_type = TicketType.DECISION if promoted else normalized_type
    if type_changed:
        penalty += TYPE_PENALTY
        events.append(_enum_reason("type", raw.get("type"), ticket_type, title))

    priority, priority_changed = normalize_enum(raw.get("priority"), PRIORITY_ALIASES, Priority.MEDIUM)
    if priority_changed:
        penalty += PRIORITY_PENALTY
        events.append(_enum_reason("priority", raw.get("priority"), priority, title))

    effort, effort_changed = normalize_enum(raw.get("estimated_effort"), EFFORT_ALIASES, EffortSize.M)
    if effort_changed:
        penalty += EFFORT_PENALTY
        events.append(_enum_reason("estimated_effort", raw.get("estimated_effort"), effort, title))

    # Confidence: starting point, promotion cap, normalization penalties
    raw_confidence = raw.get("confidence")
    if _is_unit_interval(raw_confidence):
        confidence = float(raw_confidence)
    else:
        confidence = DEFAULT_CONFIDENCE
        filled.append("confidence")
    if promoted:
        confidence = min(confidence, PROMOTED_CONFIDENCE_CAP)
    confidence -= penalty

    # Citations + grounding
    raw_citations = raw.get("citations")
    citations = _parse_citations(raw_citations)
    source_mode = SourceMode.GROUNDED if ctx.has_documents else SourceMode.SYNTHETIC
    if not citations and ctx.has_documents and ctx.source_doc_ids:
        citations = [TicketCitation(document_id=ctx.source_doc_ids[0], chunk_id=INFERRED_CHUNK_ID)]
        confidence -= UNGROUNDED_PENALTY
        log.citations_injected += 1
        events.append(f'citation-injected: "{title}" had no citations in a grounded run')
    elif not isinstance(raw_citations, list):
        filled.append("citations")

    # Decision tickets live in [0.4, 0.75]
    if ticket_type == TicketType.DECISION:
        before = confidence
        confidence = _clamp(confidence, DECISION_CONFIDENCE_MIN, DECISION_CONFIDENCE_MAX)
        if round(confidence, 2) != round(before, 2):
            events.append(
                f'confidence-clamped: decision "{title}" {round(before, 2)} -> {round(confidence, 2)}'
            )

    is_derived = raw.get("is_derived") if isinstance(raw.get("is_derived"), bool) else None
    if is_derived:
        confidence -= DERIVED_PENALTY
        if ticket_type == TicketType.DECISION:
            confidence = max(confidence, DECISION_CONFIDENCE_MIN)

    confidence = _round_confidence(max(0.0, confidence))

    # Known edge cases
    known_edge_cases = _to_string_list(_first_present(raw, "known_edge_cases", "edge_cases"))
    if ticket_type == TicketType.DECISION:
        if known_edge_cases and all(_is_placeholder_edge_case(e) for e in known_edge_cases):
            known_edge_cases = []
            events.append(f'edge-cases-cleared: decision "{title}" only had placeholder edge cases')
    elif not known_edge_cases:
        known_edge_cases = [DEFAULT_EDGE_CASE]
        filled.append("known_edge_cases")

    # Structural defaulting
    description = raw.get("description")
    if not isinstance(description, str):
        description = ""
        filled.append("description")

    if not isinstance(raw.get("open_questions"), list) and not open_questions:
        filled.append("open_questions")

    raw_setup = raw.get("setup_requirements")
    setup_requirements, coerced = _parse_setup_requirements(raw_setup)
    if not isinstance(raw_setup, list):
        filled.append("setup_requirements")
    elif coerced:
        events.append(f'setup-requirements-coerced: "{title}" had {coerced} malformed entries')

    raw_dependencies = _first_present(raw, "dependencies", "depends_on")
    dependencies = _to_string_list(raw_dependencies)
    if not isinstance(raw_dependencies, list):
        filled.append("dependencies")

    labels = _to_string_list(raw.get("labels"))
    if not isinstance(raw.get("labels"), list):
        filled.append("labels")

    suggested_assignee = _first_present(raw, "suggested_assignee", "assignee_role", "assignee")
    if not isinstance(suggested_assignee, str) or not suggested_assignee.strip():
        suggested_assignee = DEFAULT_ASSIGNEE
        filled.append("suggested_assignee")

    if filled:
        events.append(f'filled-missing-fields: "{title}" defaulted {", ".join(filled)}')

    # Identity: preserve objectID/id, otherwise generate
    ticket_id = _first_non_blank_string(raw, "objectID", "id") or str(uuid.uuid4())

    if events:
        log.repaired += 1
        log.reasons.extend(events)

    return Ticket(
        id=ticket_id,
        objectID=ticket_id,
        title=title,
        description=description,
        type=ticket_type,
        acceptance_criteria=acceptance_criteria,
        known_edge_cases=known_edge_cases,
        open_questions=open_questions,
        setup_requirements=setup_requirements,
        dependencies=dependencies,
        estimated_effort=effort,
        priority=priority,
        labels=labels,
        suggested_assignee=suggested_assignee,
        confidence=confidence,
        citations=citations,
        citation_keys=[citation.key for citation in citations],
        source_mode=source_mode,
        stakeholders=_to_string_list(raw.get("stakeholders")) or None,
        suggested_dependencies=_to_string_list(raw.get("suggested_dependencies")) or None,
        is_derived=is_derived,
        derived_rationale=_optional_string(raw.get("derived_rationale")) if is_derived else None,
        readiness=_normalize_readiness(raw.get("readiness")),
        readiness_reason=_optional_string(raw.get("readiness_reason")),
        source_docs=list(ctx.source_doc_ids) or None,
        workspace_id=_optional_string(raw.get("workspace_id")),
        owner_uid=_optional_string(raw.get("owner_uid")),
    )


# --- Helpers ---

def normalize_enum(raw: Any, aliases: Dict[str, E], fallback: E) -> Tuple[E, bool]:
    """
    Resolve a raw enum value through an alias table.

    Returns (value, was_normalized). was_normalized is False only when the raw
    value already was exactly the canonical string; aliases, case or
    whitespace differences, unknown values and missing values all count.
    """
    if not isinstance(raw, str):
        return fallback, True
    value = aliases.get(raw.strip().lower(), fallback)
    return value, raw != value.value


def _coerce_context(context: Any) -> ValidationContext:
    if isinstance(context, ValidationContext):
        return context
    if isinstance(context, Mapping):
        # camelCase keys are the legacy wire names
        return ValidationContext(
            source_doc_ids=_to_string_list(_first_present(context, "source_doc_ids", "sourceDocIds")),
            has_documents=_first_present(context, "has_documents", "hasDocuments") is True,
        )
    return ValidationContext()


def _round_confidence(value: float) -> float:
    """Round to 2 places, halves away from zero (0.625 -> 0.63)."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _first_present(raw: Mapping[str, Any], *keys: str) -> Any:
    """First non-None value among the given keys (canonical name first)."""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _first_non_blank_string(raw: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _optional_string(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _to_string_list(raw: Any) -> List[str]:
    """Keep only non-blank string entries; anything that is not a list is empty."""
    if not isinstance(raw, (list, tuple)):
        return []
    return [value for value in raw if isinstance(value, str) and value.strip()]


def _is_unit_interval(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return 0.0 <= value <= 1.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def _is_placeholder_edge_case(edge_case: str) -> bool:
    lower = edge_case.lower()
    return any(placeholder in lower for placeholder in PLACEHOLDER_EDGE_CASES)


def _describe(raw: Any) -> str:
    return "missing" if raw is None else repr(raw)


def _enum_reason(field: str, raw: Any, value: Any, title: str) -> str:
    return f'enum-repair: {field} {_describe(raw)} -> "{value.value}" for "{title}"'


def _normalize_readiness(raw: Any) -> Readiness:
    if isinstance(raw, str):
        for readiness in Readiness:
            if raw == readiness.value:
                return readiness
    return Readiness.READY


def _line_number(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _parse_citations(raw: Any) -> List[TicketCitation]:
    """
    Accept only {document_id, chunk_id} objects.

    Bare strings and malformed objects are discarded, never coerced.
    """
    if not isinstance(raw, list):
        return []
    citations = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        document_id = entry.get("document_id")
        chunk_id = entry.get("chunk_id")
        if not isinstance(document_id, str) or not document_id.strip():
            continue
        if not isinstance(chunk_id, str) or not chunk_id.strip():
            continue
        citations.append(TicketCitation(
            document_id=document_id,
            chunk_id=chunk_id,
            line_start=_line_number(entry.get("line_start")),
            line_end=_line_number(entry.get("line_end")),
        ))
    return citations


def _parse_setup_requirements(raw: Any) -> Tuple[List[SetupRequirement], int]:
    """
    Coerce setup requirements into {description, type, resolved}.

    Returns the requirements and how many entries needed coercion. Strings
    become type 'other'; None entries are skipped.
    """
    if not isinstance(raw, list):
        return [], 0
    valid_types = {t.value: t for t in SetupRequirementType}
    requirements = []
    coerced = 0
    for entry in raw:
        if entry is None:
            coerced += 1
            continue
        if isinstance(entry, Mapping):
            raw_type = entry.get("type")
            raw_description = entry.get("description")
            raw_resolved = entry.get("resolved")
            req_type = valid_types.get(raw_type) if isinstance(raw_type, str) else None
            if isinstance(raw_description, str):
                description = raw_description
            else:
                description = str(raw_description) if raw_description else ""
            if req_type is None or not isinstance(raw_description, str) or not isinstance(raw_resolved, bool):
                coerced += 1
            requirements.append(SetupRequirement(
                description=description,
                type=req_type or SetupRequirementType.OTHER,
                resolved=raw_resolved if isinstance(raw_resolved, bool) else False,
            ))
        else:
            coerced += 1
            requirements.append(SetupRequirement(description=str(entry)))
    return requirements, coerced
