"""
Tests for LLM response parsing: stream decoding, JSON sanitization and
extraction of ticket candidates from noisy completions.
"""
import json

from ticket_gate.models.enums import TicketType
from ticket_gate.models.ticket import ProjectDocument
from ticket_gate.models.validation import ValidationContext
from ticket_gate.services.response_parser import (
    decode_stream,
    sanitize_json_string,
    fix_recommendations_shape,
    load_json_payload,
    extract_ticket_candidates,
    parse_ticket_response,
    parse_structured_answer,
    normalize_answer_for_query,
    ResponseParseError,
)


TICKET_JSON = (
    '{"title": "Add password reset", "type": "user_story", '
    '"acceptance_criteria": ["Reset email is sent", "Link expires after 1 hour"], '
    '"estimated_effort": "S", "priority": "high", "confidence": 0.85, '
    '"citations": [{"document_id": "doc_1", "chunk_id": "chunk_2"}]}'
)


def test_decode_stream_keeps_only_text_parts():
    stream = '0:"Hello "\n8:[{"meta": true}]\n0:"world"\n0:not-json\n0:42\ne:{"finishReason":"stop"}'
    assert decode_stream(stream) == "Hello world"


def test_sanitize_escapes_control_characters_inside_strings():
    raw = '{"description": "line one\nline two\tindented"}'
    assert json.loads(sanitize_json_string(raw)) == {"description": "line one\nline two\tindented"}


def test_sanitize_leaves_escapes_and_structure_alone():
    raw = '{\n  "a": "quote \\" inside",\n  "b": [1, 2]\n}'
    assert json.loads(sanitize_json_string(raw)) == {"a": 'quote " inside', "b": [1, 2]}


def test_sanitize_strips_trailing_commas():
    raw = '[{"title": "A", "labels": ["x", "y",],},]'
    assert json.loads(sanitize_json_string(raw)) == [{"title": "A", "labels": ["x", "y"]}]


def test_recommendations_set_shape_is_repaired():
    raw = '{"summary": [], "recommendations": { "Review the PRD", "Ask legal" }}'
    fixed = json.loads(fix_recommendations_shape(raw))
    assert fixed["recommendations"] == {"notes": ["Review the PRD", "Ask legal"]}


def test_recommendations_object_shape_is_untouched():
    raw = '{"recommendations": {"filters": [], "followUpQueries": ["What next?"]}}'
    assert fix_recommendations_shape(raw) == raw


def test_load_json_payload_from_fenced_block():
    response = f"Here you go:\n```json\n[{TICKET_JSON}]\n```\nLet me know!"
    payload = load_json_payload(response)
    assert isinstance(payload, list)
    assert payload[0]["title"] == "Add password reset"


def test_load_json_payload_raises_on_garbage():
    try:
        load_json_payload("I could not find anything to do.")
    except ResponseParseError:
        pass
    else:
        raise AssertionError("Expected ResponseParseError")


def test_extract_candidates_from_noisy_array():
    response = f"Sure! Based on the documents:\n[{TICKET_JSON},]\nHope this helps."
    candidates = extract_ticket_candidates(response)
    assert len(candidates) == 1
    assert candidates[0]["title"] == "Add password reset"


def test_extract_candidates_from_object_with_tickets():
    response = json.dumps({"summary": ["ok"], "tickets": [json.loads(TICKET_JSON)]})
    candidates = extract_ticket_candidates(response)
    assert [c["title"] for c in candidates] == ["Add password reset"]


def test_extract_candidates_from_single_ticket_object():
    candidates = extract_ticket_candidates(TICKET_JSON)
    assert len(candidates) == 1


def test_extract_candidates_never_raises():
    for response in ("", "   ", "no json here", "{broken", None, 12, '"just a string"'):
        assert extract_ticket_candidates(response) == [], f"response={response!r}"


def test_extract_candidates_migrates_edge_cases():
    response = '[{"title": "A", "edge_cases": ["Empty input"]}]'
    candidates = extract_ticket_candidates(response)
    assert candidates[0]["known_edge_cases"] == ["Empty input"]
    assert "edge_cases" not in candidates[0]


def test_parse_ticket_response_grounds_tickets_in_documents():
    documents = [
        ProjectDocument(objectID="prd_7", content="Users must be able to export reports."),
        ProjectDocument(objectID="meeting_2", content="We agreed on CSV first."),
    ]
    response = '[{"title": "Export reports", "acceptance_criteria": ["CSV download works", "Columns match the UI"]}]'

    result = parse_ticket_response(response, documents)

    assert len(result.tickets) == 1
    ticket = result.tickets[0]
    assert ticket.citation_keys == ["prd_7:inferred"]
    assert ticket.source_docs == ["prd_7", "meeting_2"]
    assert result.log.citations_injected == 1


def test_parse_ticket_response_without_documents_is_empty():
    response = '[{"title": "Export reports", "acceptance_criteria": ["CSV works", "Columns match"]}]'

    result = parse_ticket_response(response, [])

    assert result.tickets == []
    assert result.log.total_input == 0


def test_parse_ticket_response_with_unparseable_text_is_empty():
    result = parse_ticket_response("The model timed out.", [])
    assert result.tickets == []
    assert result.log.total_input == 0


def test_parse_structured_answer_validates_tickets():
    response = (
        "Analysis follows.\n"
        '{"summary": ["Two workstreams"], "keyFindings": {"blockers": ["No SSO vendor"]},'
        ' "tickets": [{"title": "Choose SSO vendor", "acceptance_criteria": ["Vendor picked"]},'
        ' {"title": ""}],'
        ' "recommendations": {"Confirm budget", "Loop in security"}}'
    )
    context = ValidationContext(source_doc_ids=["doc_1"], has_documents=True)

    answer = parse_structured_answer(response, context)

    assert len(answer["tickets"]) == 1
    ticket = answer["tickets"][0]
    assert ticket["type"] == TicketType.DECISION.value
    assert ticket["citation_keys"] == ["doc_1:inferred"]
    assert answer["keyFindings"]["nextSteps"] == ["Choose SSO vendor"]
    assert answer["keyFindings"]["blockers"] == ["No SSO vendor"]
    assert answer["_validation"]["dropped"] == 1
    assert answer["_validation"]["promoted_to_decision"] == 1
    assert answer["recommendations"] == {"notes": ["Confirm budget", "Loop in security"]}


def test_parse_structured_answer_falls_back_to_default():
    answer = parse_structured_answer("Sorry, something went wrong.", ValidationContext())
    assert answer["tickets"] == []
    assert answer["keyFindings"]["openQuestions"] == ["Unable to parse detailed analysis"]


def _answer():
    return {
        "summary": ["Overview"],
        "keyFindings": {
            "blockers": ["No SSO vendor", "Budget unclear", "Legal review", "Hiring freeze"],
            "decisions": ["Use Postgres"],
            "owners": ["Dana (PM)", "Lee (Security)"],
            "openQuestions": ["Which region?"],
            "nextSteps": ["Pick vendor"],
        },
        "tickets": [],
        "recommendations": {"filters": ["type:decision"], "followUpQueries": ["What about SSO?"]},
    }


def test_people_query_keeps_only_owners():
    answer = normalize_answer_for_query("Who is involved in the launch?", _answer())

    assert answer["summary"] == ["People involved: Dana (PM); Lee (Security)"]
    assert answer["keyFindings"] == {
        "blockers": [],
        "decisions": [],
        "owners": ["Dana (PM)", "Lee (Security)"],
        "openQuestions": [],
        "nextSteps": [],
    }
    assert answer["recommendations"] == {"filters": ["type:decision"], "followUpQueries": []}


def test_people_query_without_owners_asks_for_them():
    raw = _answer()
    raw["keyFindings"]["owners"] = []

    answer = normalize_answer_for_query("Which team owns billing?", raw)

    assert answer["summary"] == ["People involved: None explicitly named in documents."]
    assert answer["keyFindings"]["openQuestions"] == ["Who are the project owners or stakeholders?"]


def test_problem_query_summarizes_top_blockers():
    answer = normalize_answer_for_query("What are the main RISKS?", _answer())

    assert answer["summary"] == ["No SSO vendor", "Budget unclear", "Legal review"]
    assert answer["keyFindings"]["blockers"][-1] == "Hiring freeze"
    assert answer["keyFindings"]["openQuestions"] == ["Which region?"]
    assert answer["keyFindings"]["owners"] == []
    assert answer["recommendations"]["followUpQueries"] == []


def test_problem_query_without_findings():
    raw = _answer()
    raw["keyFindings"] = {}

    answer = normalize_answer_for_query("any concerns?", raw)

    assert answer["summary"] == ["No explicit problems or blockers were identified in the documents."]


def test_other_queries_are_untouched():
    assert normalize_answer_for_query("Summarize the PRD", _answer()) == _answer()


def test_parse_structured_answer_applies_query_intent():
    response = json.dumps(_answer())
    context = ValidationContext(source_doc_ids=["doc_1"], has_documents=True)

    answer = parse_structured_answer(response, context, query="Who are the stakeholders?")

    assert answer["keyFindings"]["owners"] == ["Dana (PM)", "Lee (Security)"]
    assert answer["keyFindings"]["nextSteps"] == []
    assert answer["_validation"]["total_input"] == 0
