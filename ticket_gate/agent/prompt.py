"""
Prompts for ticket generation from project documents.
"""
from typing import Optional, Sequence

from ticket_gate.config import settings
from ticket_gate.models.ticket import ProjectDocument

# Room kept free for the instructions when packing document context
INSTRUCTION_RESERVE_CHARS = 3000

TRUNCATED_DOCUMENTS_MARKER = "[Additional documents truncated...]"


TICKET_SCHEMA_INSTRUCTIONS = """Generate user stories/tickets based on these documents. For each ticket produce a JSON object with EXACTLY these required fields:

CANONICAL TICKET SCHEMA (required on every ticket):
- title: string - Clear, actionable title (imperative mood)
- description: string - What needs to be built and why
- type: "user_story" | "task" | "bug" | "spike" | "infrastructure" | "decision"
  ("decision" tickets have no code; they block other tickets and produce documented outcomes such as PRD updates or policy decisions)
- acceptance_criteria: string[] - Testable criteria (MINIMUM 2; tickets with fewer are converted to decision tickets)
- known_edge_cases: string[] - Known behaviors and risks with a handling strategy (can be [])
- open_questions: string[] - Unresolved questions or ambiguities needing answers before implementation (can be [])
- setup_requirements: Array<{description: string, type: "external_system"|"prior_ticket"|"decision"|"schema"|"other", resolved: boolean}> - Prerequisites (can be [])
- dependencies: string[] - Titles of OTHER tickets in this batch that STRICTLY must complete first
- estimated_effort: "XS" (<2h) | "S" (2-4h) | "M" (1-2d) | "L" (3-5d) | "XL" (>1w)
- priority: "critical" | "high" | "medium" | "low"
- labels: string[] - Technical areas affected (e.g. "frontend", "api", "database", "auth")
- suggested_assignee: string - Role or team responsible (e.g. "Backend Engineer"), not a person's name
- confidence: number 0.0-1.0
  - 0.90-1.0: well-defined, no open questions, minimal dependencies
  - 0.80-0.89: clear requirements, some dependencies or minor unknowns
  - 0.70-0.79: open questions OR cross-team dependencies
  - 0.50-0.69: derived/inferred tickets, many unknowns, exploratory
- citations: Array<{document_id: string, chunk_id: string}> - At least 1 citation referencing a source document

OPTIONAL METADATA:
- stakeholders: string[] - Non-executing influencers to inform or consult
- suggested_dependencies: string[] - Titles of tickets that MAY benefit from being done first but do not block
- is_derived: boolean - true if surfacing missing-but-required work not explicitly requested
- derived_rationale: string - REQUIRED if is_derived is true
- readiness: "ready" | "partially_blocked" | "blocked"
- readiness_reason: string

GROUNDING RULES:
- Only create tickets for systems, features or requirements mentioned BY NAME in the documents
- If you cannot point to a specific document passage, create a "decision" ticket with open_questions and lower confidence (0.5-0.65)
- Every non-derived ticket MUST include at least 1 citation

SCHEMA ENFORCEMENT:
- Include ALL canonical fields on every ticket; use [] for empty arrays, never omit them
- Citations MUST be objects {"document_id": "...", "chunk_id": "..."}, never strings
- dependencies contain TITLES of other tickets, not IDs

Return ONLY a valid JSON array (no markdown, no explanation):
[{"title":"...","description":"...","type":"...","acceptance_criteria":[...],"known_edge_cases":[...],"open_questions":[...],"setup_requirements":[{"description":"...","type":"...","resolved":false}],"dependencies":[...],"estimated_effort":"...","priority":"...","labels":[...],"suggested_assignee":"...","confidence":0.85,"citations":[{"document_id":"doc_1","chunk_id":"chunk_1"}]}]"""


def format_document(index: int, document: ProjectDocument, max_chars: Optional[int] = None) -> str:
    """
    Render one document as a prompt block.

    Args:
        index: Zero-based position of the document in the run
        document: Document to render
        max_chars: Content limit (defaults to settings.max_document_chars)

    Returns:
        "[Doc N - doc_type - title by author]" header followed by the content
    """
    limit = settings.max_document_chars if max_chars is None else max_chars
    content = document.content
    if len(content) > limit:
        content = content[:limit] + "..."
    title = f" - {document.title}" if document.title else ""
    author = f" by {document.author}" if document.author else ""
    return f"[Doc {index + 1} - {document.doc_type.value}{title}{author}]\n{content}"


def build_documents_context(documents: Sequence[ProjectDocument]) -> str:
    """Pack truncated documents until the prompt budget is used up."""
    budget = settings.max_total_prompt_chars - INSTRUCTION_RESERVE_CHARS
    context = ""
    for index, document in enumerate(documents):
        block = format_document(index, document)
        if len(context) + len(block) > budget:
            context += f"\n\n{TRUNCATED_DOCUMENTS_MARKER}"
            break
        context += ("\n\n" if context else "") + block
    return context


def build_ticket_prompt(query: str, documents: Sequence[ProjectDocument]) -> str:
    """
    Build the ticket-generation prompt for a query over project documents.

    The schema section mirrors what the ticket validator enforces, so a
    well-behaved model produces tickets that need no repair.
    """
    return f"""You are a senior tech architect analyzing project documents to generate user stories and tickets.

Query: "{query}"

Documents:
{build_documents_context(documents)}

{TICKET_SCHEMA_INSTRUCTIONS}"""
