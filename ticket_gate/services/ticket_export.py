"""
Export payloads for validated tickets.

Builds the request bodies issue trackers expect (Jira, GitHub, Linear) and
the CSV / JSON downloads. Nothing here sends anything: the caller owns the
transport and credentials. Inputs are validated Ticket models; tickets that
were edited after generation must go back through the validator first.
"""
import csv
import io
import json
from typing import Any, Dict, List, Optional, Sequence

from ticket_gate.models.enums import TicketType, Priority, EffortSize
from ticket_gate.models.ticket import Ticket


JIRA_TYPE_MAP: Dict[TicketType, str] = {
    TicketType.USER_STORY: "Story",
    TicketType.TASK: "Task",
    TicketType.BUG: "Bug",
    TicketType.SPIKE: "Task",  # Jira has no spike
    TicketType.INFRASTRUCTURE: "Task",
    TicketType.DECISION: "Task",  # Jira has no decision
}

JIRA_PRIORITY_MAP: Dict[Priority, str] = {
    Priority.CRITICAL: "Highest",
    Priority.HIGH: "High",
    Priority.MEDIUM: "Medium",
    Priority.LOW: "Low",
}

GITHUB_TYPE_LABELS: Dict[TicketType, str] = {
    TicketType.USER_STORY: "enhancement",
    TicketType.TASK: "task",
    TicketType.BUG: "bug",
    TicketType.SPIKE: "research",
    TicketType.INFRASTRUCTURE: "infrastructure",
    TicketType.DECISION: "decision",
}

# Linear: 1 = urgent ... 4 = low
LINEAR_PRIORITY_MAP: Dict[Priority, int] = {
    Priority.CRITICAL: 1,
    Priority.HIGH: 2,
    Priority.MEDIUM: 3,
    Priority.LOW: 4,
}

EFFORT_TO_POINTS: Dict[EffortSize, int] = {
    EffortSize.XS: 1,
    EffortSize.S: 2,
    EffortSize.M: 3,
    EffortSize.L: 5,
    EffortSize.XL: 8,
}

CSV_HEADERS = [
    "Title",
    "Description",
    "Type",
    "Priority",
    "Effort",
    "Assignee Role",
    "Stakeholders",
    "Labels",
    "Acceptance Criteria",
    "Known Edge Cases",
    "Open Questions",
    "Setup Requirements",
    "Dependencies",
    "Suggested Dependencies",
    "Confidence",
    "Is Derived",
    "Derived Rationale",
    "Readiness",
    "Readiness Reason",
    "Citations",
]

LIST_SEPARATOR = " | "

DERIVED_NOTE = "This is a derived ticket, inferred as necessary for production readiness."


# --- Jira ---

def format_jira_description(ticket: Ticket) -> str:
    """
    Render a ticket as Jira wiki markup.

    Sections are emitted only when they have content; effort and readiness
    are always present.
    """
    description = ticket.description

    if ticket.acceptance_criteria:
        description += "\n\nh3. Acceptance Criteria\n"
        description += "".join(f"* {criterion}\n" for criterion in ticket.acceptance_criteria)

    if ticket.known_edge_cases:
        description += "\nh3. Known Edge Cases\n"
        description += "".join(f"* {edge_case}\n" for edge_case in ticket.known_edge_cases)

    if ticket.open_questions:
        description += "\nh3. Open Questions\n"
        description += "".join(f"* (?) {question}\n" for question in ticket.open_questions)

    if ticket.setup_requirements:
        description += "\nh3. Setup Requirements\n"
        for req in ticket.setup_requirements:
            status = "(/)" if req.resolved else "(x)"
            description += f"* {status} [{req.type.value}] {req.description}\n"

    if ticket.dependencies:
        description += "\nh3. Dependencies\n"
        description += "".join(f"* {dep}\n" for dep in ticket.dependencies)

    if ticket.suggested_dependencies:
        description += "\nh3. Suggested Dependencies (Low Confidence)\n"
        description += "".join(f"* (?) {dep}\n" for dep in ticket.suggested_dependencies)

    if ticket.stakeholders:
        description += f"\n*Stakeholders:* {', '.join(ticket.stakeholders)}\n"

    description += f"*Assignee Role:* {ticket.suggested_assignee}\n"

    if ticket.is_derived:
        description += f"\n{{info}}{DERIVED_NOTE}{{info}}\n"
        if ticket.derived_rationale:
            description += f"_{ticket.derived_rationale}_\n"

    description += f"\nh3. Estimated Effort\n{ticket.estimated_effort.value}"
    description += f"\n*Readiness:* {_readiness(ticket)}"
    if ticket.readiness_reason:
        description += f" -- _{ticket.readiness_reason}_"

    return description


def text_to_adf(text: str) -> Dict[str, Any]:
    """
    Convert plain text to Atlassian Document Format (ADF).

    One paragraph per line; blank lines become empty paragraphs.
    """
    if not text:
        return {"type": "doc", "version": 1, "content": []}

    content = []
    for line in text.split("\n"):
        if line.strip():
            content.append({"type": "paragraph", "content": [{"type": "text", "text": line}]})
        else:
            content.append({"type": "paragraph", "content": []})

    return {"type": "doc", "version": 1, "content": content}


def build_jira_issue_payload(ticket: Ticket, project_key: str) -> Dict[str, Any]:
    """Request body for POST /rest/api/3/issue."""
    return {
        "fields": {
            "project": {"key": project_key},
            "summary": ticket.title,
            "description": text_to_adf(format_jira_description(ticket)),
            "issuetype": {"name": JIRA_TYPE_MAP[ticket.type]},
            "priority": {"name": JIRA_PRIORITY_MAP[ticket.priority]},
            "labels": list(ticket.labels),
        }
    }


# --- GitHub / Linear (markdown) ---

def format_markdown_body(ticket: Ticket) -> str:
    """Render a ticket as GitHub-flavored markdown (also used for Linear)."""
    body = ticket.description

    if ticket.acceptance_criteria:
        body += "\n\n## Acceptance Criteria\n"
        body += "".join(f"- [ ] {criterion}\n" for criterion in ticket.acceptance_criteria)

    if ticket.known_edge_cases:
        body += "\n## Known Edge Cases\n"
        body += "".join(f"- {edge_case}\n" for edge_case in ticket.known_edge_cases)

    if ticket.open_questions:
        body += "\n## Open Questions\n"
        body += "".join(f"- :question: {question}\n" for question in ticket.open_questions)

    if ticket.setup_requirements:
        body += "\n## Setup Requirements\n"
        for req in ticket.setup_requirements:
            checkbox = "- [x]" if req.resolved else "- [ ]"
            body += f"{checkbox} `{req.type.value}` {req.description}\n"

    if ticket.dependencies:
        body += "\n## Dependencies\n"
        body += "".join(f"- {dep}\n" for dep in ticket.dependencies)

    if ticket.suggested_dependencies:
        body += "\n## Suggested Dependencies (Low Confidence)\n"
        body += "".join(f"- :zap: {dep}\n" for dep in ticket.suggested_dependencies)

    body += "\n---\n"
    body += f"**Estimated Effort:** {ticket.estimated_effort.value}\n"
    body += f"**Priority:** {ticket.priority.value}\n"
    body += f"**Readiness:** {_readiness(ticket)}"
    if ticket.readiness_reason:
        body += f" -- _{ticket.readiness_reason}_"
    body += "\n"
    body += f"**Assignee Role:** {ticket.suggested_assignee}\n"
    if ticket.stakeholders:
        body += f"**Stakeholders:** {', '.join(ticket.stakeholders)}\n"
    if ticket.is_derived:
        body += f"\n> **Derived ticket**: {DERIVED_NOTE}\n"
        if ticket.derived_rationale:
            body += f"> _{ticket.derived_rationale}_\n"

    return body


def build_github_labels(ticket: Ticket) -> List[str]:
    """Type, priority and effort labels followed by the ticket's own labels, deduplicated."""
    labels = [
        GITHUB_TYPE_LABELS[ticket.type],
        f"priority: {ticket.priority.value}",
        f"effort: {ticket.estimated_effort.value}",
    ]
    for label in ticket.labels:
        if label not in labels:
            labels.append(label)
    return labels


def build_github_issue_payload(ticket: Ticket) -> Dict[str, Any]:
    """Request body for POST /repos/{owner}/{repo}/issues."""
    return {
        "title": ticket.title,
        "body": format_markdown_body(ticket),
        "labels": build_github_labels(ticket),
    }


def build_linear_issue_input(
    ticket: Ticket,
    team_id: str,
    label_ids: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """Variables for Linear's issueCreate mutation."""
    variables: Dict[str, Any] = {
        "teamId": team_id,
        "title": ticket.title,
        "description": format_markdown_body(ticket),
        "priority": LINEAR_PRIORITY_MAP[ticket.priority],
        "estimate": EFFORT_TO_POINTS[ticket.estimated_effort],
    }
    if label_ids:
        variables["labelIds"] = list(label_ids)
    return variables


# --- Downloads ---

def export_tickets_json(tickets: Sequence[Ticket]) -> bytes:
    """
    Export tickets as JSON bytes.

    Returns:
        bytes: UTF-8 encoded JSON array of ticket records
    """
    records = [ticket.to_record() for ticket in tickets]
    return json.dumps(records, indent=2, ensure_ascii=False).encode("utf-8")


def export_tickets_csv(tickets: Sequence[Ticket]) -> bytes:
    """
    Export tickets as CSV bytes with the full ticket schema.

    List fields are joined with " | ", confidence is a whole percentage.

    Returns:
        bytes: UTF-8 encoded CSV bytes with header row
    """
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)

    for ticket in tickets:
        setup = [
            f"[{req.type.value}{' DONE' if req.resolved else ''}] {req.description}"
            for req in ticket.setup_requirements
        ]
        writer.writerow([
            ticket.title,
            ticket.description,
            ticket.type.value,
            ticket.priority.value,
            ticket.estimated_effort.value,
            ticket.suggested_assignee,
            LIST_SEPARATOR.join(ticket.stakeholders or []),
            LIST_SEPARATOR.join(ticket.labels),
            LIST_SEPARATOR.join(ticket.acceptance_criteria),
            LIST_SEPARATOR.join(ticket.known_edge_cases),
            LIST_SEPARATOR.join(ticket.open_questions),
            LIST_SEPARATOR.join(setup),
            LIST_SEPARATOR.join(ticket.dependencies),
            LIST_SEPARATOR.join(ticket.suggested_dependencies or []),
            f"{round(ticket.confidence * 100)}%",
            "Yes" if ticket.is_derived else "No",
            ticket.derived_rationale or "",
            _readiness(ticket),
            ticket.readiness_reason or "",
            LIST_SEPARATOR.join(ticket.citation_keys),
        ])

    csv_str = output.getvalue()
    output.close()
    return csv_str.encode("utf-8")


def _readiness(ticket: Ticket) -> str:
    return ticket.readiness.value if ticket.readiness else "ready"
