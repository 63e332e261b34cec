"""
Pydantic models for canonical tickets and the documents they are generated from.
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from ticket_gate.models.enums import (
    TicketType,
    EffortSize,
    Priority,
    Readiness,
    SetupRequirementType,
    SourceMode,
    DocType,
)


class TicketCitation(BaseModel):
    """Pointer from a ticket to the source passage that justifies it."""
    
    document_id: str = Field(..., description="Source document identifier")
    chunk_id: str = Field(..., description="Chunk identifier within the document ('inferred' when injected)")
    line_start: Optional[int] = Field(None, description="First cited line, if known")
    line_end: Optional[int] = Field(None, description="Last cited line, if known")
    
    @property
    def key(self) -> str:
        """Flat '{document_id}:{chunk_id}' key used for search and filtering."""
        return f"{self.document_id}:{self.chunk_id}"


class SetupRequirement(BaseModel):
    """A prerequisite that must be in place before the ticket can start."""
    
    description: str = Field(..., description="What is required")
    type: SetupRequirementType = Field(default=SetupRequirementType.OTHER)
    resolved: bool = Field(default=False)


class Ticket(BaseModel):
    """
    Canonical ticket.
    
    Every instance produced by the validator has all required fields populated
    with the correct types; optional metadata is None when absent.
    """
    
    id: str = Field(..., description="Stable ticket identifier")
    objectID: str = Field(..., description="Storage-layer identifier (same value as id)")
    
    # Canonical required fields
    title: str = Field(..., description="Clear, actionable title")
    description: str = Field(default="")
    type: TicketType = Field(default=TicketType.TASK)
    acceptance_criteria: List[str] = Field(default_factory=list)
    known_edge_cases: List[str] = Field(default_factory=list)
    open_questions: List[str] = Field(default_factory=list)
    setup_requirements: List[SetupRequirement] = Field(default_factory=list)
    dependencies: List[str] = Field(
        default_factory=list,
        description="Titles of other tickets in the same batch that must complete first"
    )
    estimated_effort: EffortSize = Field(default=EffortSize.M)
    priority: Priority = Field(default=Priority.MEDIUM)
    labels: List[str] = Field(default_factory=list)
    suggested_assignee: str = Field(default="Unassigned", description="Role or team, not a person")
    confidence: float = Field(..., ge=0.0, le=1.0)
    citations: List[TicketCitation] = Field(default_factory=list)
    
    # Derived
    citation_keys: List[str] = Field(default_factory=list)
    source_mode: SourceMode = Field(default=SourceMode.SYNTHETIC)
    
    # Optional metadata
    stakeholders: Optional[List[str]] = None
    suggested_dependencies: Optional[List[str]] = None
    is_derived: Optional[bool] = None
    derived_rationale: Optional[str] = None
    readiness: Optional[Readiness] = None
    readiness_reason: Optional[str] = None
    source_docs: Optional[List[str]] = None
    workspace_id: Optional[str] = None
    owner_uid: Optional[str] = None
    
    def to_record(self) -> Dict[str, Any]:
        """Plain JSON-ready dict for storage and export, without absent metadata."""
        return self.model_dump(mode="json", exclude_none=True)


class ProjectDocument(BaseModel):
    """A workspace document tickets are generated from."""
    
    objectID: str = Field(..., description="Document identifier")
    content: str = Field(..., description="Full document text")
    doc_type: DocType = Field(default=DocType.REQUIREMENTS)
    title: Optional[str] = None
    timestamp: str = Field(default="", description="ISO timestamp of the document")
    author: Optional[str] = None
    workspace_id: Optional[str] = None
    owner_uid: Optional[str] = None
