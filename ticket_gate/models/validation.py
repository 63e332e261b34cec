"""
Context, log and result models for the ticket validation pipeline.
"""
from pydantic import BaseModel, Field
from typing import List, Sequence
from ticket_gate.models.ticket import Ticket, ProjectDocument


class ValidationContext(BaseModel):
    """What the generation run had available as source material."""
    
    source_doc_ids: List[str] = Field(
        default_factory=list,
        description="Document IDs available in this generation run"
    )
    has_documents: bool = Field(
        default=False,
        description="Whether real workspace documents were provided"
    )
    
    @classmethod
    def from_documents(cls, documents: Sequence[ProjectDocument]) -> "ValidationContext":
        return cls(
            source_doc_ids=[doc.objectID for doc in documents],
            has_documents=len(documents) > 0,
        )


class ValidationLog(BaseModel):
    """
    Observational counters for one validation call.
    
    `repaired` counts tickets that went through at least one repair event,
    not the events themselves. `reasons` holds one line per event.
    """
    
    total_input: int = 0
    total_output: int = 0
    repaired: int = 0
    dropped: int = 0
    promoted_to_decision: int = 0
    citations_injected: int = 0
    reasons: List[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    tickets: List[Ticket] = Field(default_factory=list)
    log: ValidationLog = Field(default_factory=ValidationLog)
