"""
Canonical enum values for tickets and source documents.
"""
from enum import Enum


class TicketType(str, Enum):
    """Kinds of work item a ticket can describe."""
    
    USER_STORY = "user_story"
    TASK = "task"
    BUG = "bug"
    SPIKE = "spike"
    INFRASTRUCTURE = "infrastructure"
    DECISION = "decision"


class EffortSize(str, Enum):
    """T-shirt effort estimates."""
    
    XS = "XS"
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"


class Priority(str, Enum):
    """Priority levels for tickets."""
    
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Readiness(str, Enum):
    READY = "ready"
    PARTIALLY_BLOCKED = "partially_blocked"
    BLOCKED = "blocked"


class SetupRequirementType(str, Enum):
    """What a setup requirement is waiting on."""
    
    EXTERNAL_SYSTEM = "external_system"
    PRIOR_TICKET = "prior_ticket"
    DECISION = "decision"
    SCHEMA = "schema"
    OTHER = "other"


class SourceMode(str, Enum):
    """Whether a ticket was generated from real workspace documents."""
    
    GROUNDED = "grounded"
    SYNTHETIC = "synthetic"


class DocType(str, Enum):
    PRD = "prd"
    MEETING = "meeting"
    ARCHITECTURE = "architecture"
    TECH_STACK = "tech_stack"
    REQUIREMENTS = "requirements"
