"""Typed records passed between the registry, orchestrator and session engine."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PersonaRole(str, Enum):
    PRODUCT_MANAGER = "product-manager"
    TECH_LEAD = "tech-lead"
    UX_DESIGNER = "ux-designer"
    DEVOPS = "devops"
    SCRUM_MASTER = "scrum-master"


class ConversationPhase(str, Enum):
    INITIAL_DISCOVERY = "initial-discovery"
    BUSINESS_REQUIREMENTS = "business-requirements"
    TECHNICAL_ARCHITECTURE = "technical-architecture"
    USER_EXPERIENCE = "user-experience"
    INFRASTRUCTURE = "infrastructure"
    TASK_PLANNING = "task-planning"
    SPECIFICATION_GENERATION = "specification-generation"


# Canonical phase ordering (enum definition order)
PHASE_ORDER: List[ConversationPhase] = list(ConversationPhase)

COMPLEXITY_LEVELS = ["simple", "moderate", "complex"]


class _Frozen(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


class ResponseStyle(_Frozen):
    tone: str
    expertise: List[str]
    focus_areas: List[str]


class CollaborationProfile(_Frozen):
    when_to_engage: List[str]
    conflict_resolution: List[str]
    handoff_triggers: List[str]


class Persona(_Frozen):
    id: str
    name: str
    role: PersonaRole
    avatar: str
    color: str
    expertise: List[str]
    system_prompt: str
    conversation_starters: List[str]
    question_templates: List[str]
    response_style: ResponseStyle
    collaboration: CollaborationProfile


class ConversationMessage(_Frozen):
    id: str
    type: str  # "user", "ai" or "system"
    content: str
    timestamp: datetime
    persona: Optional[PersonaRole] = None
    tokens: Optional[int] = None
    processing_time_ms: Optional[int] = None

    @property
    def is_user(self) -> bool:
        return self.type == "user"


class ConversationContext(_Frozen):
    """Snapshot handed to one orchestration call. Never mutated once built."""

    conversation_id: str
    app_idea: str = ""
    target_users: List[str] = Field(default_factory=list)
    complexity: str = "moderate"
    current_phase: ConversationPhase = ConversationPhase.INITIAL_DISCOVERY
    active_personas: List[PersonaRole] = Field(default_factory=list)
    previous_messages: List[ConversationMessage] = Field(default_factory=list)


class OrchestratedResponse(_Frozen):
    persona: PersonaRole
    content: str
    tokens: int = 0
    processing_time_ms: int = 0


class OrchestrationResult(_Frozen):
    responses: List[OrchestratedResponse] = Field(default_factory=list)
    next_phase: Optional[ConversationPhase] = None
    is_complete: bool = False
    suggested_actions: List[str] = Field(default_factory=list)


class PhaseAnalysis(_Frozen):
    should_transition: bool
    confidence: float


class PhaseProgress(_Frozen):
    current_phase: ConversationPhase
    completed_phases: List[ConversationPhase]
    next_phase: Optional[ConversationPhase] = None
    overall_progress: float
