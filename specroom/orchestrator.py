"""Multi-persona conversation orchestration across the requirements phases."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .config import TRIGGER_HISTORY_WINDOW
from .errors import GenerationError
from .models import (
    PHASE_ORDER,
    ConversationContext,
    ConversationMessage,
    ConversationPhase,
    OrchestratedResponse,
    OrchestrationResult,
    PersonaRole,
    PhaseAnalysis,
    PhaseProgress,
)
from .personas import get_persona

logger = logging.getLogger(__name__)

PHASE_TRANSITIONS: Dict[ConversationPhase, ConversationPhase] = {
    ConversationPhase.INITIAL_DISCOVERY: ConversationPhase.BUSINESS_REQUIREMENTS,
    ConversationPhase.BUSINESS_REQUIREMENTS: ConversationPhase.TECHNICAL_ARCHITECTURE,
    ConversationPhase.TECHNICAL_ARCHITECTURE: ConversationPhase.USER_EXPERIENCE,
    ConversationPhase.USER_EXPERIENCE: ConversationPhase.INFRASTRUCTURE,
    ConversationPhase.INFRASTRUCTURE: ConversationPhase.TASK_PLANNING,
    ConversationPhase.TASK_PLANNING: ConversationPhase.SPECIFICATION_GENERATION,
}

PHASE_PERSONAS: Dict[ConversationPhase, List[PersonaRole]] = {
    ConversationPhase.INITIAL_DISCOVERY: [PersonaRole.PRODUCT_MANAGER],
    ConversationPhase.BUSINESS_REQUIREMENTS: [PersonaRole.PRODUCT_MANAGER],
    ConversationPhase.TECHNICAL_ARCHITECTURE: [PersonaRole.TECH_LEAD, PersonaRole.PRODUCT_MANAGER],
    ConversationPhase.USER_EXPERIENCE: [PersonaRole.UX_DESIGNER, PersonaRole.PRODUCT_MANAGER],
    ConversationPhase.INFRASTRUCTURE: [PersonaRole.DEVOPS, PersonaRole.TECH_LEAD],
    ConversationPhase.TASK_PLANNING: [PersonaRole.SCRUM_MASTER, PersonaRole.TECH_LEAD],
    ConversationPhase.SPECIFICATION_GENERATION: [],
}

# Keyword groups scanned in recent history; any hit pulls the persona in.
PERSONA_TRIGGERS = [
    (["performance", "scalability", "database", "api"], PersonaRole.TECH_LEAD),
    (["user", "interface", "design", "accessibility"], PersonaRole.UX_DESIGNER),
    (["deployment", "hosting", "security", "monitoring"], PersonaRole.DEVOPS),
    (["timeline", "sprint", "task", "milestone"], PersonaRole.SCRUM_MASTER),
]

PHASE_COMPLETION_CRITERIA: Dict[ConversationPhase, List[str]] = {
    ConversationPhase.INITIAL_DISCOVERY: [
        "app idea is clear",
        "target users identified",
        "core problem defined",
    ],
    ConversationPhase.BUSINESS_REQUIREMENTS: [
        "business goals established",
        "success metrics defined",
        "feature priorities set",
    ],
    ConversationPhase.TECHNICAL_ARCHITECTURE: [
        "technology stack chosen",
        "architecture approach defined",
        "technical risks identified",
    ],
    ConversationPhase.USER_EXPERIENCE: [
        "user journey mapped",
        "interface requirements defined",
        "accessibility considered",
    ],
    ConversationPhase.INFRASTRUCTURE: [
        "deployment strategy planned",
        "infrastructure requirements set",
        "security considerations addressed",
    ],
    ConversationPhase.TASK_PLANNING: [
        "tasks broken down",
        "effort estimated",
        "dependencies identified",
    ],
    ConversationPhase.SPECIFICATION_GENERATION: [],
}

TRANSITION_SIGNALS = [
    "ready to move on",
    "next phase",
    "hand off",
    "completed",
    "established",
    "defined",
]

ACTION_TRIGGERS = [
    (["need to clarify", "unclear"], "Clarify requirements with stakeholders"),
    (["research", "investigate"], "Conduct additional research"),
    (["validate", "test"], "Validate assumptions with users"),
    (["document", "specify"], "Document decisions and requirements"),
]

PHASE_SUGGESTIONS: Dict[ConversationPhase, List[str]] = {
    ConversationPhase.INITIAL_DISCOVERY: ["Define target user personas", "Validate problem-solution fit"],
    ConversationPhase.BUSINESS_REQUIREMENTS: ["Set measurable success metrics", "Prioritize feature list"],
    ConversationPhase.TECHNICAL_ARCHITECTURE: ["Create system architecture diagram", "Identify technical risks"],
    ConversationPhase.USER_EXPERIENCE: ["Create user journey maps", "Design wireframes"],
    ConversationPhase.INFRASTRUCTURE: ["Plan deployment strategy", "Set up monitoring"],
    ConversationPhase.TASK_PLANNING: ["Create sprint backlog", "Estimate development timeline"],
    ConversationPhase.SPECIFICATION_GENERATION: [],
}

ARBITRATION_PERSONA = PersonaRole.SCRUM_MASTER

RESOLUTION_APPROACHES = {
    "compromise": "Look for a compromise that keeps what matters most to each side.",
    "data-driven": "Base the resolution on evidence, metrics and measurable outcomes.",
    "user-focused": "Resolve in favour of what best serves the end users.",
    "technical-feasibility": "Favour the option that is realistic to build and maintain.",
    "business-value": "Favour the option with the clearest business value.",
    "custom": "",
}


def next_phase(phase: ConversationPhase) -> Optional[ConversationPhase]:
    return PHASE_TRANSITIONS.get(ConversationPhase(phase))


def phase_index(phase: ConversationPhase) -> int:
    return PHASE_ORDER.index(ConversationPhase(phase))


def later_phase(a: ConversationPhase, b: Optional[ConversationPhase]) -> ConversationPhase:
    """Whichever of the two phases comes later in the fixed ordering."""
    if b is None:
        return ConversationPhase(a)
    return ConversationPhase(b) if phase_index(b) > phase_index(a) else ConversationPhase(a)


def phase_progress(context: ConversationContext) -> PhaseProgress:
    """Position of the context's phase in the fixed ordering."""
    current_index = phase_index(context.current_phase)
    return PhaseProgress(
        current_phase=context.current_phase,
        completed_phases=PHASE_ORDER[:current_index],
        next_phase=next_phase(context.current_phase),
        overall_progress=current_index / (len(PHASE_ORDER) - 1) * 100,
    )


def base_personas(phase: ConversationPhase) -> List[PersonaRole]:
    return list(PHASE_PERSONAS.get(ConversationPhase(phase), []))


def _dedupe(items: Sequence[Any]) -> List[Any]:
    seen = set()
    result = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return datetime.utcnow()


def build_context(
    conversation: Dict[str, Any],
    current_phase: Optional[ConversationPhase] = None,
    active_personas: Optional[List[PersonaRole]] = None,
) -> ConversationContext:
    """
    Build an immutable context snapshot from a stored conversation.

    Args:
        conversation: Stored conversation dict (with messages)
        current_phase: Phase override; defaults to the stored phase
        active_personas: Personas for this turn; defaults to the phase's base set
    """
    phase = ConversationPhase(
        current_phase or conversation.get("phase") or ConversationPhase.INITIAL_DISCOVERY
    )

    messages = []
    for msg in conversation.get("messages", []):
        persona = msg.get("persona")
        messages.append(ConversationMessage(
            id=msg["id"],
            type=msg.get("type", "user"),
            content=msg.get("content", ""),
            timestamp=_parse_timestamp(msg.get("created_at")),
            persona=PersonaRole(persona) if persona else None,
            tokens=msg.get("tokens"),
            processing_time_ms=msg.get("processing_time_ms"),
        ))

    complexity = (conversation.get("complexity") or "moderate").lower()

    return ConversationContext(
        conversation_id=conversation["id"],
        app_idea=conversation.get("app_idea", ""),
        target_users=list(conversation.get("target_users") or []),
        complexity=complexity,
        current_phase=phase,
        active_personas=list(active_personas) if active_personas else base_personas(phase),
        previous_messages=messages,
    )


class ConversationOrchestrator:
    """Decides who speaks each turn and whether the phase is done."""

    def __init__(self, generator):
        self.generator = generator

    async def orchestrate(self, context: ConversationContext, user_message: str) -> OrchestrationResult:
        """
        Run one turn: collect a reply from every active persona, in order.

        A persona whose generation fails is logged and left out of the
        result; the remaining personas still answer.
        """
        active = self.determine_active_personas(context)
        turn_context = context.model_copy(update={"active_personas": active})

        responses: List[OrchestratedResponse] = []
        for persona in active:
            try:
                response = await self.generator.generate(persona, turn_context, user_message)
            except GenerationError as e:
                logger.warning("Failed to get response from %s: %s", persona.value, e)
                continue
            if response.persona not in active:
                logger.warning(
                    "Dropping response attributed to %s outside the active set",
                    response.persona.value,
                )
                continue
            responses.append(response)

        analysis = self.analyze_phase_completion(context, responses)
        upcoming = next_phase(context.current_phase) if analysis.should_transition else None

        is_complete = (
            context.current_phase == ConversationPhase.TASK_PLANNING
            and analysis.should_transition
        )

        return OrchestrationResult(
            responses=responses,
            next_phase=upcoming,
            is_complete=is_complete,
            suggested_actions=self.generate_suggested_actions(context, responses, upcoming),
        )

    def determine_active_personas(self, context: ConversationContext) -> List[PersonaRole]:
        return _dedupe(base_personas(context.current_phase) + self.contextual_personas(context))

    def contextual_personas(self, context: ConversationContext) -> List[PersonaRole]:
        recent = context.previous_messages[-TRIGGER_HISTORY_WINDOW:]
        recent_content = " ".join(m.content.lower() for m in recent)

        return [
            persona
            for keywords, persona in PERSONA_TRIGGERS
            if any(keyword in recent_content for keyword in keywords)
        ]

    def analyze_phase_completion(
        self,
        context: ConversationContext,
        responses: List[OrchestratedResponse],
    ) -> PhaseAnalysis:
        # Substring heuristic; the criteria list only gates whether the phase can end.
        criteria = PHASE_COMPLETION_CRITERIA.get(context.current_phase, [])
        response_content = " ".join(r.content.lower() for r in responses)

        has_signal = any(signal in response_content for signal in TRANSITION_SIGNALS)
        return PhaseAnalysis(
            should_transition=has_signal and len(criteria) > 0,
            confidence=0.8 if has_signal else 0.3,
        )

    def generate_suggested_actions(
        self,
        context: ConversationContext,
        responses: List[OrchestratedResponse],
        upcoming: Optional[ConversationPhase] = None,
    ) -> List[str]:
        actions = []

        if upcoming:
            actions.append(f"Transition to {upcoming.value.replace('-', ' ')} phase")

        for response in responses:
            content = response.content.lower()
            for triggers, action in ACTION_TRIGGERS:
                if any(trigger in content for trigger in triggers):
                    actions.append(action)

        actions.extend(PHASE_SUGGESTIONS.get(context.current_phase, []))

        return _dedupe(actions)

    async def resolve_conflict(
        self,
        context: ConversationContext,
        conflicting_responses: List[OrchestratedResponse],
        approach: Optional[str] = None,
        guidance: Optional[str] = None,
    ) -> OrchestratedResponse:
        """
        Ask the facilitator persona for one balanced answer to conflicting views.

        Raises whatever the generator raises; nothing is swallowed here.
        """
        conflict_summary = "\n\n".join(
            f"{get_persona(r.persona).name}: {r.content}" for r in conflicting_responses
        )

        resolution_prompt = f"""There are conflicting viewpoints in our team discussion:

{conflict_summary}

As the team facilitator, please provide a balanced resolution that considers all perspectives and helps the team move forward constructively."""

        approach_hint = RESOLUTION_APPROACHES.get(approach or "", "")
        if approach_hint:
            resolution_prompt += f"\n\nResolution approach: {approach_hint}"
        if guidance:
            resolution_prompt += f"\n\nAdditional guidance: {guidance}"

        return await self.generator.generate(ARBITRATION_PERSONA, context, resolution_prompt)

    def phase_progress(self, context: ConversationContext) -> PhaseProgress:
        return phase_progress(context)
