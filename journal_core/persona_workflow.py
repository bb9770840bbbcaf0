"""
Custom persona creation.

    input -> generating -> preview -> creating -> complete
    generating / creating -> failed

generate() turns a free-text description into persona fields and a
previewable voice. Both live only on the workflow object until confirm()
saves the voice permanently and commits the persona to the registry.
regenerate() throws the draft away. Nothing is persisted before confirm()
succeeds.
"""
import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from adapters.base import AdapterError, Analyst, VoiceDesigner, VoicePreview
from adapters.config import DEFAULT_SAMPLE_TEXT
from adapters.schema import GeneratedPersona
from logging_setup import get_logger, Component
from observability.events import Component as ObsComponent, EventEmitter

from .errors import (
    EmptyPrompt,
    ErrorHandler,
    InvalidTransition,
    JournalError,
    PersonaGenerationFailed,
    VoiceFinalizationFailed,
    VoiceGenerationFailed,
)
from .models import Persona, utc_now
from .personas import PersonaRegistry


logger = get_logger(Component.PERSONA_WORKFLOW)


class WorkflowState(str, Enum):
    INPUT = "input"
    GENERATING = "generating"
    PREVIEW = "preview"
    CREATING = "creating"
    COMPLETE = "complete"
    FAILED = "failed"


_ALLOWED = {
    WorkflowState.INPUT: {WorkflowState.GENERATING},
    WorkflowState.GENERATING: {WorkflowState.PREVIEW, WorkflowState.FAILED},
    WorkflowState.PREVIEW: {WorkflowState.CREATING, WorkflowState.INPUT},
    WorkflowState.CREATING: {WorkflowState.COMPLETE, WorkflowState.FAILED},
    WorkflowState.FAILED: {WorkflowState.GENERATING, WorkflowState.CREATING, WorkflowState.INPUT},
    WorkflowState.COMPLETE: set(),
}


def voice_prompt(draft: GeneratedPersona) -> str:
    """Voice design description for a generated persona."""
    return f"{draft.personality}. {draft.feedback_style}"


class PersonaCreationWorkflow:
    """One persona creation attempt for one identity."""

    def __init__(
        self,
        identity: str,
        analyst: Analyst,
        designer: VoiceDesigner,
        registry: PersonaRegistry,
        emitter: Optional[EventEmitter] = None,
        sample_text: str = DEFAULT_SAMPLE_TEXT,
        now: Callable[[], datetime] = utc_now,
    ):
        self.identity = identity
        self.analyst = analyst
        self.designer = designer
        self.registry = registry
        self.emitter = emitter or EventEmitter(ObsComponent.PERSONA_WORKFLOW)
        self.sample_text = sample_text
        self.now = now

        self.workflow_id = str(uuid.uuid4())
        self.state = WorkflowState.INPUT
        self.draft: Optional[GeneratedPersona] = None
        self.preview: Optional[VoicePreview] = None
        self.persona: Optional[Persona] = None
        self.error: Optional[JournalError] = None

        self.logger = logger.with_identity(identity)

    def _transition(self, new_state: WorkflowState) -> None:
        old_state = self.state
        if new_state not in _ALLOWED[old_state]:
            raise InvalidTransition(f"cannot go from {old_state.value} to {new_state.value}")
        self.state = new_state
        self.emitter.state_changed(
            self.identity, self.workflow_id, old_state.value, new_state.value, prefix="persona"
        )

    def _fail(self, error: JournalError) -> JournalError:
        self.error = error
        self._transition(WorkflowState.FAILED)
        described = ErrorHandler.describe(error)
        self.emitter.workflow_failed(
            self.identity,
            self.workflow_id,
            kind=described["kind"],
            stage=described["stage"],
            category=described["category"],
            detail=described["detail"],
            prefix="persona",
        )
        self.logger.warning(
            "Persona workflow failed",
            workflow_id=self.workflow_id,
            kind=described["kind"],
            status=described["status"],
        )
        return error

    @property
    def can_confirm(self) -> bool:
        return (
            self.state in (WorkflowState.PREVIEW, WorkflowState.FAILED)
            and self.draft is not None
            and self.preview is not None
        )

    async def generate(self, description: str) -> VoicePreview:
        """
        Generate persona fields and a preview voice from a description.

        Raises EmptyPrompt (state unchanged) for a blank description,
        PersonaGenerationFailed or VoiceGenerationFailed otherwise.
        """
        if self.state not in (WorkflowState.INPUT, WorkflowState.FAILED) or self.preview is not None:
            raise InvalidTransition(f"generate() not allowed in state {self.state.value}")
        if not description or not description.strip():
            raise EmptyPrompt("persona description is empty")

        self.error = None
        self._transition(WorkflowState.GENERATING)
        self.logger.info("Persona generation started", workflow_id=self.workflow_id, description_length=len(description))
        self.logger.debug_pii("Persona description", description=description)

        started = time.monotonic()
        try:
            draft = await self.analyst.generate_persona(description.strip())
        except AdapterError as e:
            raise self._fail(PersonaGenerationFailed.from_adapter(e)) from e
        self.emitter.stage_latency(
            self.identity, self.workflow_id, "persona_generation",
            int((time.monotonic() - started) * 1000), prefix="persona",
        )

        started = time.monotonic()
        try:
            preview = await self.designer.design_voice(voice_prompt(draft), self.sample_text)
        except AdapterError as e:
            raise self._fail(VoiceGenerationFailed.from_adapter(e)) from e
        self.emitter.stage_latency(
            self.identity, self.workflow_id, "voice_design",
            int((time.monotonic() - started) * 1000), prefix="persona",
        )

        self.draft = draft
        self.preview = preview
        self._transition(WorkflowState.PREVIEW)
        return preview

    async def confirm(self) -> Persona:
        """
        Save the previewed voice permanently and commit the persona.

        On VoiceFinalizationFailed the draft and preview are kept so
        confirm() can simply be called again.
        """
        if not self.can_confirm:
            raise InvalidTransition(f"confirm() not allowed in state {self.state.value}")

        self.error = None
        self._transition(WorkflowState.CREATING)
        try:
            voice_id = await self.designer.finalize_voice(
                self.preview.preview_voice_id, self.draft.name, self.draft.personality
            )
        except AdapterError as e:
            raise self._fail(VoiceFinalizationFailed.from_adapter(e)) from e

        persona = Persona(
            id=str(uuid.uuid4()),
            name=self.draft.name,
            personality=self.draft.personality,
            instruction_text=self.draft.instruction_text,
            feedback_style=self.draft.feedback_style,
            voice_id=voice_id,
            created_at=self.now(),
            is_custom=True,
        )
        self.registry.add_custom(self.identity, persona)
        self.persona = persona
        self._transition(WorkflowState.COMPLETE)

        self.emitter.emit(
            "persona.created",
            self.identity,
            correlation_id=self.workflow_id,
            persona_id=persona.id,
            voice_id=voice_id,
        )
        self.logger.info("Persona created", workflow_id=self.workflow_id, persona_id=persona.id)
        return persona

    def regenerate(self) -> None:
        """Discard the draft and preview and return to input. Nothing is persisted."""
        if self.state in (WorkflowState.GENERATING, WorkflowState.CREATING, WorkflowState.COMPLETE):
            raise InvalidTransition(f"regenerate() not allowed in state {self.state.value}")
        self.draft = None
        self.preview = None
        self.error = None
        if self.state != WorkflowState.INPUT:
            self._transition(WorkflowState.INPUT)
