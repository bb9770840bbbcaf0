"""
Object graph for the journal core.

Everything mutable (store, registry, gate, event store) is created here
and injected; no module holds domain state of its own.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from adapters.base import Analyst, SpeechSynthesizer, Transcriber, VoiceDesigner
from adapters.config import AdapterConfig, get_config as get_adapter_config
from adapters.elevenlabs import ElevenLabsClient
from adapters.openai_llm import OpenAIAnalyst
from logging_setup import get_logger, Component
from observability.event_store import EventStore
from observability.events import Component as ObsComponent, EventEmitter

from .config import CoreConfig, get_config, load_local_env
from .conversation import ConversationOrchestrator
from .entitlement import EntitlementGate
from .models import utc_now
from .persona_workflow import PersonaCreationWorkflow
from .personas import PersonaRegistry
from .pipeline import InsightPipeline
from .store import EntryStore, JSONFileBackend, KeyValueBackend, MemoryBackend


logger = get_logger(Component.SERVICES)


@dataclass
class Services:
    config: CoreConfig
    store: EntryStore
    registry: PersonaRegistry
    gate: EntitlementGate
    event_store: EventStore
    now: Callable[[], datetime] = utc_now

    transcriber: Optional[Transcriber] = None
    analyst: Optional[Analyst] = None
    synthesizer: Optional[SpeechSynthesizer] = None
    designer: Optional[VoiceDesigner] = None
    pipeline: Optional[InsightPipeline] = None
    conversation: Optional[ConversationOrchestrator] = None
    sample_text: Optional[str] = None

    _closeables: List = field(default_factory=list)

    def emitter(self, component: ObsComponent) -> EventEmitter:
        return EventEmitter(component, store=self.event_store)

    def persona_workflow(self, identity: str) -> PersonaCreationWorkflow:
        """A fresh persona creation workflow for one identity."""
        if self.analyst is None or self.designer is None:
            raise RuntimeError("persona creation needs an analyst and a voice designer")
        kwargs = {"sample_text": self.sample_text} if self.sample_text else {}
        return PersonaCreationWorkflow(
            identity,
            self.analyst,
            self.designer,
            self.registry,
            emitter=self.emitter(ObsComponent.PERSONA_WORKFLOW),
            now=self.now,
            **kwargs,
        )

    async def aclose(self) -> None:
        for adapter in self._closeables:
            await adapter.aclose()
        self._closeables.clear()


def build_backend(config: CoreConfig) -> KeyValueBackend:
    if config.store_backend == "memory":
        return MemoryBackend()
    return JSONFileBackend(config.data_dir)


def build_services(
    config: Optional[CoreConfig] = None,
    adapter_config: Optional[AdapterConfig] = None,
    *,
    with_adapters: bool = True,
    transcriber: Optional[Transcriber] = None,
    analyst: Optional[Analyst] = None,
    synthesizer: Optional[SpeechSynthesizer] = None,
    designer: Optional[VoiceDesigner] = None,
    backend: Optional[KeyValueBackend] = None,
    event_store: Optional[EventStore] = None,
    now: Callable[[], datetime] = utc_now,
) -> Services:
    """
    Build the service graph.

    Adapters passed in explicitly win; missing ones are created from
    AdapterConfig (environment) when with_adapters is true. Without
    adapters only the storage, registry and entitlement side is wired,
    which is all the control API needs.
    """
    config = config or get_config()
    store = EntryStore(backend or build_backend(config))
    event_store = event_store or EventStore()
    registry = PersonaRegistry(store)
    gate = EntitlementGate(
        store,
        limit=config.free_entry_limit,
        now=now,
        emitter=EventEmitter(ObsComponent.ENTITLEMENT, store=event_store),
    )
    services = Services(
        config=config,
        store=store,
        registry=registry,
        gate=gate,
        event_store=event_store,
        now=now,
    )

    if with_adapters:
        needs_remote = None in (transcriber, analyst, synthesizer, designer)
        if needs_remote:
            if adapter_config is None:
                load_local_env()
                adapter_config = get_adapter_config()
            services.sample_text = adapter_config.voice_sample_text
        if transcriber is None or synthesizer is None or designer is None:
            elevenlabs = ElevenLabsClient(adapter_config)
            services._closeables.append(elevenlabs)
            transcriber = transcriber or elevenlabs
            synthesizer = synthesizer or elevenlabs
            designer = designer or elevenlabs
        if analyst is None:
            analyst = OpenAIAnalyst(adapter_config)
            services._closeables.append(analyst)

        services.transcriber = transcriber
        services.analyst = analyst
        services.synthesizer = synthesizer
        services.designer = designer
        services.pipeline = InsightPipeline(
            transcriber,
            analyst,
            synthesizer,
            registry,
            store,
            gate,
            emitter=services.emitter(ObsComponent.INSIGHT_PIPELINE),
            now=now,
        )
        services.conversation = ConversationOrchestrator(
            transcriber,
            analyst,
            synthesizer,
            registry,
            store,
            emitter=services.emitter(ObsComponent.CONVERSATION),
            now=now,
        )

    logger.info(
        "Services built",
        store_backend=config.store_backend,
        free_entry_limit=config.free_entry_limit,
        with_adapters=with_adapters,
    )
    return services
