"""
Gateway Setup — initializes and wires together all Gateway components.

Called once during app startup.  The routers reach the wired objects
through the module-level getters.
"""

from __future__ import annotations

import logging

from healthbot import settings
from healthbot.gateway.agents.assessment import AssessmentEngine
from healthbot.gateway.agents.emergency_classifier import EmergencyClassifier
from healthbot.gateway.agents.intent_router import IntentRouter
from healthbot.gateway.agents.session import ConversationManager
from healthbot.gateway.channels import DispatcherRegistry
from healthbot.gateway.dispatchers.memory_dispatcher import InMemoryDispatcher
from healthbot.gateway.gateway import Gateway
from healthbot.gateway.handlers.directory import HospitalDirectory
from healthbot.gateway.queue import UserQueueManager
from healthbot.gateway.scheduler import MedicationReminderScheduler
from healthbot.gateway.store import GCSStore, InMemoryStore, StateStore
from healthbot.gateway.translation import GeminiTranslator, NullTranslator, Translator

logger = logging.getLogger("gateway.setup")

# Module-level singletons (set during initialize)
_gateway: Gateway | None = None
_queue_manager: UserQueueManager | None = None
_dispatcher_registry: DispatcherRegistry | None = None
_scheduler: MedicationReminderScheduler | None = None


async def initialize_gateway(
    store: StateStore | None = None,
    dispatcher_registry: DispatcherRegistry | None = None,
    translator: Translator | None = None,
    start_scheduler: bool | None = None,
) -> Gateway:
    """
    Wire together all Gateway components and start background tasks.

    Arguments override the settings-driven choices (used by tests).
    Returns the fully initialized Gateway instance.
    """
    global _gateway, _queue_manager, _dispatcher_registry, _scheduler

    logger.info("Initializing HealthBot Gateway...")

    # 1. State store
    store = store or _build_store()

    # 2. Dispatcher registry
    _dispatcher_registry = dispatcher_registry or _build_dispatchers()

    # 3. Translator
    if translator is None:
        translator = GeminiTranslator() if settings.GOOGLE_API_KEY else NullTranslator()

    # 4. Reminder scheduler
    _scheduler = MedicationReminderScheduler(store, _dispatcher_registry, translator)

    # 5. Conversation manager + gateway
    classifier = EmergencyClassifier()
    manager = ConversationManager(
        assessment_engine=AssessmentEngine(classifier),
        scheduler=_scheduler,
        directory=HospitalDirectory(),
    )
    _gateway = Gateway(
        store=store,
        dispatcher_registry=_dispatcher_registry,
        manager=manager,
        router=IntentRouter(),
        classifier=classifier,
        translator=translator,
    )

    # 6. Queue manager (serialises turns per user)
    _queue_manager = UserQueueManager(processor=_gateway.process_inbound_message)
    await _queue_manager.start()

    if start_scheduler is None:
        start_scheduler = settings.SCHEDULER_ENABLED
    if start_scheduler:
        await _scheduler.start()

    logger.info(
        "Gateway initialized: store=%s, channels=%s, translator=%s, scheduler=%s",
        type(store).__name__,
        _dispatcher_registry.registered_channels,
        type(translator).__name__,
        "running" if _scheduler.is_running else "manual",
    )
    return _gateway


async def shutdown_gateway() -> None:
    """Gracefully stop background tasks."""
    if _scheduler:
        await _scheduler.stop()
    if _queue_manager:
        await _queue_manager.stop()
    if _dispatcher_registry:
        whatsapp = _dispatcher_registry.get("whatsapp")
        if whatsapp is not None and hasattr(whatsapp, "aclose"):
            await whatsapp.aclose()
    logger.info("Gateway shutdown complete")


def get_gateway() -> Gateway | None:
    return _gateway


def get_queue_manager() -> UserQueueManager | None:
    return _queue_manager


def get_dispatcher_registry() -> DispatcherRegistry | None:
    return _dispatcher_registry


def get_scheduler() -> MedicationReminderScheduler | None:
    return _scheduler


def _build_store() -> StateStore:
    if settings.STORE_BACKEND == "gcs":
        from healthbot.infrastructure.gcs import GCSBucketManager

        gcs = GCSBucketManager(bucket_name=settings.GCS_BUCKET_NAME)
        # Eager init to avoid a cold start on the first message
        gcs._ensure_initialized()
        logger.info("Using GCS store (bucket=%s)", settings.GCS_BUCKET_NAME)
        return GCSStore(gcs)
    logger.info("Using in-memory store")
    return InMemoryStore()


def _build_dispatchers() -> DispatcherRegistry:
    """
    Register channel dispatchers.

    In memory mode both channels record outbound messages in-process.
    Otherwise WhatsApp goes through the Cloud API and SMS through Twilio;
    either falls back to stub mode when its credentials are missing.
    """
    registry = DispatcherRegistry()

    if settings.DISPATCH_MODE == "memory":
        registry.register(InMemoryDispatcher(channel_name="whatsapp"))
        registry.register(InMemoryDispatcher(channel_name="sms"))
        logger.info("In-memory dispatchers registered")
        return registry

    from healthbot.gateway.dispatchers.twilio_dispatcher import TwilioSMSDispatcher
    from healthbot.gateway.dispatchers.whatsapp_dispatcher import WhatsAppDispatcher

    registry.register(WhatsAppDispatcher())
    logger.info("WhatsApp dispatcher registered")
    registry.register(TwilioSMSDispatcher())
    logger.info("Twilio SMS dispatcher registered")
    return registry
