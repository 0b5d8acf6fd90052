from searchpulse.events.emitter import EventEnvelope, emit_event

__all__ = ["EventEnvelope", "emit_event"]
