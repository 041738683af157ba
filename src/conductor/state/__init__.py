from conductor.state.sequencer import CHANNELS, ChannelTelemetry, EventSequencer
from conductor.state.store import StatusEnvelope, UiState, UiStateStore

__all__ = [
    "CHANNELS",
    "ChannelTelemetry",
    "EventSequencer",
    "StatusEnvelope",
    "UiState",
    "UiStateStore",
]
