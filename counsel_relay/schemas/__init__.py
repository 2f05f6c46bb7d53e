"""
counsel_relay.schemas
~~~~~~~~~~~~~~~~~~~~~
Pydantic schemas for the REST API and the WebSocket event protocol.
"""
from counsel_relay.schemas.api_response import ApiResponse
from counsel_relay.schemas.events import (
    DraftPayload,
    HistoryEntry,
    Identity,
    InboundEvent,
    OutboundEvent,
    Role,
)
from counsel_relay.schemas.rooms import (
    EnterRequest,
    EnterResponseData,
    HistoryResponseData,
    RoomCreatedData,
    RoomInfoData,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
