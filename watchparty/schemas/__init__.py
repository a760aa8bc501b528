"""
watchparty.schemas
~~~~~~~~~~~~~~~~~~
Pydantic schemas and models for the API and the WebSocket protocol.
"""
from watchparty.schemas.api_response import ApiResponse
from watchparty.schemas.party import (
    ChatEntry,
    ChatMessageRequest,
    CreateRoomRequest,
    JoinRoomRequest,
    LoadPlaylistRequest,
    MemberData,
    PlaybackRequest,
    RoomStateData,
    RoomSummaryData,
    UpdateCredentialRequest,
    VideoChangeRequest,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
