from fastapi import Request

from watchparty.services.party_system import PartySystem


def get_party_system(request: Request) -> PartySystem:
    return request.app.state.party_system
