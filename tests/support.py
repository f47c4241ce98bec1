"""Shared builders for the test suites: in-memory stores and a stub gateway."""

from typing import List, Optional

from roomy.config import Config
from roomy.chat_service import ChatService
from roomy.openai_config import ChatGateway
from roomy.profile_schema import Dorm
from roomy.session_store import (
    RoomyDatabase, DuckDBSessionStore, DuckDBPreferenceStore, DuckDBDormRepository,
)
from roomy.api_enhancements import RateLimiter


REPLY = "Here are some great options for you!"


class StubGateway(ChatGateway):
    """Records every prompt; replies with a fixed string or raises `error`"""

    def __init__(self, reply: str = REPLY, error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[tuple] = []

    def complete(self, system_prompt: str, user_message: str) -> str:
        self.calls.append((system_prompt, user_message))
        if self.error is not None:
            raise self.error
        return self.reply

    @property
    def last_prompt(self) -> str:
        return self.calls[-1][0]


def closed_database() -> RoomyDatabase:
    """A database every statement fails on, as during an outage"""
    db = RoomyDatabase(":memory:")
    db.close()
    return db


def make_config(**overrides) -> Config:
    return Config(duckdb_path=":memory:", **overrides)


def make_service(
    gateway: Optional[ChatGateway] = None,
    rate_limiter: Optional[RateLimiter] = None,
    db: Optional[RoomyDatabase] = None,
    **config_overrides
) -> ChatService:
    db = db or RoomyDatabase(":memory:")
    return ChatService(
        sessions=DuckDBSessionStore(db, ttl_seconds=86400),
        preferences=DuckDBPreferenceStore(db),
        dorms=DuckDBDormRepository(db),
        gateway=gateway or StubGateway(),
        rate_limiter=rate_limiter,
        config=make_config(**config_overrides),
    )


SAMPLE_DORMS = [
    Dorm(id="d1", dorm_name="Cedar House", area="Hamra", university="AUB",
         monthly_price=450, room_types="Single, Shared", amenities=["WiFi", "Laundry"],
         gender_preference="Mixed"),
    Dorm(id="d2", dorm_name="Olive Residence", area="Hamra", university="AUB",
         monthly_price=380, room_types="Shared", amenities=["Gym"],
         gender_preference="Female"),
    Dorm(id="d3", dorm_name="Byblos Suites", area="Jbeil", university="LAU",
         monthly_price=600, room_types="Studio", amenities=["Parking", "WiFi"]),
    Dorm(id="d4", dorm_name="Pending Place", area="Hamra", university="AUB",
         monthly_price=300, room_types="Single", amenities=["WiFi"],
         verification_status="Pending"),
]


def seed_dorms(service: ChatService, dorms=SAMPLE_DORMS) -> None:
    for dorm in dorms:
        service.dorms.add(dorm)
