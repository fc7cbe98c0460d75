"""Message schemas exchanged with the pet game gateway.

Every command has exactly one request model and one reply model. Field names
are pythonic; aliases carry the wire spelling used by the gateway and the
Cardinal shard. Replies are validated at decode time so a shape mismatch
surfaces as a :class:`DecodeError` instead of a half-filled dict.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from tamaclient.utils.errors import DecodeError


SCHEMA_VERSION = 1

ModelT = TypeVar("ModelT", bound=BaseModel)


class WireModel(BaseModel):
    """Base for every wire message: accepts both field names and aliases."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Transaction correlation
# ---------------------------------------------------------------------------


class SubmissionRecord(WireModel):
    """Correlation handle returned by the gateway for a submitted transaction."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    tx_hash: str = Field(alias="TxHash", min_length=1)
    tick: int = Field(alias="Tick", ge=0)


class Receipt(WireModel):
    tx_hash: str = Field(alias="txHash")
    tick: int
    result: Any = None
    errors: List[str] = Field(default_factory=list)

    @field_validator("errors", mode="before")
    @classmethod
    def _null_errors(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def ok(self) -> bool:
        return not self.errors


class ReceiptBatch(WireModel):
    start_tick: int = Field(alias="startTick")
    end_tick: int = Field(alias="endTick")
    receipts: List[Receipt] = Field(default_factory=list)

    @field_validator("receipts", mode="before")
    @classmethod
    def _null_receipts(cls, value: Any) -> Any:
        return [] if value is None else value


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class Persona(WireModel):
    persona_tag: str = Field(alias="personaTag", min_length=1)
    status: Optional[str] = None
    tick: Optional[int] = None
    tx_hash: Optional[str] = Field(default=None, alias="txHash")


class Pet(WireModel):
    persona_tag: str = Field(default="", alias="personaTag")
    nickname: str
    gender: bool = Field(default=False, alias="Gender")
    level: int = Field(default=0, alias="lvl")
    xp: int = Field(default=0, alias="exp")
    next_level_xp: int = Field(default=0, alias="NextLevelXP")
    born_tick: int = Field(default=0, alias="born_tick")


class Item(WireModel):
    name: str
    kind: str = ""
    description: str = ""
    price: float = 0.0


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class EmptyRequest(WireModel):
    pass


class ClaimPersonaRequest(WireModel):
    persona_tag: str = Field(alias="personaTag", min_length=1)


class CreatePetRequest(WireModel):
    nickname: str = Field(min_length=1)


class PetItemRequest(WireModel):
    """Shared shape of bath, feed, cure and play: target pet plus an item."""

    target: str = Field(min_length=1)
    item_name: str = Field(min_length=1)


class SleepPetRequest(WireModel):
    target: str = Field(min_length=1)


class BreedPetRequest(WireModel):
    mother_name: str = Field(alias="motherName", min_length=1)
    father_name: str = Field(alias="fatherName", min_length=1)
    born_name: str = Field(alias="bornName", min_length=1)


class BuyItemRequest(WireModel):
    name: str = Field(min_length=1)


class PetNicknameRequest(WireModel):
    nickname: str = Field(alias="Nickname", min_length=1)


class PersonaTagRequest(WireModel):
    persona_tag: str = Field(alias="personaTag", min_length=1)


# ---------------------------------------------------------------------------
# Query replies
# ---------------------------------------------------------------------------


class CurrentTickReply(WireModel):
    current_tick: int = Field(alias="currentTick", ge=0)


class PetEnergyReply(WireModel):
    energy: int


class PetHealthReply(WireModel):
    hp: int = Field(alias="HP")


class PetsReply(WireModel):
    pets: List[Pet] = Field(
        default_factory=list,
        validation_alias=AliasChoices("pets", "Pets"),
        serialization_alias="pets",
    )

    @field_validator("pets", mode="before")
    @classmethod
    def _null_pets(cls, value: Any) -> Any:
        return [] if value is None else value


class PlayerExistReply(WireModel):
    exist: bool = False


class PlayerItemsReply(WireModel):
    items: List[Item] = Field(default_factory=list)

    @field_validator("items", mode="before")
    @classmethod
    def _null_items(cls, value: Any) -> Any:
        return [] if value is None else value


# ---------------------------------------------------------------------------
# Command registry
# ---------------------------------------------------------------------------


class CommandKind(str, Enum):
    TRANSACTION = "tx"
    QUERY = "query"
    PERSONA = "persona"


@dataclass(frozen=True)
class CommandSpec:
    name: str
    kind: CommandKind
    request_model: Type[WireModel]
    reply_model: Type[WireModel]
    requires_persona: bool = False

    @property
    def route(self) -> str:
        if self.kind is CommandKind.TRANSACTION:
            return f"tx/game/{self.name}"
        if self.kind is CommandKind.QUERY:
            return f"query/game/{self.name}"
        return f"nakama/{self.name}"


def _tx(name: str, request_model: Type[WireModel]) -> CommandSpec:
    return CommandSpec(
        name, CommandKind.TRANSACTION, request_model, SubmissionRecord, requires_persona=True
    )


def _query(name: str, request_model: Type[WireModel], reply_model: Type[WireModel]) -> CommandSpec:
    return CommandSpec(name, CommandKind.QUERY, request_model, reply_model)


COMMANDS: Dict[str, CommandSpec] = {
    spec.name: spec
    for spec in (
        CommandSpec("show-persona", CommandKind.PERSONA, EmptyRequest, Persona),
        CommandSpec("claim-persona", CommandKind.PERSONA, ClaimPersonaRequest, Persona),
        _tx("create-player", EmptyRequest),
        _tx("create-pet", CreatePetRequest),
        _tx("bath-pet", PetItemRequest),
        _tx("feed-pet", PetItemRequest),
        _tx("cure-pet", PetItemRequest),
        _tx("play-pet", PetItemRequest),
        _tx("sleep-pet", SleepPetRequest),
        _tx("breed-pet", BreedPetRequest),
        _tx("buy-item", BuyItemRequest),
        _query("current-tick", EmptyRequest, CurrentTickReply),
        _query("pet-energy", PetNicknameRequest, PetEnergyReply),
        _query("pet-health", PetNicknameRequest, PetHealthReply),
        _query("pets-list", EmptyRequest, PetsReply),
        _query("player-exist", PersonaTagRequest, PlayerExistReply),
        _query("personaItem-list", PersonaTagRequest, PlayerItemsReply),
        _query("leaderboard", EmptyRequest, PetsReply),
    )
}


def get_command(name: str) -> CommandSpec:
    try:
        return COMMANDS[name]
    except KeyError:
        raise ValueError(f"Unknown command {name!r}") from None


def decode(command: str, model: Type[ModelT], data: Any) -> ModelT:
    """Validate ``data`` against ``model``; shape errors become DecodeError."""

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise DecodeError(command, f"expected an object, got {type(data).__name__}")
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise DecodeError(command, f"reply does not match {model.__name__}: {exc}") from exc


def build_request(spec: CommandSpec, payload: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Validate caller input for ``spec`` and return the wire payload."""

    try:
        request = spec.request_model.model_validate(dict(payload or {}))
    except ValidationError as exc:
        raise ValueError(f"Invalid payload for {spec.name}: {exc}") from exc
    return request.to_wire()
