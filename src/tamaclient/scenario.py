"""Scripted gameplay scenario: sign in, adopt a pet and look after it."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from loguru import logger

from tamaclient.utils.api_client import AsyncPetClient
from tamaclient.utils.confirmation import ConfirmationResult
from tamaclient.utils.messages import Pet

DEFAULT_PERSONA = "pepe5"
DEFAULT_PET = "Manny2"
DEFAULT_BATH_ITEM = "Sponge"


@dataclass
class ScenarioReport:
    persona_tag: str
    pet_name: str
    custom_id: Optional[str] = None
    tick: Optional[int] = None
    energy: Optional[int] = None
    health: Optional[int] = None
    pets: List[Pet] = field(default_factory=list)
    confirmations: Dict[str, ConfirmationResult] = field(default_factory=dict)


async def run_scenario(
    client: AsyncPetClient,
    *,
    email: str,
    password: str,
    persona_tag: str = DEFAULT_PERSONA,
    pet_name: str = DEFAULT_PET,
    bath_item: str = DEFAULT_BATH_ITEM,
) -> ScenarioReport:
    """Run the demo flow and return what was observed along the way."""

    report = ScenarioReport(persona_tag=persona_tag, pet_name=pet_name)

    await client.authenticate(email, password)
    report.custom_id = await client.custom_id()
    await client.claim_persona(persona_tag)

    player = await client.create_player(confirm=True)
    if player is not None:
        report.confirmations["create-player"] = player

    created = await client.create_pet(pet_name)
    report.tick = await client.current_tick()
    report.confirmations["create-pet"] = await client.wait_for_receipt(created)
    logger.info("create-pet receipts: {}", report.confirmations["create-pet"].receipts)

    vitals = await client.pet_vitals(pet_name)
    report.energy = vitals["energy"]
    report.health = vitals["health"]
    report.pets = await client.pets()

    bought = await client.buy_item(bath_item, confirm=True)
    report.confirmations["buy-item"] = bought

    bathed = await client.bath_pet(pet_name, bath_item, confirm=True)
    report.confirmations["bath-pet"] = bathed
    logger.info("bath-pet receipts: {}", bathed.receipts)
    return report
