"""Provider codes and data plan prices used by purchases and referral rewards."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

NETWORK_CODES: dict[str, int] = {
    "mtn": 1,
    "airtel": 2,
    "glo": 3,
    "9mobile": 4,
}

DISCO_CODES: dict[str, str] = {
    "ikeja": "ikeja-electric",
    "eko": "eko-electric",
    "ibadan": "ibadan-electric",
    "abuja": "abuja-electric",
}

METER_TYPE_CODES: dict[str, int] = {
    "prepaid": 1,
    "postpaid": 2,
}


@dataclass(frozen=True)
class DataPlan:
    code: str
    network: str
    size: str
    provider_plan_id: int
    price: int  # kobo


def _plans() -> dict[str, DataPlan]:
    sizes = [
        ("500mb", "500MB", 1, 15_000),
        ("1gb", "1GB", 2, 30_000),
        ("2gb", "2GB", 3, 60_000),
        ("5gb", "5GB", 4, 150_000),
    ]
    plans = {}
    for network, network_code in NETWORK_CODES.items():
        for slug, size, offset, price in sizes:
            code = f"{network}-{slug}-30days"
            plans[code] = DataPlan(
                code=code,
                network=network,
                size=size,
                provider_plan_id=network_code * 100 + offset,
                price=price,
            )
    return plans


DATA_PLANS: dict[str, DataPlan] = _plans()


def get_data_plan(code: str) -> Optional[DataPlan]:
    return DATA_PLANS.get(code)


def find_data_plan(network: str, size: str) -> Optional[DataPlan]:
    """Look up the 30-day plan of ``size`` (e.g. ``"1GB"``) on ``network``."""
    return DATA_PLANS.get(f"{network.lower()}-{size.strip().lower()}-30days")
