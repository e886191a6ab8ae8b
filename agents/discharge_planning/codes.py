"""
Discharge Planning Agent - Numeric Code Tables

Destination, order, service, equipment, specialty and education codes travel
as plain unsigned integers between the hospital systems that share this
encoding. The values below are fixed; never renumber a member, only append.

Codes outside the tables below are still valid on the wire: the tables are
owned by the systems sharing the encoding and may grow before this service
learns about a new value. Such codes are carried as plain integers.

Risk factors are a bitmap, so they are modelled as an IntFlag and may be
combined (``RiskFactor.POOR_SOCIAL_SUPPORT | RiskFactor.RECENT_READMISSION``).
"""

from __future__ import annotations

from enum import IntEnum, IntFlag
from typing import Annotated, Any, Dict, List, Type, TypeVar, Union

from pydantic import Field

U32_MAX = 2**32 - 1

# Unsigned 32-bit wire integer, used for codes the tables do not name.
Code = Annotated[int, Field(ge=0, le=U32_MAX)]


class DischargeDestination(IntEnum):
    HOME = 0
    SNF = 1
    REHAB = 2
    OTHER = 3


class OrderType(IntEnum):
    MEDICATION = 0
    DME = 1
    HOME_HEALTH = 2
    LAB = 3


class HomeHealthService(IntEnum):
    NURSING = 0
    PHYSICAL_THERAPY = 1
    OCCUPATIONAL_THERAPY = 2
    SPEECH_THERAPY = 3


class EquipmentType(IntEnum):
    WALKER = 0
    WHEELCHAIR = 1
    OXYGEN_CONCENTRATOR = 2
    HOSPITAL_BED = 3


class Specialty(IntEnum):
    PRIMARY_CARE = 0
    CARDIOLOGY = 1
    SURGERY = 2
    OTHER = 3


class EducationTopic(IntEnum):
    MEDICATIONS = 0
    WOUND_CARE = 1
    DIET_NUTRITION = 2
    ACTIVITY_RESTRICTIONS = 3


class RiskFactor(IntFlag):
    NONE = 0
    MULTIPLE_COMORBIDITIES = 1
    POOR_SOCIAL_SUPPORT = 2
    MEDICATION_NON_COMPLIANCE = 4
    RECENT_READMISSION = 8


ALL_RISK_FACTORS = (
    RiskFactor.MULTIPLE_COMORBIDITIES
    | RiskFactor.POOR_SOCIAL_SUPPORT
    | RiskFactor.MEDICATION_NON_COMPLIANCE
    | RiskFactor.RECENT_READMISSION
)

CODE_TABLES: Dict[str, Type[IntEnum]] = {
    "discharge_destination": DischargeDestination,
    "order_type": OrderType,
    "home_health_service": HomeHealthService,
    "equipment_type": EquipmentType,
    "specialty": Specialty,
    "education_topic": EducationTopic,
}

E = TypeVar("E", bound=IntEnum)


def decode(enum_cls: Type[E], value: Any) -> Union[E, Any]:
    """
    Map a wire integer onto its enumeration member.

    Unknown codes are returned unchanged and stored as given.
    """
    try:
        return enum_cls(value)
    except ValueError:
        return value


def describe_tables() -> Dict[str, List[Dict[str, Any]]]:
    """Code tables as plain data, for publishing to integrators."""
    tables = {
        name: [{"code": int(member), "name": member.name} for member in enum_cls]
        for name, enum_cls in CODE_TABLES.items()
    }
    tables["risk_factor"] = [
        {"code": int(flag), "name": flag.name}
        for flag in (
            RiskFactor.MULTIPLE_COMORBIDITIES,
            RiskFactor.POOR_SOCIAL_SUPPORT,
            RiskFactor.MEDICATION_NON_COMPLIANCE,
            RiskFactor.RECENT_READMISSION,
        )
    ]
    return tables
