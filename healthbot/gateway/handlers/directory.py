"""
Static directories — emergency numbers and a small hospital list.

Read-only reference data looked up by city (and optionally specialty).
"""

from __future__ import annotations

from dataclasses import dataclass, field


# (label, number)
EMERGENCY_NUMBERS: list[tuple[str, str]] = [
    ("Emergency", "112"),
    ("Ambulance", "102"),
    ("Police", "100"),
    ("Fire", "101"),
    ("Mental health helpline", "1800-599-0019"),
]


@dataclass(frozen=True)
class Hospital:
    name: str
    city: str
    phone: str = ""
    specialties: tuple[str, ...] = field(default_factory=tuple)
    emergency: bool = True


HOSPITALS: list[Hospital] = [
    # ── Mumbai ──
    Hospital("KEM Hospital", "mumbai", "022-24107000", ("general", "cardiology", "trauma")),
    Hospital("Tata Memorial Hospital", "mumbai", "022-24177000", ("oncology",)),
    Hospital("Lilavati Hospital", "mumbai", "022-26751000", ("general", "cardiology", "neurology")),
    # ── Delhi ──
    Hospital("AIIMS Delhi", "delhi", "011-26588500", ("general", "cardiology", "neurology", "trauma")),
    Hospital("Safdarjung Hospital", "delhi", "011-26707444", ("general", "trauma")),
    Hospital("Sir Ganga Ram Hospital", "delhi", "011-25750000", ("general", "nephrology")),
    # ── Bangalore ──
    Hospital("Victoria Hospital", "bangalore", "080-26701150", ("general", "trauma")),
    Hospital("NIMHANS", "bangalore", "080-26995000", ("neurology", "psychiatry")),
    Hospital("Manipal Hospital", "bangalore", "080-25024444", ("general", "cardiology")),
    # ── Chennai ──
    Hospital("Apollo Hospital", "chennai", "044-28293333", ("general", "cardiology", "oncology")),
    Hospital("Government General Hospital", "chennai", "044-25305000", ("general", "trauma")),
    Hospital("Stanley Medical College Hospital", "chennai", "044-25281351", ("general",)),
    # ── Hyderabad ──
    Hospital("Osmania General Hospital", "hyderabad", "040-24600146", ("general", "trauma")),
    Hospital("NIMS", "hyderabad", "040-23489000", ("general", "neurology", "nephrology")),
    Hospital("Gandhi Hospital", "hyderabad", "040-27505566", ("general", "pulmonology")),
]

CITY_ALIASES: dict[str, str] = {
    "bengaluru": "bangalore",
    "bombay": "mumbai",
    "madras": "chennai",
    "new delhi": "delhi",
}

KNOWN_CITIES = sorted({h.city for h in HOSPITALS})


def normalize_city(city: str | None) -> str:
    key = (city or "").strip().lower()
    return CITY_ALIASES.get(key, key)


class HospitalDirectory:
    """Lookup over a fixed hospital list."""

    def __init__(self, hospitals: list[Hospital] | None = None) -> None:
        self._hospitals = hospitals if hospitals is not None else HOSPITALS

    def find(self, city: str | None, specialty: str | None = None, limit: int = 3) -> list[Hospital]:
        key = normalize_city(city)
        matches = [h for h in self._hospitals if h.city == key]
        if specialty:
            wanted = specialty.strip().lower()
            matches = [h for h in matches if wanted in h.specialties]
        return matches[:limit]

    @property
    def cities(self) -> list[str]:
        return sorted({h.city for h in self._hospitals})


def format_emergency_numbers() -> str:
    return "\n".join(f"📞 {label}: {number}" for label, number in EMERGENCY_NUMBERS)


def format_hospitals(hospitals: list[Hospital]) -> str:
    lines = []
    for h in hospitals:
        line = f"🏥 {h.name}"
        if h.phone:
            line += f" ({h.phone})"
        lines.append(line)
    return "\n".join(lines)
