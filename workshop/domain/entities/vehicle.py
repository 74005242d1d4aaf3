"""Vehicle entity: the motorcycle attached to a service request."""

from dataclasses import dataclass

UNKNOWN_BRAND = "Unknown"


@dataclass
class Vehicle:
    id: str
    brand: str | None
    model: str | None = None
    year: int | None = None
    plate: str | None = None
    mileage_km: int | None = None
    owner_id: str | None = None

    def known_brand(self) -> str | None:
        """Brand usable for matching; placeholder records carry none."""
        if not self.brand or self.brand.strip().lower() == UNKNOWN_BRAND.lower():
            return None
        return self.brand.strip()
