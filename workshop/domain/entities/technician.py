"""Technician entity: a staff member eligible for assignment."""

from dataclasses import dataclass, field

DEFAULT_RATING = 4.5


@dataclass
class Technician:
    id: str
    name: str
    skills: list[str] = field(default_factory=list)
    is_available: bool = True
    hourly_rate: float | None = None
    rating: float = DEFAULT_RATING

    def is_eligible(self) -> bool:
        """Available and carrying at least one skill."""
        return self.is_available and len(self.skills) > 0

    def has_brand_experience(self, brand: str | None) -> bool:
        if not brand:
            return False
        needle = brand.strip().lower()
        return bool(needle) and any(needle in skill.lower() for skill in self.skills)
