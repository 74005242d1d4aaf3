"""RequiredSkillsPolicy: which skills a service type demands from a technician."""

from collections.abc import Iterable, Mapping

DEFAULT_REQUIRED_SKILLS: tuple[str, ...] = ("basic_maintenance",)


def determine_required_skills(
    service_type: str,
    catalog_entry: Mapping | None,
    default: Iterable[str] = DEFAULT_REQUIRED_SKILLS,
) -> frozenset[str]:
    """Pure function: required skills for *service_type*.

    The service catalog entry wins when it lists ``requiredSkills``; otherwise
    every service falls back to *default*. Blank and duplicate entries are
    dropped.
    """
    listed: Iterable = ()
    if catalog_entry is not None:
        raw = catalog_entry.get("requiredSkills")
        if isinstance(raw, (list, tuple)):
            listed = raw

    skills = frozenset(s.strip() for s in listed if isinstance(s, str) and s.strip())
    if skills:
        return skills
    return frozenset(s for s in default if s)
