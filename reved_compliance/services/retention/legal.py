"""Legal retention requirements (France).

Each entity type maps to a data category whose requirement bounds the
retention period a policy may declare.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class LegalRequirement:
    """Retention bounds of a data category.

    Attributes:
        data_category: Category name.
        minimum_retention_days: Shortest allowed period.
        maximum_retention_days: Longest allowed period (None: unbounded).
        legal_basis: Legal text the bounds come from.
        jurisdiction: Applicable jurisdiction.
        can_extend_with_consent: A verified parental consent allows extension.
        special_conditions: Free-form notes.
    """

    data_category: str
    minimum_retention_days: int
    maximum_retention_days: int | None
    legal_basis: str
    jurisdiction: str = "France"
    can_extend_with_consent: bool = False
    special_conditions: tuple[str, ...] = field(default_factory=tuple)


LEGAL_REQUIREMENTS: dict[str, LegalRequirement] = {
    "student_educational_records": LegalRequirement(
        data_category="student_educational_records",
        minimum_retention_days=365,
        maximum_retention_days=1095,
        legal_basis="GDPR Article 5(1)(e) and French Education Code",
        can_extend_with_consent=True,
        special_conditions=("Parental consent can extend retention", "Educational interest"),
    ),
    "parental_consent": LegalRequirement(
        data_category="parental_consent",
        minimum_retention_days=2555,
        maximum_retention_days=None,
        legal_basis="Proof of consent legal obligation",
        special_conditions=("Must retain for audit purposes",),
    ),
    "financial_records": LegalRequirement(
        data_category="financial_records",
        minimum_retention_days=3650,
        maximum_retention_days=None,
        legal_basis="French Commercial Code",
        special_conditions=("Tax and accounting obligations",),
    ),
}

CATEGORY_BY_ENTITY_TYPE: dict[str, str] = {
    "student": "student_educational_records",
    "consent": "parental_consent",
}


def requirement_for(entity_type: str) -> LegalRequirement | None:
    """Legal requirement governing an entity type, if any."""
    category = CATEGORY_BY_ENTITY_TYPE.get(entity_type)
    return LEGAL_REQUIREMENTS.get(category) if category else None
