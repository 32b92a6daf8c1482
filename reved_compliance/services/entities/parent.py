"""Parent handler: the parent row plus the consents they signed."""

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from reved_compliance.database.models import Parent, ParentalConsent
from reved_compliance.database.repositories import ParentalConsentRepository, ParentRepository
from reved_compliance.services.anonymization.strategies import (
    AnonymizationRule,
    AnonymizationStrategy,
    apply_anonymization_strategy,
)
from reved_compliance.services.entities.base import (
    AnonymizationOutcome,
    EligibleEntity,
    EntityHandler,
    EntityNotFoundError,
    parse_int_id,
    to_json_safe,
)

Strategy = AnonymizationStrategy

# Rules applied to the consent records of an anonymized parent
CONSENT_RULES = (
    AnonymizationRule("parent_email", Strategy.HASH),
    AnonymizationRule("parent_name", Strategy.SUBSTITUTE),
    AnonymizationRule("child_name", Strategy.SUBSTITUTE),
    AnonymizationRule("ip_address", Strategy.MASK),
    AnonymizationRule("user_agent", Strategy.REMOVE),
)


def eligible_from_parent(parent: Parent) -> EligibleEntity:
    """Retention view of a parent row."""
    return EligibleEntity(
        entity_type="parent",
        entity_id=str(parent.id),
        last_activity=parent.last_activity_at or parent.created_at,
        legal_hold=parent.legal_hold,
        audit_flag=parent.audit_flag,
        account_type=parent.account_type,
        regulatory_retention=parent.regulatory_retention,
    )


def redact_consent(consent: ParentalConsent) -> None:
    """Apply the consent rule table to one consent record."""
    for rule in CONSENT_RULES:
        value = getattr(consent, rule.field_name)
        setattr(consent, rule.field_name, apply_anonymization_strategy(value, rule))


class ParentHandler(EntityHandler):
    """Parents, with their consent records."""

    entity_type = "parent"
    table_name = "parents"
    anonymizable = True
    rules = (
        AnonymizationRule("first_name", Strategy.SUBSTITUTE),
        AnonymizationRule("last_name", Strategy.SUBSTITUTE),
        AnonymizationRule("email", Strategy.HASH),
        AnonymizationRule("address", Strategy.REMOVE),
        AnonymizationRule("phone", Strategy.MASK, preserve_format=True),
        AnonymizationRule("ip_address", Strategy.MASK),
    )

    def _load(self, session: Session, entity_id: str) -> Parent:
        parent = ParentRepository(session).get_by_id(parse_int_id(self.entity_type, entity_id))
        if parent is None:
            raise self.not_found(entity_id)
        return parent

    def find_eligible(self, session: Session, cutoff: datetime) -> list[EligibleEntity]:
        return [eligible_from_parent(p) for p in ParentRepository(session).idle_before(cutoff)]

    def describe(self, session: Session, entity_id: str) -> EligibleEntity | None:
        try:
            return eligible_from_parent(self._load(session, entity_id))
        except EntityNotFoundError:
            return None

    def anonymize(
        self,
        session: Session,
        entity_id: str,
        preserve_statistics: bool,
    ) -> AnonymizationOutcome:
        parent = self._load(session, entity_id)
        email = parent.email
        outcome = AnonymizationOutcome(contact=email)

        self.apply_rules(parent, preserve_statistics, outcome)
        outcome.records_processed += 1

        if email:
            for consent in ParentalConsentRepository(session).for_parent_email(email):
                redact_consent(consent)
                outcome.records_processed += 1

        parent.anonymized_at = self._clock()
        return outcome

    def delete(self, session: Session, entity_id: str) -> int:
        ParentRepository(session).delete(self._load(session, entity_id))
        return 1

    def snapshot(self, session: Session, entity_id: str) -> dict[str, Any]:
        parent = self._load(session, entity_id)
        consents = (
            ParentalConsentRepository(session).for_parent_email(parent.email) if parent.email else []
        )
        return {
            "parent": to_json_safe(parent),
            "consents": [to_json_safe(consent) for consent in consents],
        }
