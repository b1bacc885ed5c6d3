"""
Breaking-change advisories and confirmation gating.

Advisories are range-keyed records, so a lookup for any version pair,
including a skip-version one, returns every record whose ranges the
transition crosses. A pair with no matching record is reported as unknown
risk rather than as safe.
"""

import logging
from pathlib import Path
from typing import List, Optional

from ..core.config import DEFAULT_CATALOG_PATH, ConfirmationPolicy
from ..core.dataclasses import AdvisoryLookup, AdvisoryRecord
from ..core.enums import CheckSeverity
from ..core.exceptions import ConfirmationRequiredError
from .version_graph import load_catalog
from .versions import compare_versions, span_overlaps

logger = logging.getLogger(__name__)

_IMPACT_ORDER = {CheckSeverity.CRITICAL: 0, CheckSeverity.WARNING: 1, CheckSeverity.INFO: 2}


class BreakingChangeAdvisory:
    """Risk lookup for version pairs backed by the release catalog."""

    def __init__(self, records: List[AdvisoryRecord]):
        self.records = list(records)

    @classmethod
    def from_file(cls, path: Path = DEFAULT_CATALOG_PATH) -> "BreakingChangeAdvisory":
        _, records = load_catalog(path)
        return cls(records)

    def lookup(self, from_version: str, to_version: str) -> AdvisoryLookup:
        """
        Collect advisories that apply to a transition.

        Args:
            from_version: Release the system is leaving
            to_version: Release the system is moving to

        Returns:
            AdvisoryLookup ordered by impact (critical first), flagged as
            unknown risk when nothing in the catalog covers the pair
        """
        matched: List[AdvisoryRecord] = []
        if compare_versions(from_version, to_version) < 0:
            matched = [
                record
                for record in self.records
                if span_overlaps(from_version, to_version, record.from_range)
                and span_overlaps(from_version, to_version, record.to_range)
            ]
        matched.sort(key=lambda r: _IMPACT_ORDER[r.impact])

        lookup = AdvisoryLookup(
            from_version=from_version,
            to_version=to_version,
            records=matched,
            unknown_risk=not matched,
        )
        if lookup.unknown_risk:
            logger.warning(
                f"⚠️ No advisory covers {from_version} → {to_version}; treating as unknown risk"
            )
        return lookup

    def gate(
        self,
        lookup: AdvisoryLookup,
        policy: Optional[ConfirmationPolicy] = None,
        confirmed: bool = False,
    ) -> List[AdvisoryRecord]:
        """
        Block progression on critical or unknown risk until confirmed.

        Non-critical records are acknowledged passively: logged and returned.

        Args:
            lookup: Result of lookup()
            policy: Confirmation policy consulted when no explicit flag is set
            confirmed: Explicit confirmation flag set before the gate runs

        Returns:
            The acknowledged advisory records

        Raises:
            ConfirmationRequiredError: When confirmation is required and absent
        """
        pair = f"{lookup.from_version} → {lookup.to_version}"
        for record in lookup.records:
            if record.impact != CheckSeverity.CRITICAL:
                logger.info(f"ℹ️ Advisory for {pair} [{record.impact.value}]: {record.title}")

        if not lookup.requires_confirmation:
            return lookup.records

        for record in lookup.critical:
            logger.warning(f"⚠️ CRITICAL advisory for {pair}: {record.title}")
            logger.warning(f"   Remediation: {record.remediation}")

        if not confirmed and policy is not None:
            prompt = (
                f"Unknown risk for {pair}. Proceed without advisory coverage?"
                if lookup.unknown_risk
                else f"Reviewed {len(lookup.critical)} critical advisories for {pair}?"
            )
            confirmed = policy.confirm(
                prompt,
                {
                    "from_version": lookup.from_version,
                    "to_version": lookup.to_version,
                    "advisories": [r.title for r in lookup.critical],
                    "unknown_risk": lookup.unknown_risk,
                },
            )

        if not confirmed:
            reason = (
                "unknown risk"
                if lookup.unknown_risk
                else ", ".join(r.title for r in lookup.critical)
            )
            raise ConfirmationRequiredError(
                f"Transition {pair} requires confirmation: {reason}",
                "Review the advisories and re-run with --yes to confirm",
            )

        logger.info(f"✅ Advisories for {pair} confirmed")
        return lookup.records
