"""
Vendor Detection

Attributes a document to one of the owner's vendors using a cascade of
strategies, cheapest first:

1. Identifier matching - registered tax/registration numbers found verbatim
2. AI-assisted detection - the extraction service picks from the vendor list
3. Fuzzy name matching - exact or partial vendor name in the document header

Finding no vendor is a normal outcome, not an error.
"""

import json
import logging
from typing import Any, List, Optional

from invoicex.db.models import Vendor
from invoicex.db.repository import VendorRepository
from invoicex.models.invoice import MatchReason, VendorMatch
from invoicex.processors.base import best_effort
from invoicex.processors.llm.base_provider import ExtractionProvider
from invoicex.processors.llm.prompt_manager import PromptManager

logger = logging.getLogger(__name__)


class VendorDetector:
    """
    Resolves the vendor of a document

    Usage:
        detector = VendorDetector(VendorRepository(db))
        match = await detector.resolve(text, owner_id, provider)
        if match.vendor_id:
            ...
    """

    IDENTIFIER_CONFIDENCE = 0.95
    SHORT_CIRCUIT_CONFIDENCE = 0.9
    AI_ACCEPT_THRESHOLD = 0.7
    AI_TEXT_LIMIT = 1500
    FUZZY_TEXT_LIMIT = 1000
    EXACT_NAME_CONFIDENCE = 0.8
    PARTIAL_MATCH_THRESHOLD = 0.5
    PARTIAL_MATCH_WEIGHT = 0.7
    MIN_WORD_LENGTH = 3  # words must be longer than this

    def __init__(
        self,
        vendors: VendorRepository,
        prompt_manager: Optional[PromptManager] = None
    ):
        self.vendors = vendors
        self.prompt_manager = prompt_manager or PromptManager()

    async def resolve(
        self,
        text: str,
        owner_id: str,
        provider: Optional[ExtractionProvider] = None
    ) -> VendorMatch:
        """
        Run the detection cascade

        Args:
            text: Full document text
            owner_id: Owner whose vendors are candidates
            provider: Extraction provider for the AI strategy; skipped when None

        Returns:
            VendorMatch, with ``reason=none`` when nothing matched
        """
        candidates = self.vendors.list_candidates(owner_id)
        if not candidates:
            logger.debug(f"No vendor candidates for owner {owner_id}")
            return VendorMatch.no_match()

        match = self.match_identifiers(text, candidates)
        if match and match.confidence > self.SHORT_CIRCUIT_CONFIDENCE:
            return match

        if provider is not None:
            detection = await best_effort(
                "AI vendor detection", self.detect_with_ai, text, candidates, provider
            )
            ai_match = detection.unwrap_or(None)
            if ai_match:
                return ai_match

        return self.match_names(text, candidates) or VendorMatch.no_match()

    def match_identifiers(self, text: str, candidates: List[Vendor]) -> Optional[VendorMatch]:
        """Find the first vendor whose identifier occurs in the text"""
        text_lower = text.lower()
        for vendor in candidates:
            for identifier in self._identifiers(vendor):
                if identifier.lower() in text_lower:
                    logger.info(f"Vendor {vendor.id} matched on identifier {identifier!r}")
                    return VendorMatch(
                        vendor_id=vendor.id,
                        confidence=self.IDENTIFIER_CONFIDENCE,
                        detected_name=vendor.name,
                        reason=MatchReason.IDENTIFIER
                    )
        return None

    async def detect_with_ai(
        self,
        text: str,
        candidates: List[Vendor],
        provider: ExtractionProvider
    ) -> Optional[VendorMatch]:
        """Ask the extraction service to pick a vendor from the candidates"""
        by_id = {vendor.id: vendor for vendor in candidates}
        vendors_json = json.dumps([
            {'id': v.id, 'name': v.name, 'identifiers': self._identifiers(v)}
            for v in candidates
        ])
        instructions = self.prompt_manager.render('vendor_detection', 'system_prompt')
        user_prompt = self.prompt_manager.render(
            'vendor_detection',
            'user_prompt',
            vendors_json=vendors_json,
            content=text[:self.AI_TEXT_LIMIT]
        )

        result = await provider.extract(text, instructions, user_prompt=user_prompt)
        vendor_id = result.data.get('vendorId')
        confidence = self._as_confidence(result.data.get('confidence'))

        if vendor_id in by_id and confidence > self.AI_ACCEPT_THRESHOLD:
            logger.info(f"Vendor {vendor_id} detected by AI with confidence {confidence:.2f}")
            return VendorMatch(
                vendor_id=vendor_id,
                confidence=confidence,
                detected_name=by_id[vendor_id].name,
                reason=MatchReason.AI
            )
        return None

    def match_names(self, text: str, candidates: List[Vendor]) -> Optional[VendorMatch]:
        """
        Match vendor names against the start of the document

        An exact name match returns immediately. Otherwise multi-word names
        are scored by the fraction of their significant words present and
        the best score above the threshold wins.
        """
        header = text[:self.FUZZY_TEXT_LIMIT].lower()
        best: Optional[Vendor] = None
        best_score = 0.0

        for vendor in candidates:
            name = (vendor.name or '').strip().lower()
            if not name:
                continue
            if name in header:
                return VendorMatch(
                    vendor_id=vendor.id,
                    confidence=self.EXACT_NAME_CONFIDENCE,
                    detected_name=vendor.name,
                    reason=MatchReason.FUZZY
                )

            words = name.split()
            if len(words) < 2:
                continue
            significant = [w for w in words if len(w) > self.MIN_WORD_LENGTH]
            if not significant:
                continue
            score = sum(1 for w in significant if w in header) / len(significant)
            if score > self.PARTIAL_MATCH_THRESHOLD and score > best_score:
                best, best_score = vendor, score

        if best is None:
            return None
        return VendorMatch(
            vendor_id=best.id,
            confidence=best_score * self.PARTIAL_MATCH_WEIGHT,
            detected_name=best.name,
            reason=MatchReason.FUZZY
        )

    @staticmethod
    def _identifiers(vendor: Vendor) -> List[str]:
        raw: Any = vendor.identifiers
        if isinstance(raw, str):
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                parsed = None
            raw = parsed if isinstance(parsed, list) else [raw]
        if not isinstance(raw, list):
            return []
        return [str(i).strip() for i in raw if i is not None and str(i).strip()]

    @staticmethod
    def _as_confidence(value: Any) -> float:
        try:
            return max(0.0, min(1.0, float(value)))
        except (TypeError, ValueError):
            return 0.0
