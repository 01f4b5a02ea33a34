"""
Treatment Aggregator

For one (disease, plant) pair, queries the three knowledge sources in
parallel:
- chemical products matching disease + crop
- biological methods matching disease
- cultural practices matching crop

A source that fails or times out counts as empty. Empty groups are omitted.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.config import (
    TREATMENT_LOOKUP_TIMEOUT,
    MAX_CHEMICAL_PRODUCTS,
    MAX_BIOLOGICAL_METHODS,
    MAX_CULTURAL_PRACTICES,
)
from app.services.analysis import TREATMENT_TITLES, TreatmentGroup, TreatmentKind
from app.utils.text_processing import (
    extract_crop_keywords,
    extract_disease_keywords,
    matches_any_keyword,
)

logger = logging.getLogger(__name__)

# Rows pulled per table before keyword filtering
KNOWLEDGE_SCAN_LIMIT = 500

PRIORITY_ORDER = {"High": 1, "Medium": 2, "Low": 3}

CANONICAL_ORDER = (TreatmentKind.CHEMICAL, TreatmentKind.BIOLOGICAL, TreatmentKind.CULTURAL)


# ============================================================================#
# Row formatters (Supabase snake_case -> API camelCase)
# ============================================================================#

def format_product_item(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": row.get("name"),
        "activeIngredient": row.get("active_ingredient"),
        "manufacturer": row.get("manufacturer"),
        "targetDiseases": row.get("target_diseases") or [],
        "targetCrops": row.get("target_crops") or [],
        "dosage": row.get("dosage"),
        "usage": row.get("usage"),
        "imageUrl": row.get("image_url"),
        "frequency": row.get("frequency"),
        "isolationPeriod": row.get("isolation_period"),
        "precautions": row.get("precautions") or [],
        "price": row.get("price"),
        "source": row.get("source"),
    }


def format_biological_item(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": row.get("name"),
        "description": row.get("steps"),
        "materials": row.get("materials"),
        "timeframe": row.get("timeframe"),
        "effectiveness": row.get("effectiveness"),
        "steps": row.get("steps"),
        "source": row.get("source"),
    }


def format_cultural_item(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": row.get("action") or row.get("name"),
        "description": row.get("description"),
        "priority": row.get("priority"),
        "source": row.get("source"),
    }


def build_additional_info(groups: List[TreatmentGroup]) -> List[Dict[str, Any]]:
    """Product detail cards for the chemical group of one disease"""
    cards = []
    for group in groups:
        if group.kind != TreatmentKind.CHEMICAL:
            continue
        for product in group.items:
            targets = ", ".join(product.get("targetDiseases") or [])
            cards.append({
                "type": "product",
                "title": product.get("name"),
                "summary": f"{product.get('activeIngredient') or ''} - Dùng cho {targets}".strip(),
                "imageUrl": product.get("imageUrl") or "/images/products/placeholder.png",
                "details": {
                    "usage": product.get("usage"),
                    "dosage": product.get("dosage"),
                    "frequency": product.get("frequency") or "Theo chỉ dẫn trên nhãn",
                    "precautions": product.get("precautions") or [],
                    "isolation": product.get("isolationPeriod") or "Xem hướng dẫn trên bao bì",
                    "source": product.get("source"),
                },
            })
    return cards


# ============================================================================#
# Knowledge base (Supabase)
# ============================================================================#

class TreatmentKnowledgeBase:
    """Read-only lookups against the verified treatment tables"""

    def __init__(self, supabase_client=None):
        self.supabase = supabase_client

    async def find_chemical_products(self, disease_name: str, crop_name: Optional[str]) -> List[Dict[str, Any]]:
        disease_keywords = extract_disease_keywords(disease_name) or [disease_name.lower()]
        crop_keywords = extract_crop_keywords(crop_name)
        if not crop_keywords and crop_name:
            crop_keywords = [crop_name.lower()]
        logger.info(f"🔍 Disease keywords: {disease_keywords}, crop keywords: {crop_keywords}")

        rows = await self._verified_rows("products")
        matched = [
            row for row in rows
            if matches_any_keyword(row.get("target_diseases"), disease_keywords)
            and matches_any_keyword(row.get("target_crops"), crop_keywords)
        ][:MAX_CHEMICAL_PRODUCTS]
        logger.info(f"📦 Found {len(matched)} products for disease: '{disease_name}', crop: '{crop_name}'")
        return [format_product_item(row) for row in matched]

    async def find_biological_methods(self, disease_name: str) -> List[Dict[str, Any]]:
        keywords = extract_disease_keywords(disease_name) or [disease_name.lower()]
        rows = await self._verified_rows("biological_methods")
        matched = [
            row for row in rows
            if matches_any_keyword(row.get("target_diseases"), keywords)
        ][:MAX_BIOLOGICAL_METHODS]
        logger.info(f"🌿 Found {len(matched)} biological methods for disease: '{disease_name}'")
        return [format_biological_item(row) for row in matched]

    async def find_cultural_practices(self, crop_name: Optional[str]) -> List[Dict[str, Any]]:
        keywords = extract_crop_keywords(crop_name)
        if not keywords and crop_name:
            keywords = [crop_name.lower()]
        rows = await self._verified_rows("cultural_practices")
        matched = [
            row for row in rows
            if matches_any_keyword(row.get("applicable_to"), keywords)
        ][:MAX_CULTURAL_PRACTICES]
        matched.sort(key=lambda row: PRIORITY_ORDER.get(row.get("priority"), 4))
        logger.info(f"🌾 Found {len(matched)} cultural practices for crop: '{crop_name}'")
        return [format_cultural_item(row) for row in matched]

    async def _verified_rows(self, table: str) -> List[Dict[str, Any]]:
        if not self.supabase:
            return []

        def _query():
            return self.supabase.table(table)\
                .select('*')\
                .eq('verified', True)\
                .limit(KNOWLEDGE_SCAN_LIMIT)\
                .execute()

        # supabase-py is synchronous; keep the event loop free for the sibling lookups
        result = await asyncio.to_thread(_query)
        return result.data or []


# ============================================================================#
# Aggregator
# ============================================================================#

GroupCallback = Callable[[TreatmentGroup], None]


class TreatmentAggregator:

    def __init__(self, knowledge_base: TreatmentKnowledgeBase, timeout: float = TREATMENT_LOOKUP_TIMEOUT):
        self.knowledge_base = knowledge_base
        self.timeout = timeout

    async def aggregate(
        self,
        disease_name: str,
        plant_name: Optional[str],
        on_group: Optional[GroupCallback] = None,
    ) -> List[TreatmentGroup]:
        """
        Run the three lookups concurrently and join them.

        Args:
            disease_name: localized disease name
            plant_name: localized plant name (may be None)
            on_group: called once per non-empty group, in completion order

        Returns:
            Non-empty groups in chemical, biological, cultural order
        """
        lookups = {
            TreatmentKind.CHEMICAL: self.knowledge_base.find_chemical_products(disease_name, plant_name),
            TreatmentKind.BIOLOGICAL: self.knowledge_base.find_biological_methods(disease_name),
            TreatmentKind.CULTURAL: self.knowledge_base.find_cultural_practices(plant_name),
        }
        collected: Dict[TreatmentKind, TreatmentGroup] = {}

        async def run(kind: TreatmentKind, lookup: Awaitable[List[Dict[str, Any]]]):
            items = await self._guarded(kind, disease_name, lookup)
            if not items:
                return
            group = TreatmentGroup(kind=kind, title=TREATMENT_TITLES[kind], items=tuple(items))
            collected[kind] = group
            if on_group:
                on_group(group)

        await asyncio.gather(*(run(kind, lookup) for kind, lookup in lookups.items()))

        groups = [collected[kind] for kind in CANONICAL_ORDER if kind in collected]
        logger.info(f"✅ Found {len(groups)} treatment types for '{disease_name}'")
        return groups

    async def _guarded(self, kind: TreatmentKind, disease_name: str, lookup) -> List[Dict[str, Any]]:
        try:
            items = await asyncio.wait_for(lookup, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ {kind.value} lookup timed out for '{disease_name}'")
            return []
        except Exception as e:
            logger.error(f"❌ {kind.value} lookup failed for '{disease_name}': {e}")
            return []
        return list(items or [])
