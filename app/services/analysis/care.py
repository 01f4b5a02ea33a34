import asyncio
import logging
import re
from typing import Any, Dict, Optional

from app.config import CARE_TIMEOUT

logger = logging.getLogger(__name__)

# Characters with meaning inside a PostgREST or=() filter
_FILTER_UNSAFE = re.compile(r'[,()%*]')


class PlantCareService:
    """Care instructions for healthy plants, read from the `plants` table"""

    def __init__(self, supabase_client=None, timeout: float = CARE_TIMEOUT):
        self.supabase = supabase_client
        self.timeout = timeout

    async def get_care_info(self, plant_name: Optional[str]) -> Optional[Dict[str, Any]]:
        """Returns None when unknown, unavailable or failed."""
        if not plant_name or not self.supabase:
            return None

        term = _FILTER_UNSAFE.sub(' ', plant_name).strip()
        if not term:
            return None

        def _query():
            return self.supabase.table('plants')\
                .select('name, scientific_name, care_instructions, common_diseases, growth_stages, category')\
                .or_(f"name.ilike.%{term}%,scientific_name.ilike.%{term}%")\
                .limit(1)\
                .execute()

        try:
            result = await asyncio.wait_for(asyncio.to_thread(_query), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ Care lookup timed out for '{plant_name}'")
            return None
        except Exception as e:
            logger.warning(f"⚠️ Failed to get plant care info for '{plant_name}': {e}")
            return None

        if not result.data:
            logger.info(f"No care info for '{plant_name}'")
            return None

        plant = result.data[0]
        return {
            "name": plant.get("name"),
            "scientificName": plant.get("scientific_name"),
            "careInstructions": plant.get("care_instructions"),
            "commonDiseases": plant.get("common_diseases") or [],
            "growthStages": plant.get("growth_stages") or [],
            "category": plant.get("category"),
        }
