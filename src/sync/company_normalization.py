"""
Company name normalization.

Maps free-text company names to standardized company records, using the
standardized company list and its aliases. Loading runs as a readiness
initializer before any sync fan-out.
"""
from typing import Any, Dict, List, Optional

import structlog

from ..shared.caching.unified_cache import UnifiedCache
from .remote_provider import RemoteDataProvider

logger = structlog.get_logger(__name__)

Record = Dict[str, Any]

COMPANIES_RESOURCE = 'standardized_companies'
ALIASES_RESOURCE = 'company_aliases'


class CompanyNormalizationService:
    """Lookup from company names and aliases to standardized companies."""

    def __init__(self, provider: RemoteDataProvider, cache: Optional[UnifiedCache] = None):
        self.provider = provider
        self.cache = cache
        self._by_name: Dict[str, Record] = {}
        self._by_alias: Dict[str, Record] = {}
        self._by_id: Dict[Any, Record] = {}
        self.is_initialized = False

    async def initialize(self) -> None:
        """Load companies and aliases, preferring cached copies."""
        companies = await self._load(COMPANIES_RESOURCE)
        aliases = await self._load(ALIASES_RESOURCE)
        self._build_lookups(companies, aliases)
        self.is_initialized = True
        logger.info(
            "Company normalization ready",
            companies=len(self._by_id),
            aliases=len(self._by_alias)
        )

    async def _load(self, resource: str) -> List[Record]:
        if self.cache is not None:
            cached = await self.cache.get(resource)
            if cached:
                logger.debug("Loaded from cache", resource=resource, records=len(cached))
                return cached
        return await self.provider.fetch_all(resource)

    def _build_lookups(self, companies: List[Record], aliases: List[Record]) -> None:
        self._by_name.clear()
        self._by_alias.clear()
        self._by_id.clear()

        for company in companies:
            self._by_id[company.get('id')] = company
            name = _key(company.get('name'))
            if name:
                self._by_name[name] = company

        for alias in aliases:
            company = self._by_id.get(alias.get('standardized_company_id'))
            if company is None:
                logger.warning(
                    "Alias references unknown company",
                    alias=alias.get('alias'),
                    company_id=alias.get('standardized_company_id')
                )
                continue
            key = _key(alias.get('alias'))
            if key:
                self._by_alias[key] = company

    def normalize(self, name: Optional[str]) -> Optional[Record]:
        """Standardized company for a name or alias, or None."""
        if not self.is_initialized:
            logger.warning("Company normalization used before initialization")
            return None
        key = _key(name)
        if not key:
            return None
        return self._by_name.get(key) or self._by_alias.get(key)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'initialized': self.is_initialized,
            'companies_count': len(self._by_id),
            'aliases_count': len(self._by_alias),
        }


def _key(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()
