"""
Contract shared by the per-report importers.

An importer turns one day of GA data into named report records: serialized
tables (str) or numeric values. It does not write them anywhere; the caller
hands them to an archive writer.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Protocol, Tuple, Union

from .ga_client import GoogleAnalyticsQueryService
from .referrer_classifiers import SearchEngineMapper, SocialNetworkClassifier

# (record name, serialized table)
NamedBlob = Tuple[str, str]
# (record name, serialized table or numeric value)
NamedRecord = Tuple[str, Union[str, int, float]]


class RecordImporter(Protocol):
    plugin_name: str

    def import_records(self, day: date) -> List[NamedRecord]:
        ...


@dataclass
class ImporterContext:
    """Everything an importer needs for one site."""
    query_service: GoogleAnalyticsQueryService
    id_site: int
    config: Dict[str, Any]
    search_engine_mapper: SearchEngineMapper = field(default_factory=SearchEngineMapper)
    social_networks: SocialNetworkClassifier = field(default_factory=SocialNetworkClassifier)
