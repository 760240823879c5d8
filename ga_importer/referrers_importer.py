"""
Imports referrer reports: campaigns, search engines/keywords, websites,
social networks, the referrer type summary and the numeric distinct counts
the host shows next to them.
"""
import logging
from datetime import date
from typing import List, Optional, Tuple
from urllib.parse import ParseResult, urlparse

from .config import get_referrer_row_limits
from .data_table import DataTable, add_row_to_subtable, add_row_to_table
from .metrics import INDEX_NB_VISITS, get_conversion_aware_visit_metrics
from .record_importer import ImporterContext, NamedRecord
from .translations import translate

logger = logging.getLogger(__name__)

CAMPAIGNS_RECORD_NAME = 'Referrers_keywordByCampaign'
KEYWORDS_RECORD_NAME = 'Referrers_keywordBySearchEngine'
SEARCH_ENGINES_RECORD_NAME = 'Referrers_searchEngineByKeyword'
WEBSITES_RECORD_NAME = 'Referrers_urlByWebsite'
SOCIAL_NETWORKS_RECORD_NAME = 'Referrers_urlBySocialNetwork'
REFERRER_TYPE_RECORD_NAME = 'Referrers_type'

DISTINCT_SEARCH_ENGINES_RECORD_NAME = 'Referrers_distinctSearchEngines'
DISTINCT_SOCIAL_NETWORKS_RECORD_NAME = 'Referrers_distinctSocialNetworks'
DISTINCT_KEYWORDS_RECORD_NAME = 'Referrers_distinctKeywords'
DISTINCT_CAMPAIGNS_RECORD_NAME = 'Referrers_distinctCampaigns'
DISTINCT_WEBSITES_RECORD_NAME = 'Referrers_distinctWebsites'
DISTINCT_WEBSITES_URLS_RECORD_NAME = 'Referrers_distinctWebsitesUrls'

# referrer type labels as stored by the host
REFERRER_TYPE_DIRECT_ENTRY = 1
REFERRER_TYPE_SEARCH_ENGINE = 2
REFERRER_TYPE_WEBSITE = 3
REFERRER_TYPE_CAMPAIGN = 6
REFERRER_TYPE_SOCIAL_NETWORK = 7

DIRECT_ENTRY_REFERRER = '(direct)'


class ReferrersRecordImporter:
    plugin_name = 'Referrers'

    def __init__(self, context: ImporterContext):
        self.context = context
        self.max_rows, self.max_rows_subtable = get_referrer_row_limits(context.config)
        self.column_to_sort_by = INDEX_NB_VISITS

    def import_records(self, day: date) -> List[NamedRecord]:
        # referrer types are collected from every query of the day
        referrer_type_record = DataTable()
        blobs = []
        # counted before truncation
        distinct_counts = []

        keyword_by_campaign = self.get_keyword_by_campaign(day, referrer_type_record)
        distinct_counts.append((DISTINCT_CAMPAIGNS_RECORD_NAME, keyword_by_campaign.get_row_count()))
        blobs.append((CAMPAIGNS_RECORD_NAME, self._serialize(keyword_by_campaign)))

        keyword_by_search_engine, search_engine_by_keyword = \
            self.get_keywords_and_search_engine_records(day, referrer_type_record)
        distinct_counts.append((DISTINCT_KEYWORDS_RECORD_NAME, keyword_by_search_engine.get_row_count()))
        distinct_counts.append((DISTINCT_SEARCH_ENGINES_RECORD_NAME, search_engine_by_keyword.get_row_count()))
        blobs.append((KEYWORDS_RECORD_NAME, self._serialize(keyword_by_search_engine)))
        blobs.append((SEARCH_ENGINES_RECORD_NAME, self._serialize(search_engine_by_keyword)))

        url_by_website, url_by_social_network = self.get_url_by_website(day, referrer_type_record)
        distinct_counts.append((DISTINCT_WEBSITES_RECORD_NAME, url_by_website.get_row_count()))
        distinct_counts.append((DISTINCT_WEBSITES_URLS_RECORD_NAME, count_subtable_rows(url_by_website)))
        distinct_counts.append((DISTINCT_SOCIAL_NETWORKS_RECORD_NAME, url_by_social_network.get_row_count()))
        blobs.append((WEBSITES_RECORD_NAME, self._serialize(url_by_website)))
        blobs.append((SOCIAL_NETWORKS_RECORD_NAME, self._serialize(url_by_social_network)))

        blobs.append((REFERRER_TYPE_RECORD_NAME, self._serialize(referrer_type_record)))
        return blobs + distinct_counts

    def _serialize(self, table: DataTable) -> str:
        blob = table.get_serialized(self.max_rows, self.max_rows_subtable, self.column_to_sort_by)
        table.clear()
        return blob

    def _query(self, day: date, dimensions: List[str]) -> DataTable:
        return self.context.query_service.query(day, dimensions, get_conversion_aware_visit_metrics())

    def get_keyword_by_campaign(self, day: date, referrer_type_record: DataTable) -> DataTable:
        table = self._query(day, ['ga:campaign', 'ga:keyword'])

        keyword_by_campaign = DataTable()
        for row in table:
            campaign = row.get_metadata('ga:campaign')
            if not campaign:
                continue

            keyword = row.get_metadata('ga:keyword')

            top_level_row = add_row_to_table(keyword_by_campaign, row, campaign)
            add_row_to_subtable(top_level_row, row, keyword)

            add_row_to_table(referrer_type_record, row, REFERRER_TYPE_CAMPAIGN)

        table.clear()
        return keyword_by_campaign

    def get_keywords_and_search_engine_records(self, day: date,
                                               referrer_type_record: DataTable) -> Tuple[DataTable, DataTable]:
        table = self._query(day, ['ga:source', 'ga:medium', 'ga:keyword'])
        mapper = self.context.search_engine_mapper

        keyword_by_search_engine = DataTable()
        search_engine_by_keyword = DataTable()
        for row in table:
            source = row.get_metadata('ga:source')
            medium = row.get_metadata('ga:medium')
            keyword = row.get_metadata('ga:keyword')

            search_engine_name: Optional[str] = None
            if medium == 'referral':
                search_engine_name = mapper.map_referral_to_search_engine(source)
            elif medium == 'organic':
                search_engine_name = mapper.map_source_to_search_engine(source)

            if not search_engine_name:
                continue

            if not keyword:
                keyword = translate('GoogleAnalyticsImporter_NotProvided')

            top_level_row = add_row_to_table(keyword_by_search_engine, row, keyword)
            add_row_to_subtable(top_level_row, row, search_engine_name)

            top_level_row = add_row_to_table(search_engine_by_keyword, row, search_engine_name)
            add_row_to_subtable(top_level_row, row, keyword)

            add_row_to_table(referrer_type_record, row, REFERRER_TYPE_SEARCH_ENGINE)

        table.clear()
        return keyword_by_search_engine, search_engine_by_keyword

    def get_url_by_website(self, day: date, referrer_type_record: DataTable) -> Tuple[DataTable, DataTable]:
        table = self._query(day, ['ga:fullReferrer'])
        social = self.context.social_networks

        url_by_website = DataTable()
        url_by_social_network = DataTable()
        for row in table:
            full_referrer = row.get_metadata('ga:fullReferrer') or ''

            if full_referrer == DIRECT_ENTRY_REFERRER:
                add_row_to_table(referrer_type_record, row, REFERRER_TYPE_DIRECT_ENTRY)
                continue

            # GA referrers have no protocol
            referrer_url = 'http://' + full_referrer

            # host-only values (search engines and the like) are not website referrers
            if not referrer_url.endswith('/'):
                continue

            social_network = social.get_social_network_from_domain(referrer_url)
            if social_network and social_network != social.unknown:
                top_level_row = add_row_to_table(url_by_social_network, row, social_network)
                add_row_to_subtable(top_level_row, row, referrer_url)

                add_row_to_table(referrer_type_record, row, REFERRER_TYPE_SOCIAL_NETWORK)
            else:
                parsed_url = urlparse(referrer_url)
                host = get_url_host(parsed_url)
                path = parsed_url.path or None

                top_level_row = add_row_to_table(url_by_website, row, host)
                add_row_to_subtable(top_level_row, row, path)

                add_row_to_table(referrer_type_record, row, REFERRER_TYPE_WEBSITE)

        table.clear()
        return url_by_website, url_by_social_network


def get_url_host(parsed_url: ParseResult) -> Optional[str]:
    """
    Host of a parsed URL as written, without credentials or port.
    ParseResult.hostname would lowercase it.
    """
    host = parsed_url.netloc.rpartition('@')[2]
    if host.startswith('['):
        host = host[:host.find(']') + 1]
    else:
        host = host.partition(':')[0]
    return host or None


def count_subtable_rows(table: DataTable) -> int:
    return sum(row.subtable.get_row_count() for row in table if row.subtable is not None)
