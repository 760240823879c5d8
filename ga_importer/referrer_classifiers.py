"""
Lookup tables used to classify GA referrers: search engines and social networks.
"""
from typing import Dict, Optional
from urllib.parse import urlparse

from .translations import translate

# GA 'ga:source' values for organic traffic -> search engine name
SOURCE_TO_SEARCH_ENGINE = {
    'google': 'Google',
    'bing': 'Bing',
    'yahoo': 'Yahoo!',
    'yandex': 'Yandex',
    'baidu': 'Baidu',
    'duckduckgo': 'DuckDuckGo',
    'ask': 'Ask',
    'aol': 'AOL',
    'ecosia': 'Ecosia',
    'naver': 'Naver',
    'seznam': 'Seznam',
    'qwant': 'Qwant',
    'sogou': 'Sogou',
    'so.com': '360search',
    'daum': 'Daum',
    'mail.ru': 'Mailru',
    'startpage': 'StartPage',
}

# Referral hosts that are really search engines
SEARCH_ENGINE_DOMAINS = {
    'google': 'Google',
    'bing.com': 'Bing',
    'search.yahoo.com': 'Yahoo!',
    'yandex': 'Yandex',
    'baidu.com': 'Baidu',
    'duckduckgo.com': 'DuckDuckGo',
    'ecosia.org': 'Ecosia',
    'search.naver.com': 'Naver',
    'search.seznam.cz': 'Seznam',
    'qwant.com': 'Qwant',
    'startpage.com': 'StartPage',
}

SOCIAL_NETWORK_DOMAINS = {
    'facebook.com': 'Facebook',
    'fb.me': 'Facebook',
    'twitter.com': 'Twitter',
    't.co': 'Twitter',
    'x.com': 'Twitter',
    'linkedin.com': 'LinkedIn',
    'lnkd.in': 'LinkedIn',
    'instagram.com': 'Instagram',
    'pinterest.com': 'Pinterest',
    'reddit.com': 'reddit',
    'youtube.com': 'YouTube',
    'vk.com': 'Vkontakte',
    'ok.ru': 'Odnoklassniki',
    'tumblr.com': 'tumblr',
    'xing.com': 'XING',
    'news.ycombinator.com': 'Hacker News',
    'github.com': 'GitHub',
    'stackoverflow.com': 'StackOverflow',
    'weibo.com': 'Sina Weibo',
    'tiktok.com': 'TikTok',
}


def _match_domain(host: str, domains: Dict[str, str]) -> Optional[str]:
    host = host.lower()
    if host.startswith('www.'):
        host = host[4:]
    for domain, name in domains.items():
        if '.' not in domain:
            # bare brand, e.g. 'google' matches google.com, google.co.uk, ...
            if host == domain or host.startswith(domain + '.') or ('.' + domain + '.') in host:
                return name
        elif host == domain or host.endswith('.' + domain):
            return name
    return None


class SearchEngineMapper:
    """
    Maps GA source values to search engine names.
    """

    def __init__(self, source_to_search_engine: Optional[Dict[str, str]] = None,
                 search_engine_domains: Optional[Dict[str, str]] = None):
        self.source_to_search_engine = source_to_search_engine or SOURCE_TO_SEARCH_ENGINE
        self.search_engine_domains = search_engine_domains or SEARCH_ENGINE_DOMAINS

    def map_source_to_search_engine(self, source: str) -> str:
        """Name for an organic source; unknown sources are used as-is."""
        return self.source_to_search_engine.get((source or '').lower(), source)

    def map_referral_to_search_engine(self, source: str) -> Optional[str]:
        """Name for a referral source if its host is a search engine, otherwise None."""
        if not source:
            return None
        return _match_domain(source, self.search_engine_domains)


class SocialNetworkClassifier:

    def __init__(self, domains: Optional[Dict[str, str]] = None):
        self.domains = domains or SOCIAL_NETWORK_DOMAINS

    @property
    def unknown(self) -> str:
        return translate('General_Unknown')

    def get_social_network_from_domain(self, url: str) -> str:
        """
        Social network a referrer URL belongs to, or the translated "Unknown".
        """
        host = urlparse(url).hostname or ''
        return _match_domain(host, self.domains) or self.unknown
