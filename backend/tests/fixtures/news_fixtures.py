"""
Builders and canned payloads for the news tests.
"""
import json
from datetime import datetime, timedelta

from company_intel.models.news_article import FetchLayer
from company_intel.services.news.articles import ArticleSourceInfo, CallDiet, ProcessedArticle, RawArticle

NOW = datetime(2026, 3, 10, 12, 0, 0)


def raw_article(headline, url, *, description="", hours_ago=1, source="Reuters", layer=FetchLayer.LAYER1_RSS):
    return RawArticle(
        headline=headline,
        description=description,
        source_url=url,
        source_name=source,
        published_at=NOW - timedelta(hours=hours_ago),
        fetch_layer=layer,
    )


def processed_article(headline, url, *, company=None, person=None, owners=(), **kwargs):
    return ProcessedArticle(
        headline=headline,
        source_url=url,
        source_name=kwargs.pop("source_name", "Reuters"),
        published_at=kwargs.pop("published_at", "2026-03-10"),
        short_summary=kwargs.pop("short_summary", "Short."),
        long_summary=kwargs.pop("long_summary", "Longer summary."),
        sources=kwargs.pop("sources", [ArticleSourceInfo(url, "Reuters", FetchLayer.LAYER1_RSS)]),
        company=company,
        person=person,
        revenue_owners=list(owners),
        **kwargs,
    )


CALL_DIETS = [
    CallDiet(
        revenue_owner_id=1,
        revenue_owner_name="Dana Whitfield",
        companies=[{"name": "Acme Industrial", "ticker": "ACME"}, {"name": "Beta Corp", "ticker": None}],
        people=[{"name": "Jane Doe", "title": "CEO"}],
        topics=["M&A / Deal Activity"],
    ),
    CallDiet(
        revenue_owner_id=2,
        revenue_owner_name="Sam Ortiz",
        companies=[{"name": "acme industrial", "ticker": "ACM"}],
        people=[],
    ),
]


RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Deals</title>
    <item>
      <title>Acme Industrial acquires Beta Corp - Reuters</title>
      <link>https://www.reuters.com/acme-beta</link>
      <description>&lt;p&gt;Acme buys &lt;b&gt;Beta&lt;/b&gt;&lt;/p&gt;</description>
      <pubDate>Tue, 10 Mar 2026 08:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Unrelated fund closes</title>
      <link>https://example.com/fund</link>
      <description>Nothing to see</description>
      <pubDate>Tue, 10 Mar 2026 07:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""


def processing_response(*articles, gaps=()):
    return json.dumps({"articles": list(articles), "coverageGaps": list(gaps)})
