"""
Unit tests for the extraction pipeline and its strategies.
"""
import json

import pytest

from core.normalize import FIELD_PATHS
from pipeline.base import ExtractionStrategy, PageContext
from pipeline.extractor import ExtractionPipeline, ExtractionOutcome
from pipeline.jsonld import StructuredDataStrategy
from pipeline.app_state import EmbeddedStateStrategy, balanced_json, find_job_array
from pipeline.heuristics import DomHeuristicStrategy, extract_job_id

from conftest import FakePage


class CountingStrategy(ExtractionStrategy):
    """Strategy double that records how often it ran."""

    def __init__(self, name, nodes=None, error=None):
        self.name = name
        super().__init__()
        self.nodes = nodes or []
        self.error = error
        self.calls = 0

    async def extract(self, context):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.nodes)


class TestExtractionPipeline:
    """Ordered fallback behaviour."""

    @pytest.mark.asyncio
    async def test_first_nonempty_strategy_wins(self):
        first = CountingStrategy("structured-data", nodes=[{'title': "A"}])
        second = CountingStrategy("embedded-state", nodes=[{'title': "B"}])
        third = CountingStrategy("dom-heuristic", nodes=[{'title': "C"}])
        pipeline = ExtractionPipeline([first, second, third])

        outcome = await pipeline.extract("https://example.com/search", "<html></html>")

        assert outcome.method == "structured-data"
        assert outcome.nodes == [{'title': "A"}]
        assert first.calls == 1
        assert second.calls == 0
        assert third.calls == 0

    @pytest.mark.asyncio
    async def test_falls_through_empty_and_failing_strategies(self):
        first = CountingStrategy("structured-data")
        second = CountingStrategy("embedded-state", error=ValueError("bad state"))
        third = CountingStrategy("dom-heuristic", nodes=[{'title': "C"}])
        pipeline = ExtractionPipeline([first, second, third])

        outcome = await pipeline.extract("https://example.com/search", "<html></html>")

        assert outcome.method == "dom-heuristic"
        assert outcome.attempted == ["structured-data", "embedded-state", "dom-heuristic"]

    @pytest.mark.asyncio
    async def test_all_empty_returns_no_method(self):
        pipeline = ExtractionPipeline([CountingStrategy("a"), CountingStrategy("b")])

        outcome = await pipeline.extract("https://example.com/search", "<html></html>")

        assert outcome.is_empty
        assert outcome.method is None
        assert outcome.to_dict()["attempted"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_default_order(self):
        pipeline = ExtractionPipeline()
        assert [s.name for s in pipeline.strategies] == ["structured-data", "embedded-state", "dom-heuristic"]

    def test_outcome_repr(self):
        assert "structured-data" in repr(ExtractionOutcome([{}], "structured-data"))


class TestStructuredDataStrategy:
    """JSON-LD JobPosting extraction."""

    @pytest.mark.asyncio
    async def test_graph_and_item_list(self):
        html = """
        <script type="application/ld+json">
        {"@graph": [{"@type": "Organization", "name": "X"},
                    {"@type": "JobPosting", "title": "Graph job"}]}
        </script>
        <script type="application/ld+json">
        {"@type": "ItemList", "itemListElement": [
            {"@type": "ListItem", "item": {"@type": "JobPosting", "title": "Listed job"}}
        ]}
        </script>
        <script type="application/ld+json">{ not json</script>
        """
        nodes = await StructuredDataStrategy().extract(PageContext("https://example.com", html))
        assert [n['title'] for n in nodes] == ["Graph job", "Listed job"]

    @pytest.mark.asyncio
    async def test_type_list(self):
        html = '<script type="application/ld+json">{"@type": ["Thing", "JobPosting"], "title": "T"}</script>'
        nodes = await StructuredDataStrategy().extract(PageContext("https://example.com", html))
        assert len(nodes) == 1


class TestEmbeddedStateStrategy:
    """Inline script state extraction."""

    def test_balanced_json_ignores_brackets_in_strings(self):
        text = 'x = {"a": "}{][", "b": [1, {"c": 2}]}; more()'
        start = text.index('{')
        assert json.loads(balanced_json(text, start)) == {"a": "}{][", "b": [1, {"c": 2}]}

    def test_balanced_json_unclosed(self):
        assert balanced_json('{"a": [1, 2', 0) is None

    def test_find_job_array_nested(self):
        data = {"app": {"page": {"results": [{"title": "Deep"}]}}}
        assert find_job_array(data) == [{"title": "Deep"}]

    def test_find_job_array_ignores_non_job_lists(self):
        assert find_job_array({"jobs": [1, 2, 3], "items": [{"name": "no title"}]}) == []

    @pytest.mark.asyncio
    async def test_next_data_payload(self):
        payload = {"props": {"pageProps": {"jobs": [{"title": "Next job", "ciphertext": "~01"}]}}}
        html = f'<script id="__NEXT_DATA__" type="application/json">{json.dumps(payload)}</script>'
        nodes = await EmbeddedStateStrategy().extract(PageContext("https://example.com", html))
        assert nodes == [{"title": "Next job", "ciphertext": "~01"}]

    @pytest.mark.asyncio
    async def test_global_assignment(self):
        state = {"searchResults": {"jobs": [{"title": "Uses } and { in text"}]}}
        html = f"<script>window.__INITIAL_STATE__ = {json.dumps(state)};</script>"
        nodes = await EmbeddedStateStrategy().extract(PageContext("https://example.com", html))
        assert nodes[0]["title"] == "Uses } and { in text"

    @pytest.mark.asyncio
    async def test_raw_fragment(self):
        html = '<script>init({"meta": 1, "jobs": [{"title": "Fragment job"}], "x": foo()})</script>'
        nodes = await EmbeddedStateStrategy().extract(PageContext("https://example.com", html))
        assert nodes == [{"title": "Fragment job"}]

    @pytest.mark.asyncio
    async def test_window_globals_fallback(self):
        page = FakePage(evaluate_result=json.dumps({"data": {"jobs": [{"title": "Live"}]}}))
        nodes = await EmbeddedStateStrategy().extract(PageContext("https://example.com", "<html></html>", page=page))
        assert nodes == [{"title": "Live"}]

    @pytest.mark.asyncio
    async def test_external_scripts_skipped(self):
        html = '<script src="/app.js">{"jobs": [{"title": "nope"}]}</script>'
        assert await EmbeddedStateStrategy().extract(PageContext("https://example.com", html)) == []


class TestDomHeuristicStrategy:
    """Card-based extraction."""

    CARD = """
    <article data-test="JobTile">
      <h2><a href="/jobs/Scraper_~01abc123/?ref=search">Build a scraper</a></h2>
      <p data-test="job-description">{description}</p>
      <span data-test="budget">$1,200</span>
      <span data-test="experience-level">Expert</span>
      <span data-test="duration">1 to 3 months</span>
      <time datetime="2024-05-01T10:00:00Z">2 days ago</time>
      <span data-test="proposals">Proposals: 15 to 20</span>
      <span data-test="client-country">Germany</span>
      <span data-test="payment-verified">Payment verified</span>
      <div class="client-info">Member since 2019</div>
      {skills}
    </article>
    """

    def _card(self, description="Need a crawler", skills=12):
        tokens = "".join(f'<span data-test="token">skill{i}</span>' for i in range(skills))
        return self.CARD.format(description=description, skills=tokens)

    @pytest.mark.asyncio
    async def test_parses_card_fields(self):
        html = f"<html><body>{self._card()}</body></html>"
        nodes = await DomHeuristicStrategy().extract(PageContext("https://www.upwork.com/nx/search/jobs/", html))

        assert len(nodes) == 1
        node = nodes[0]
        assert node['title'] == "Build a scraper"
        assert node['id'] == "01abc123"
        assert node['url'] == "https://www.upwork.com/jobs/Scraper_~01abc123/?ref=search"
        assert node['budget'] == "$1,200"
        assert node['experienceLevel'] == "Expert"
        assert node['duration'] == "1 to 3 months"
        assert node['createdOn'] == "2024-05-01T10:00:00Z"
        assert node['totalApplicants'] == 15
        assert node['client']['location'] == {'country': "Germany"}
        assert node['client']['paymentVerified'] is True
        # Every client field the card yields is one the normalizer maps
        mapped = {p.split(".")[1] for paths in FIELD_PATHS.values() for p in paths if p.startswith("client.")}
        assert set(node['client']) <= mapped | {"paymentVerified"}
        assert len(node['skills']) == 10

    @pytest.mark.asyncio
    async def test_description_truncated(self):
        html = f"<html><body>{self._card(description='x' * 800)}</body></html>"
        nodes = await DomHeuristicStrategy().extract(PageContext("https://example.com", html))
        assert len(nodes[0]['description']) == 500

    @pytest.mark.asyncio
    async def test_no_link_means_no_id(self):
        html = '<article data-test="JobTile"><span data-test="job-title">Linkless</span></article>'
        nodes = await DomHeuristicStrategy().extract(PageContext("https://example.com", html))
        assert nodes == [{'title': "Linkless"}]

    @pytest.mark.asyncio
    async def test_too_many_cards_is_implausible(self):
        cards = "".join('<article class="job-tile"><h3><a href="/jobs/~0a">T</a></h3></article>' for _ in range(5))
        strategy = DomHeuristicStrategy(max_cards=3)
        assert await strategy.extract(PageContext("https://example.com", cards)) == []

    def test_extract_job_id(self):
        assert extract_job_id("/jobs/Title_~0123abcd/") == "0123abcd"
        assert extract_job_id("/jobs/some-slug?x=1") == "some-slug"
        assert extract_job_id("/freelancers/abc") is None
        assert extract_job_id(None) is None
