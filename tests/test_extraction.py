"""Parsing of untrusted model output and whitelist-constrained extraction."""
import json

import pytest

from ai.extraction import (
    CHAT_FALLBACK_REPLY,
    ConstrainedExtractor,
    ExtractionVariant,
    ParseFailure,
    ParseSuccess,
    RawItem,
    build_prompt,
    build_whitelist,
    coerce_quantity,
    parse_model_output,
    reconcile_items,
)
from ai.generation import GenerationError
from conftest import FakeGenerator, model_reply
from intent.models import NO_MATCH_SUMMARY, Candidate, ResolutionStatus
from intent.ranking import rank


@pytest.fixture
def candidates(catalog):
    return rank([1.0, 0.0, 0.0], catalog, k=4)


@pytest.fixture
def extractor(catalog, generator):
    return ConstrainedExtractor(generator, catalog)


class TestParseModelOutput:
    def test_plain_json(self):
        parsed = parse_model_output('{"items": [], "summary": "x"}')
        assert parsed == ParseSuccess(payload={"items": [], "summary": "x"})

    def test_fenced_json(self):
        parsed = parse_model_output('```json\n{"summary": "fenced"}\n```')
        assert isinstance(parsed, ParseSuccess)
        assert parsed.payload["summary"] == "fenced"

    def test_json_inside_prose(self):
        text = 'Sure! Here you go: {"summary": "has } brace", "items": []} Hope that helps.'
        parsed = parse_model_output(text)
        assert isinstance(parsed, ParseSuccess)
        assert parsed.payload["summary"] == "has } brace"

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_output(self, text):
        parsed = parse_model_output(text)
        assert isinstance(parsed, ParseFailure)
        assert parsed.reason == "empty output"

    @pytest.mark.parametrize("text", ["sorry, I cannot help", "[1, 2, 3]", '{"unterminated": ', '"just a string"'])
    def test_unusable_output(self, text):
        parsed = parse_model_output(text)
        assert isinstance(parsed, ParseFailure)
        assert parsed.raw_text == text


@pytest.mark.parametrize("value, expected", [
    (3, 3.0),
    (2.5, 2.5),
    ("4", 4.0),
    ("about 200 sq ft", 200.0),
    ("1,200", 1200.0),
    (-3, 0.0),
    ("-5 hours", 0.0),
    ("several", 0.0),
    (None, 0.0),
    (True, 0.0),
    (float("nan"), 0.0),
    (float("inf"), 0.0),
    ([2], 0.0),
])
def test_coerce_quantity(value, expected):
    assert coerce_quantity(value) == expected


def test_raw_item_is_lenient():
    item = RawItem.from_payload({"id": 42, "title": None, "quantity": "3 rooms", "extra": "ignored"})
    assert item.id == "42"
    assert item.title == ""
    assert item.quantity == 3.0

    assert RawItem.from_payload("not a dict") is None
    assert RawItem.from_payload({"id": True}).id is None


def test_prompt_lists_only_candidates(candidates):
    system_prompt, user_prompt = build_prompt(ExtractionVariant.TEXT, "paint my bedroom", candidates[:2])

    assert '"paint-interior-wall"' in system_prompt
    assert '"ceiling-painting"' in system_prompt
    assert "exterior-door" not in system_prompt
    assert "up to 5 services" in system_prompt
    assert user_prompt == 'User text: "paint my bedroom"'


def test_reconcile_takes_titles_and_prices_from_catalog(catalog, candidates):
    whitelist = build_whitelist(candidates)
    raw_items = [
        {"id": "paint-interior-wall", "title": "Made-up Title", "estimatedQuantity": 3},
        {"id": "paint-interior-wall", "title": "duplicate"},
        {"id": "15-amp-outlet"},
    ]

    items, rejected = reconcile_items(
        raw_items,
        whitelist,
        catalog=catalog,
        quantities={"15-amp-outlet": "2"},
    )

    assert rejected == []
    assert [i.id for i in items] == ["paint-interior-wall", "15-amp-outlet"]
    assert items[0].title == "Interior Wall Painting"
    assert items[0].price == 140.0
    assert items[0].estimated_quantity == 3.0
    assert items[1].estimated_quantity == 2.0
    assert items[1].description == "15 Amp Outlet Installation service"


def test_reconcile_rejects_misspelled_id(catalog, candidates):
    items, rejected = reconcile_items(
        [{"id": "paint-interior-walls"}, {"id": "paint-interior-wall"}],
        build_whitelist(candidates),
        catalog=catalog,
    )

    assert [i.id for i in items] == ["paint-interior-wall"]
    assert rejected == ["paint-interior-walls"]


async def test_near_identical_ids_outside_candidates_are_dropped():
    # real services one character away from the candidates
    candidates = [
        Candidate(id="30-amp-outlet", title="30 Amp Outlet Installation", score=0.9, position=0),
        Candidate(id="2-gang-switch", title="2-Gang Switch Installation", score=0.8, position=1),
    ]
    output = json.dumps({"items": [
        {"id": "50-amp-outlet", "estimatedQuantity": 1},
        {"id": "3-gang-switch", "estimatedQuantity": 4},
    ]})
    extractor = ConstrainedExtractor(FakeGenerator(output=output))

    result = await extractor.extract("install a 50 amp outlet and a 3-gang switch", candidates)

    assert result.item_ids == []
    assert result.status is ResolutionStatus.OK


def test_reconcile_respects_max_items(candidates):
    whitelist = build_whitelist(candidates)
    raw_items = [{"id": c.id} for c in candidates]

    items, _ = reconcile_items(raw_items, whitelist, max_items=2)
    assert len(items) == 2


async def test_unparsable_output_returns_empty_result(catalog, candidates):
    extractor = ConstrainedExtractor(FakeGenerator(output="sorry, I cannot help"), catalog)

    result = await extractor.extract("paint my walls", candidates)

    assert result.items == ()
    assert result.summary == ""
    assert result.notes == ""
    assert result.status is ResolutionStatus.DEGRADED
    assert result.raw_output == "sorry, I cannot help"


async def test_ids_outside_whitelist_are_dropped(catalog, candidates):
    output = model_reply("not-in-catalog-123", "paint-interior-wall", "exterior-door")
    extractor = ConstrainedExtractor(FakeGenerator(output=output), catalog)

    result = await extractor.extract("paint and a new door", candidates)

    assert result.item_ids == ["paint-interior-wall", "exterior-door"]
    assert result.status is ResolutionStatus.OK
    assert set(result.item_ids) <= {c.id for c in candidates}


async def test_catalog_id_not_among_candidates_is_dropped(catalog, candidates):
    # present in the catalog but never shown to the model
    output = model_reply("paint-interior-wall", "exterior-door")
    extractor = ConstrainedExtractor(FakeGenerator(output=output), catalog)

    result = await extractor.extract("paint", candidates[:1])

    assert result.item_ids == ["paint-interior-wall"]


async def test_no_candidates_skips_model(catalog, generator):
    extractor = ConstrainedExtractor(generator, catalog)

    result = await extractor.extract("anything", [])

    assert generator.calls == []
    assert result.status is ResolutionStatus.NO_MATCH
    assert result.summary == NO_MATCH_SUMMARY
    assert result.items == ()


async def test_generation_error_degrades(extractor, generator, candidates):
    generator.error = GenerationError("upstream 500")

    result = await extractor.extract("paint", candidates)

    assert result.status is ResolutionStatus.DEGRADED
    assert result.items == ()


async def test_variant_controls_item_limit_and_schema_hint(catalog, candidates):
    output = model_reply(*[c.id for c in candidates])
    generator = FakeGenerator(output=output)
    extractor = ConstrainedExtractor(generator, catalog)

    result = await extractor.extract("photo of a room", candidates, ExtractionVariant.IMAGE)

    assert len(result.items) == 3
    assert generator.calls[0]["schema_hint"] == "image_classification"
    assert generator.calls[0]["user"].startswith("Photo description:")


async def test_alternate_keys_are_accepted(catalog, candidates):
    output = json.dumps({
        "services": [{"id": "ceiling-painting", "quantity": "about 2"}],
        "description": "Ceiling needs paint",
        "recommendation": "Check for leaks first",
    })
    extractor = ConstrainedExtractor(FakeGenerator(output=output), catalog)

    result = await extractor.extract("ceiling", candidates)

    assert result.item_ids == ["ceiling-painting"]
    assert result.items[0].estimated_quantity == 2.0
    assert result.summary == "Ceiling needs paint"
    assert result.notes == "Check for leaks first"


class TestConversation:
    async def test_services_block_is_parsed_and_stripped(self, catalog, candidates):
        output = (
            "You can repaint the wall yourself or book a pro.\n"
            "<<<SERVICES>>>\n"
            + json.dumps({"services": [
                {"id": "paint-interior-wall", "estimatedQuantity": 1},
                {"id": "made-up", "estimatedQuantity": 1},
            ]})
            + "\n<<<END>>>"
        )
        generator = FakeGenerator(output=output)
        extractor = ConstrainedExtractor(generator, catalog)
        messages = [{"role": "user", "content": "my wall looks bad"}]

        reply = await extractor.extract_conversation(messages, candidates)

        assert reply.reply == "You can repaint the wall yourself or book a pro."
        assert reply.result.item_ids == ["paint-interior-wall"]
        assert reply.result.items[0].price == 140.0
        assert generator.calls[0]["messages"] == messages
        assert "<<<SERVICES>>>" in generator.calls[0]["system"]

    async def test_reply_without_block(self, catalog, candidates):
        extractor = ConstrainedExtractor(FakeGenerator(output="Turn off the water main first."), catalog)

        reply = await extractor.extract_conversation([{"role": "user", "content": "leak!"}], candidates, emergency=True)

        assert reply.reply == "Turn off the water main first."
        assert reply.result.items == ()
        assert reply.result.status is ResolutionStatus.OK

    async def test_emergency_prompt(self, catalog, candidates, generator):
        extractor = ConstrainedExtractor(generator, catalog)

        await extractor.extract_conversation([{"role": "user", "content": "flood"}], candidates, emergency=True)

        assert "emergency" in generator.calls[0]["system"]

    async def test_generation_error_falls_back(self, catalog, candidates, generator):
        generator.error = GenerationError("boom")
        extractor = ConstrainedExtractor(generator, catalog)

        reply = await extractor.extract_conversation([{"role": "user", "content": "hi"}], candidates)

        assert reply.reply == CHAT_FALLBACK_REPLY
        assert reply.result.status is ResolutionStatus.DEGRADED
