"""
Tests for share-of-voice calculation
"""

import pytest

from sovtrack.services import MentionExtractor, ShareOfVoiceCalculator, compute_share_of_voice
from sovtrack.services.sov_calculator import candidate_names


class TestComputeShareOfVoice:
    """Pure aggregation, no database"""

    def test_six_four_split(self):
        companies = {i: ["Acme"] for i in range(6)}
        companies.update({i: ["Acme Rival"] for i in range(6, 10)})

        result = compute_share_of_voice("Acme", ["Acme Rival"], companies, total_responses=10)

        assert result.mention_counts == {"Acme": 6, "Acme Rival": 4}
        assert result.total_mentions == 10
        assert result.share_of_voice == {"Acme": 60.0, "Acme Rival": 40.0}
        assert result.brand_share == 60.0
        assert result.coverage == 0.6
        assert result.ai_visibility_score == 60.0

    def test_no_mentions_all_zero(self):
        result = compute_share_of_voice("Acme", ["A", "B"], {1: [], 2: []}, total_responses=2)

        assert result.total_mentions == 0
        assert result.share_of_voice == {"Acme": 0.0, "A": 0.0, "B": 0.0}
        assert result.brand_share == 0.0
        assert result.ai_visibility_score == 0.0

    def test_no_responses(self):
        result = compute_share_of_voice("Acme", ["A"], {}, total_responses=0)
        assert result.coverage == 0.0
        assert result.ai_visibility_score == 0.0

    @pytest.mark.parametrize("companies", [
        {1: ["Acme", "A"], 2: ["B"], 3: ["A", "B", "C"]},
        {1: ["A"], 2: ["A"], 3: ["B"]},
        {1: ["Acme", "A", "B", "C"]},
        {1: ["C"], 2: ["C"], 3: ["C"], 4: ["Acme"], 5: ["B"], 6: ["A"], 7: ["A"]},
    ])
    def test_shares_sum_to_hundred(self, companies):
        result = compute_share_of_voice("Acme", ["A", "B", "C"], companies, total_responses=len(companies))
        assert abs(sum(result.share_of_voice.values()) - 100.0) < 0.05

    def test_counts_are_per_response(self):
        companies = {1: ["Acme", "Acme", "acme"], 2: ["Acme"]}
        result = compute_share_of_voice("Acme", [], companies, total_responses=2)
        assert result.mention_counts == {"Acme": 2}

    def test_unknown_names_ignored(self):
        companies = {1: ["Acme", "Stranger Inc"], 2: ["Rival"]}
        result = compute_share_of_voice("Acme", ["Rival"], companies, total_responses=2)
        assert result.mention_counts == {"Acme": 1, "Rival": 1}
        assert result.total_mentions == 2

    def test_visibility_rewards_coverage(self):
        # Same brand share, wider coverage
        narrow = compute_share_of_voice("Acme", ["R"], {1: ["Acme"], 2: ["R"], 3: [], 4: []}, total_responses=4)
        wide = compute_share_of_voice("Acme", ["R"], {1: ["Acme"], 2: ["Acme"], 3: ["R"], 4: ["R"]}, total_responses=4)

        assert narrow.brand_share == wide.brand_share == 50.0
        assert wide.ai_visibility_score > narrow.ai_visibility_score

    def test_custom_weights(self):
        result = compute_share_of_voice(
            "Acme", ["R"], {1: ["Acme"], 2: ["R"]}, total_responses=2,
            share_weight=1.0, coverage_weight=0.0,
        )
        assert result.ai_visibility_score == 50.0

    def test_coverage_counts_unanswered_prompts(self):
        result = compute_share_of_voice(
            "Acme", ["R"], {1: ["Acme"], 2: ["R"]}, total_responses=2, total_prompts=4,
        )
        assert result.coverage == 0.25
        assert result.ai_visibility_score == 35.0

    def test_coverage_defaults_to_responses(self):
        result = compute_share_of_voice("Acme", ["R"], {1: ["Acme"], 2: ["R"]}, total_responses=2)
        assert result.coverage == 0.5
        assert result.ai_visibility_score == 50.0

    def test_candidate_names(self):
        assert candidate_names("Acme", ["Rival", "ACME", "", "rival", " Other "]) == ["Acme", "Rival", "Other"]


class TestShareOfVoiceCalculator:

    @pytest.mark.asyncio
    async def test_six_four_split_end_to_end(self, db, brand, category, make_response):
        responses = []
        for i in range(6):
            responses.append(await make_response(f"Acme is the pick, take {i}. Acme again.", session_id="s1"))
        for i in range(4):
            responses.append(await make_response(f"Acme Rival wins round {i}.", session_id="s1"))

        extractor = MentionExtractor(db)
        for response in responses:
            await extractor.extract_mentions(response, brand, ["Acme Rival"])

        record = await ShareOfVoiceCalculator(db).calculate_sov(brand, ["Acme Rival"], responses, session_id="s1")

        assert record.mention_counts == {"Acme": 6, "Acme Rival": 4}
        assert record.total_mentions == 10
        assert record.target_mentions == 6
        assert record.total_responses == 10
        assert record.share_of_voice == {"Acme": 60.0, "Acme Rival": 40.0}
        assert record.brand_share == 60.0
        assert record.analysis_session_id == "s1"
        assert record.user_id == "user-1"

    @pytest.mark.asyncio
    async def test_only_session_mentions_counted(self, db, brand, make_response):
        mine = await make_response("Acme rules.", session_id="s1")
        theirs = await make_response("Widget World rules.", session_id="s2")
        extractor = MentionExtractor(db)
        await extractor.extract_mentions(mine, brand, brand.competitors)
        await extractor.extract_mentions(theirs, brand, brand.competitors)

        record = await ShareOfVoiceCalculator(db).calculate_sov(
            brand, brand.competitors, [mine, theirs], session_id="s1"
        )
        assert record.mention_counts == {"Acme": 1, "Acme Rival": 0, "Widget World": 0}

    @pytest.mark.asyncio
    async def test_legacy_run_without_session(self, db, brand, make_response):
        response = await make_response("Acme is great, Acme Rival too.")
        await MentionExtractor(db).extract_mentions(response, brand, brand.competitors)

        record = await ShareOfVoiceCalculator(db).calculate_sov(brand, brand.competitors, [response])

        assert record.total_mentions == 2
        assert record.mention_counts == {"Acme": 1, "Acme Rival": 1, "Widget World": 0}
        assert record.share_of_voice["Acme"] == 50.0
        assert record.analysis_session_id is None

    @pytest.mark.asyncio
    async def test_failed_prompts_lower_coverage(self, db, brand, make_response):
        response = await make_response("Acme rules.", session_id="s1")
        await MentionExtractor(db).extract_mentions(response, brand, brand.competitors)

        record = await ShareOfVoiceCalculator(db).calculate_sov(
            brand, brand.competitors, [response], session_id="s1", total_prompts=2,
        )
        assert record.brand_share == 100.0
        assert record.ai_visibility_score == 70.0

    @pytest.mark.asyncio
    async def test_replaces_previous_record(self, db, brand, make_response):
        response = await make_response("Acme rules.", session_id="s1")
        await MentionExtractor(db).extract_mentions(response, brand, brand.competitors)
        calculator = ShareOfVoiceCalculator(db)

        await calculator.calculate_sov(brand, brand.competitors, [response], session_id="s1")
        latest = await calculator.calculate_sov(brand, brand.competitors, [response], session_id="s1")

        records = await calculator.records_for_brand(brand.id)
        assert [r.id for r in records] == [latest.id]

    @pytest.mark.asyncio
    async def test_preserves_old_records(self, db, brand, make_response):
        response = await make_response("Acme rules.", session_id="s1")
        await MentionExtractor(db).extract_mentions(response, brand, brand.competitors)
        calculator = ShareOfVoiceCalculator(db)

        first = await calculator.calculate_sov(brand, brand.competitors, [response], session_id="s1")
        second = await calculator.calculate_sov(
            brand, brand.competitors, [response], session_id="s1", preserve_old_records=True
        )

        records = await calculator.records_for_brand(brand.id)
        assert {r.id for r in records} == {first.id, second.id}
        assert (await calculator.latest_for_session("s1")) is not None
        assert (await calculator.latest_for_brand(brand.id)) is not None

    @pytest.mark.asyncio
    async def test_per_category_mode(self, db, brand, category, make_response):
        response = await make_response("Acme rules.", session_id="s1")
        await MentionExtractor(db).extract_mentions(response, brand, brand.competitors)

        record = await ShareOfVoiceCalculator(db).calculate_sov(
            brand, brand.competitors, [response], category_id=category.id, session_id="s1"
        )
        assert record.category_id == category.id
        assert record.total_responses == 1

    @pytest.mark.asyncio
    async def test_no_responses(self, db, brand):
        record = await ShareOfVoiceCalculator(db).calculate_sov(brand, brand.competitors, [], session_id="s1")

        assert record.total_mentions == 0
        assert set(record.share_of_voice.values()) == {0.0}
        assert record.ai_visibility_score == 0.0
