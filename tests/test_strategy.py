from brandprobe.models import BrandMention, CitationSource, EngineResponse
from brandprobe.strategy import ActionType, SessionFindings, build_action_items


def mention(brand: str, response_id: str, *, sentiment: int = 0, rank: int | None = None,
            strength: str | None = None, sarcastic: bool = False) -> BrandMention:
    return BrandMention(
        response_id=response_id,
        brand_name=brand,
        sentiment_score=sentiment,
        rank_position=rank,
        recommendation_strength=strength,
        is_sarcastic=sarcastic,
    )


def sources(*types: str) -> list[CitationSource]:
    return [
        CitationSource(response_id="r1", url=f"https://example.com/{i}", domain="example.com", source_type=t)
        for i, t in enumerate(types)
    ]


def findings(mentions, citations, reliability=(20, 20)) -> SessionFindings:
    responses = [EngineResponse(id=f"r{i}", reliability_score=s) for i, s in enumerate(reliability, start=1)]
    return SessionFindings.collect("Acme", ["Globex"], responses, mentions, citations)


def action_types(items) -> list[str]:
    return [item["action_type"] for item in items]


def test_healthy_session_needs_no_actions() -> None:
    result = findings(
        [
            mention("Acme", "r1", sentiment=80, rank=1, strength="strong_positive"),
            mention("Acme", "r2", sentiment=80, rank=1, strength="strong_positive"),
            mention("Globex", "r1", sentiment=40, rank=2),
        ],
        sources("video", "forum", "media", "official", "unknown"),
    )

    assert result.coverage == 1.0
    assert result.trust_score() == 90
    assert build_action_items(result) == []


def test_empty_session_flags_source_and_trust_gaps() -> None:
    items = build_action_items(findings([], []))

    assert action_types(items) == [
        ActionType.VIDEO_CONTENT_GAP.value,
        ActionType.THIRD_PARTY_REVIEW_GAP.value,
        ActionType.TRUST_SIGNAL_GAP.value,
    ]
    assert all(item["priority"] == "high" for item in items)


def test_outranked_brand_gets_structure_action() -> None:
    result = findings(
        [
            mention("Acme", "r1", sentiment=80, rank=3, strength="strong_positive"),
            mention("Acme", "r2", sentiment=80, rank=3, strength="strong_positive"),
            mention("Globex", "r1", rank=1),
            mention("Globex", "r2", rank=2),
        ],
        sources("video", "forum"),
    )

    items = build_action_items(result)

    assert action_types(items) == [ActionType.CONTENT_STRUCTURE.value]
    assert items[0]["priority"] == "high"
    assert items[0]["evidence"]["outranked_by"] == ["Globex"]


def test_low_coverage_is_a_medium_structure_action() -> None:
    result = findings(
        [mention("Acme", "r1", sentiment=90, rank=1, strength="strong_positive")],
        sources("video", "media"),
        reliability=(20, 20, 20),
    )

    items = build_action_items(result)

    assert action_types(items) == [ActionType.CONTENT_STRUCTURE.value]
    assert items[0]["priority"] == "medium"
    assert items[0]["evidence"]["coverage"] == 0.333


def test_risky_or_sarcastic_answers_need_trust_work() -> None:
    good = [
        mention("Acme", "r1", sentiment=80, rank=1, strength="strong_positive"),
        mention("Acme", "r2", sentiment=80, rank=1, strength="strong_positive"),
    ]

    risky = build_action_items(findings(good, sources("video", "forum"), reliability=(75, 65)))
    assert action_types(risky) == [ActionType.TRUST_SIGNAL_GAP.value]
    assert risky[0]["priority"] == "medium"
    assert risky[0]["evidence"]["average_reliability_risk"] == 70.0

    good[0].is_sarcastic = True
    sarcastic = build_action_items(findings(good, sources("video", "forum")))
    assert sarcastic[0]["evidence"]["sarcastic_mentions"] == 1
    assert sarcastic[0]["priority"] == "high"


def test_low_video_share_is_medium_priority() -> None:
    result = findings(
        [
            mention("Acme", "r1", sentiment=80, rank=1, strength="strong_positive"),
            mention("Acme", "r2", sentiment=80, rank=1, strength="strong_positive"),
        ],
        sources("video", *["forum"] * 10),
    )

    items = build_action_items(result)

    assert action_types(items) == [ActionType.VIDEO_CONTENT_GAP.value]
    assert items[0]["priority"] == "medium"
