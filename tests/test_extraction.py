import random

import pytest

from emergent_world.extraction import (
    ImpactDecision,
    convert_impacts_to_deltas,
    extract_action_analysis,
    extract_impacts,
    extract_opinion,
    looks_meta,
    looks_meta_like,
    match_balanced_brace,
    normalize_metric_key,
    parse_legacy_metrics,
    sanitize_event_text,
    sanitize_opinion,
    scan_json_objects,
)

CURRENT = {"economy": 40.0, "security": 0.0, "diplomacy": -20.0, "environment": 90.0, "approval": 10.0, "stability": 5.0}


def test_opinion_inside_prose():
    text = 'blah blah {"advisor_opinion":"Raise tariffs now."} trailing junk'
    assert extract_opinion(text) == "Raise tariffs now."


def test_opinion_prefers_last_well_formed_object():
    text = (
        'Draft: {"advisor_opinion": "first draft" oops}\n'
        'Final: {"advisor_opinion": "Sign the treaty today."}'
    )
    assert extract_opinion(text) == "Sign the treaty today."


def test_opinion_last_object_wins_when_both_parse():
    text = '{"advisor_opinion":"Wait."} then {"advisor_opinion":"Act now."}'
    assert extract_opinion(text) == "Act now."


def test_opinion_handles_nested_braces_and_escaped_quotes():
    text = 'x {"meta": {"depth": 2}, "advisor_opinion": "Say \\"no\\" to {pressure}."} y'
    assert extract_opinion(text) == 'Say "no" to {pressure}.'


def test_opinion_regex_fallback_for_broken_json():
    text = 'Here you go: {"advisor_opinion": "Deploy the reserves.", "confidence": high'
    assert extract_opinion(text) == "Deploy the reserves."


def test_opinion_from_labelled_line():
    text = "Some preamble\nFinal Advisory: Cut the deficit gradually.\nmore"
    assert extract_opinion(text) == "Cut the deficit gradually."


def test_opinion_skips_meta_paragraphs():
    text = "I am considering the options.\n\nLet me think.\n\nYou should open negotiations."
    assert extract_opinion(text) == "You should open negotiations."


def test_opinion_miss_is_none():
    assert extract_opinion("") is None
    assert extract_opinion(None) is None
    assert extract_opinion("I'm thinking about it.") is None


def test_opinion_is_idempotent():
    text = 'noise {"advisor_opinion":"  Hold   firm.  Stay calm! Listen? Then act. Later. "} end'
    first = extract_opinion(text)
    assert first == extract_opinion(text)
    assert first == "Hold firm. Stay calm! Listen?"


def test_sanitize_opinion():
    assert sanitize_opinion('  `"Be   decisive"`  ') == "Be decisive"
    assert sanitize_opinion("One. Two! Three? Four.") == "One. Two! Three?"
    assert sanitize_opinion("no punctuation here") == "no punctuation here"
    assert sanitize_opinion("   ") == ""


def test_meta_detection():
    assert looks_meta("I'm going to answer")
    assert looks_meta("My reasoning is as follows")
    assert not looks_meta("You should act.")
    assert looks_meta_like('{"advisor_opinion":')
    assert looks_meta_like("use <b>force</b>")
    assert not looks_meta_like("You should act.")
    assert not looks_meta_like("")


def test_balanced_brace_scanner():
    text = 'a {"k": "}"} b {"n": {"m": 1}} {unclosed'
    assert scan_json_objects(text) == ['{"k": "}"}', '{"n": {"m": 1}}']
    assert match_balanced_brace(text, 0) is None
    assert match_balanced_brace("{", 0) is None


def test_scanner_recovers_after_unmatched_brace():
    assert scan_json_objects('{ "a": 1 { "b": 2 }') == ['{ "b": 2 }']


def test_impacts_key_normalised_and_high_delta_in_range():
    text = 'Analysis... {"impacts":{"public_opinion":{"level":"high","direction":"+"}}}'
    impacts = extract_impacts(text)
    assert impacts == {"approval": ImpactDecision(level="high", direction="+")}

    deltas = convert_impacts_to_deltas(impacts, CURRENT, rng=random.Random(7))
    assert 30 <= deltas["approval"] <= 50
    assert deltas["economy"] == 0.0


def test_impact_singular_key_and_justification():
    text = '{"impact":{"National Security":{"level":"LOW","direction":"-","justification":"cuts"}}}'
    assert extract_impacts(text) == {"security": ImpactDecision(level="low", direction="-", justification="cuts")}


def test_impacts_prefers_last_object():
    text = (
        '{"impacts":{"economy":{"level":"low","direction":"+"}}}\n'
        'Revised: {"impacts":{"economy":{"level":"medium","direction":"-"}}}'
    )
    assert extract_impacts(text)["economy"] == ImpactDecision(level="medium", direction="-")


def test_impacts_drop_invalid_entries():
    text = (
        '{"impacts":{"economy":{"level":"huge","direction":"+"},'
        '"security":{"level":"low","direction":"up"},'
        '"diplomacy":{"level":"medium","direction":"none"},'
        '"stability":"high"}}'
    )
    assert extract_impacts(text) == {"diplomacy": ImpactDecision(level="medium", direction="0")}


def test_impacts_salvaged_from_truncated_output():
    text = (
        'Action Analysis: fine.\n{"impacts":{"economy":{"level":"medium","direction":"+"},'
        '"climate":{"level":"extreme","direction":"-"},"approval":{"level":"lo'
    )
    assert extract_impacts(text) == {
        "economy": ImpactDecision(level="medium", direction="+"),
        "environment": ImpactDecision(level="extreme", direction="-"),
    }


def test_impacts_miss_is_empty():
    assert extract_impacts("no json at all") == {}
    assert extract_impacts('{"metrics":{"economy":3}}') == {}
    assert extract_impacts(None) == {}


@pytest.mark.parametrize(
    "key, expected",
    [
        ("public_opinion", "approval"),
        ("Public Opinion", "approval"),
        ("civil_liberties", "approval"),
        ("national_security", "security"),
        ("geopolitical_standing", "diplomacy"),
        ("tech_sector_confidence", "stability"),
        ("climate", "environment"),
        ("economy", "economy"),
        ("unknown_metric", "unknown_metric"),
    ],
)
def test_metric_synonyms(key, expected):
    assert normalize_metric_key(key) == expected


def test_extreme_negative_saturates_to_boundary():
    deltas = convert_impacts_to_deltas({"economy": ImpactDecision("extreme", "-")}, CURRENT)
    assert deltas["economy"] == -140.0


def test_extreme_positive_and_zero_direction():
    deltas = convert_impacts_to_deltas(
        {"environment": ImpactDecision("extreme", "+"), "security": ImpactDecision("extreme", "0")}, CURRENT
    )
    assert deltas["environment"] == 10.0
    assert deltas["security"] == 0.0


@pytest.mark.parametrize("level, low, high", [("low", 5, 10), ("medium", 15, 30), ("high", 30, 50)])
def test_level_ranges(level, low, high):
    rng = random.Random(3)
    for _ in range(50):
        up = convert_impacts_to_deltas({"economy": ImpactDecision(level, "+")}, CURRENT, rng=rng)["economy"]
        down = convert_impacts_to_deltas({"economy": ImpactDecision(level, "-")}, CURRENT, rng=rng)["economy"]
        assert low <= up <= high
        assert -high <= down <= -low
        assert up == int(up)


def test_legacy_metrics():
    text = 'Action Analysis: ok.\n{"metrics":{"economy":5,"security":-3,"approval":2}}'
    assert parse_legacy_metrics(text) == {
        "economy": 5.0,
        "security": -3.0,
        "diplomacy": 0.0,
        "environment": 0.0,
        "approval": 2.0,
        "stability": 0.0,
    }
    assert parse_legacy_metrics("nothing") is None
    assert parse_legacy_metrics('{"metrics":{}}') is None


def test_action_analysis_strips_metric_sections_and_json():
    text = (
        "Thoughts first.\nAction Analysis: The embargo hurts trade but signals resolve.\n\n"
        "Metric Impact:\nEconomy: -5.\n"
        '{"impacts":{"economy":{"level":"low","direction":"-"}}}'
    )
    assert extract_action_analysis(text) == "Action Analysis: The embargo hurts trade but signals resolve."
    assert extract_action_analysis("") == ""
    assert extract_action_analysis("Just prose.") == "Just prose."


def test_sanitize_event_text():
    text = "**Breaking** news\n#Breaking wire\n\n\n\n💼 Your advisors weigh in:\n`code` *stars*  \n"
    assert sanitize_event_text(text) == "Breaking news\n\ncode stars"
