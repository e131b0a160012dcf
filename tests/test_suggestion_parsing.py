from adapters.local.scripted_ai import DEFAULT_CANNED_RESPONSE
from suggestion_parsing import MAX_ITEMS_PER_SECTION, build_result, extract_partial, parse_suggestions


def test_parses_all_sections():
    parsed = parse_suggestions(DEFAULT_CANNED_RESPONSE)

    assert parsed["insights"] == [
        "The discussion is focused on the current agenda item",
        "Open questions remain about ownership and timing",
    ]
    assert parsed["talking_points"] == [
        "Who owns the next step here?",
        "What timeline are we committing to?",
    ]
    assert parsed["follow_up_actions"] == ["Send a recap with owners and dates"]


def test_sections_are_capped():
    text = "TALKING POINTS:\n" + "".join(f"{i}. point {i}\n" for i in range(1, 7))

    assert len(parse_suggestions(text)["talking_points"]) == MAX_ITEMS_PER_SECTION


def test_unstructured_text_parses_to_empty_sections():
    parsed = parse_suggestions("Just say thanks and move on.")

    assert parsed == {"insights": [], "talking_points": [], "follow_up_actions": []}


def test_windows_line_endings():
    parsed = parse_suggestions("FOLLOW-UP ACTIONS:\r\n1. Book the room\r\n2. Share notes\r\n")

    assert parsed["follow_up_actions"] == ["Book the room", "Share notes"]


def test_build_result_shapes():
    assert build_result("hello")["text"] == "hello"
    assert build_result({"answer": 42}) == {"answer": 42}
    assert build_result(None) == {"value": None}


def test_partial_ignores_item_still_being_written():
    partial = extract_partial("TALKING POINTS:\n1. Who owns this?\n2. What time")

    assert partial == {"talking_points": ["Who owns this?"], "follow_up_actions": []}


def test_partial_reads_both_sections_mid_stream():
    text = DEFAULT_CANNED_RESPONSE[:DEFAULT_CANNED_RESPONSE.index("with owners")]

    partial = extract_partial(text)

    assert partial["talking_points"] == [
        "Who owns the next step here?",
        "What timeline are we committing to?",
    ]
    assert partial["follow_up_actions"] == []


def test_partial_of_header_only_is_empty():
    assert extract_partial("INSIGHTS:\n- still thinking\n") == {"talking_points": [], "follow_up_actions": []}
