from typist.services.normalizer import canonical, normalize


def test_strips_control_and_separator_marks() -> None:
    raw = "¶In the\u0007 beginning\u2028 God\u2029"
    assert normalize(raw) == "In the beginning God"


def test_normalize_is_idempotent() -> None:
    samples = [
        "plain text",
        "tab\tand\nnewline",
        "¶ pilcrow first",
        "mixed \u0000 marks \x1b[0m\u2029",
        "",
    ]
    for sample in samples:
        once = normalize(sample)
        assert normalize(once) == once


def test_canonical_tolerates_trailing_whitespace_and_control_characters() -> None:
    target = "In the beginning"
    assert canonical(target + "   \n") == canonical(target)
    assert canonical("In the\u0000 beginning\u0007") == canonical(target)
    assert canonical("  In the beginning \u0007") == canonical(target)


def test_canonical_keeps_case_and_inner_spacing() -> None:
    assert canonical("in the beginning") != canonical("In the beginning")
    assert canonical("In  the beginning") != canonical("In the beginning")
