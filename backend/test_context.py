from context import CONTEXT_SEPARATOR, merge


def test_merge_into_empty_context():
    assert merge("", "A") == "A"


def test_merge_appends_with_separator():
    assert merge("A", "B") == "A | B"
    assert CONTEXT_SEPARATOR == " | "


def test_blank_hint_leaves_context_unchanged():
    assert merge("A", "") == "A"
    assert merge("A", "   ") == "A"
    assert merge("A", None) == "A"
    assert merge("", "") == ""


def test_merge_is_cumulative():
    context = ""
    for hint in ["No PM title yet", "", "Focus on school projects"]:
        context = merge(context, hint)
    assert context == "No PM title yet | Focus on school projects"
