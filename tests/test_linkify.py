from clausesync.services.clause_linker import anchor_id, linkify_clause, linkify_text
from conftest import make_clause


def test_reference_becomes_anchor():
    assert linkify_text("As stated in Clause 4.2 above.") == \
        'As stated in <a href="#clause-4.2">Clause 4.2</a> above.'


def test_subclause_with_letter_points_at_parent_number():
    result = linkify_text("subject to Sub-Clause 8.1(a)")
    assert result == 'subject to <a href="#clause-8.1">Sub-Clause 8.1(a)</a>'


def test_annotation_is_idempotent():
    text = "See Clause 4.2, Article 3 and Sub-Clause 20.1(b); clause 7 applies."
    once = linkify_text(text)
    assert linkify_text(once) == once
    assert once.count('<a href="#clause-') == 4


def test_empty_text():
    assert linkify_text(None) == ""
    assert linkify_text("") == ""


def test_words_without_numbers_are_untouched():
    assert linkify_text("This clause survives termination.") == "This clause survives termination."


def test_anchor_id():
    assert anchor_id("14.1(a)") == "14.1"


def test_linkify_clause_keeps_absent_variant_absent():
    clause = make_clause("1", text="Refer to Clause 2", general_condition="Clause 3 governs")
    linked = linkify_clause(clause)
    assert linked.clause_text == 'Refer to <a href="#clause-2">Clause 2</a>'
    assert linked.general_condition == '<a href="#clause-3">Clause 3</a> governs'
    assert linked.particular_condition is None
    assert clause.clause_text == "Refer to Clause 2"
