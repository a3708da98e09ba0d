"""
Tests for roster column discovery and row splitting
"""

from mealpass.services.column_rules import (
    ColumnRule,
    cell_text,
    extract_candidates,
    find_roll_value,
    normalize_header,
    resolve_columns,
)

def test_normalize_header_drops_punctuation_and_case():
    assert normalize_header("Roll No.") == "rollno"
    assert normalize_header("  E-Mail Address ") == "emailaddress"
    assert normalize_header(None) == ""

def test_cell_text_blanks_pandas_missing_values():
    assert cell_text(float("nan")) == ""
    assert cell_text("None") == ""
    assert cell_text("  24CS001 ") == "24CS001"

def test_rule_exclusion_wins_over_inclusion():
    rule = ColumnRule("roll_no", ("roll",), ("veg", "food"))
    assert rule.matches("Roll Number")
    assert not rule.matches("Roll of food preference")

def test_resolve_columns_typical_form_headers():
    headers = ["Timestamp", "Name of the Participant", "Roll No", "Kongu.edu Mail", "Veg / Non Veg", "Room No", "Department"]
    column_map = resolve_columns(headers)

    assert column_map.index("name") == 1
    assert column_map.index("roll_no") == 2
    assert column_map.emails == [3]
    assert column_map.index("food_preference") == 4
    assert column_map.index("room_no") == 5
    assert column_map.index("department") == 6

def test_roll_rule_ignores_food_columns():
    column_map = resolve_columns(["Name", "Food preference (enrolled meal)", "Register Number"])
    assert column_map.index("roll_no") == 2
    assert column_map.index("food_preference") == 1

def test_header_is_claimed_once():
    # "Participant Email" must not also become the name column
    column_map = resolve_columns(["Participant Email", "Team Name"])
    assert column_map.emails == [0]
    assert column_map.index("name") is None

def test_extract_single_candidate():
    headers = ["Name", "Roll No", "Email", "Food Preference"]
    column_map = resolve_columns(headers)
    candidates = extract_candidates(["Asha Raman", "24cs001", "Asha@Example.edu", "Veg"], column_map)

    assert len(candidates) == 1
    c = candidates[0]
    assert c.name == "Asha Raman"
    assert c.roll_no == "24cs001"
    assert c.email == "Asha@Example.edu"
    assert c.food_preference == "Veg"
    assert c.details["Roll No"] == "24cs001"

def test_blank_row_yields_nothing():
    column_map = resolve_columns(["Name", "Email"])
    assert extract_candidates(["", "  "], column_map) == []

def test_multiple_email_columns_give_one_candidate_each():
    headers = ["Team Name", "Leader Name", "Leader Email", "Member 2 Name", "Member 2 Email"]
    column_map = resolve_columns(headers)
    row = ["Rockets", "Asha", "asha@example.edu", "Bala", "bala@example.edu"]

    candidates = extract_candidates(row, column_map)

    assert [c.email for c in candidates] == ["asha@example.edu", "bala@example.edu"]
    assert [c.name for c in candidates] == ["Asha", "Bala"]

def test_unpaired_second_email_does_not_inherit_primary_identity():
    headers = ["Name", "Roll No", "Email", "Alternate Email"]
    column_map = resolve_columns(headers)
    row = ["Asha", "24CS001", "asha@example.edu", "asha.alt@example.edu"]

    candidates = extract_candidates(row, column_map)

    assert len(candidates) == 2
    assert candidates[0].name == "Asha" and candidates[0].roll_no == "24CS001"
    assert candidates[1].name == "" and candidates[1].roll_no == ""

def test_no_email_header_falls_back_to_cells_with_at_sign():
    column_map = resolve_columns(["Name", "Contact"])
    candidates = extract_candidates(["Asha", "asha@example.edu"], column_map)

    assert len(candidates) == 1
    assert candidates[0].email == "asha@example.edu"

def test_find_roll_value_in_original_columns():
    details = {"Veg or Non Veg": "Veg", "Register No": "24ec045", "Name": "Bala"}
    assert find_roll_value(details) == "24ec045"
    assert find_roll_value({"Name": "Bala"}) is None
