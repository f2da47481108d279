import json
from datetime import date

import pytest

from clausesync.database.schemas import SavedContract
from clausesync.services.exceptions import ValidationError
from clausesync.utils.backup import backup_filename, build_saved_contract, export_contract, parse_backup
from conftest import make_clause


def test_missing_name_is_reported_first():
    with pytest.raises(ValidationError, match="Missing 'name' field"):
        parse_backup(json.dumps({"clauses": []}))


def test_empty_clause_list_is_reported():
    with pytest.raises(ValidationError, match="no clauses"):
        parse_backup(json.dumps({"name": "X", "clauses": []}))


def test_missing_clause_array():
    with pytest.raises(ValidationError, match="'clauses' array"):
        parse_backup(json.dumps({"name": "X", "clauses": "nope"}))


def test_not_json():
    with pytest.raises(ValidationError, match="Not valid JSON"):
        parse_backup("{not json")


def test_backup_filename():
    assert backup_filename("Main Works/2024", date(2024, 5, 1)) == "Main_Works_2024_Backup_2024-05-01.json"


def test_metadata_is_recomputed_not_trusted():
    contract = SavedContract.model_validate({
        "name": "X",
        "clauses": [
            make_clause("1", condition_type="Particular", comparison=[{"change": "x"}]).model_dump(),
            make_clause("2", time_frames=["28 days"]).model_dump(),
        ],
        "metadata": {"totalClauses": 99, "highRiskCount": 7},
    })
    assert contract.metadata.totalClauses == 2
    assert contract.metadata.particularCount == 1
    assert contract.metadata.generalCount == 1
    assert contract.metadata.conflictCount == 1
    assert contract.metadata.timeSensitiveCount == 1
    assert contract.metadata.highRiskCount == 0


def test_export_is_indented_and_sorted():
    contract = build_saved_contract("c1", "Contract", [make_clause("10"), make_clause("9")])
    filename, content = export_contract(contract, date(2024, 1, 2))
    assert filename == "Contract_Backup_2024-01-02.json"
    assert content.startswith('{\n  "id": "c1"')
    assert [c.clause_number for c in parse_backup(content).clauses] == ["9", "10"]
