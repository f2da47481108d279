"""
Contract backup files: {id, name, timestamp, clauses, metadata}
"""

import json
import re
from datetime import date
from typing import Any, List, Optional, Tuple, Union

from pydantic import ValidationError as SchemaError

from clausesync.database.schemas import Clause, SavedContract
from clausesync.services.clause_ordering import sort_clauses
from clausesync.services.exceptions import ValidationError


def backup_filename(name: str, on: Optional[date] = None) -> str:
    """<sanitized-name>_Backup_<YYYY-MM-DD>.json"""
    safe_name = re.sub(r"[^a-z0-9]", "_", name or "", flags=re.IGNORECASE)
    return f"{safe_name}_Backup_{(on or date.today()).isoformat()}.json"


def export_contract(contract: SavedContract, on: Optional[date] = None) -> Tuple[str, str]:
    """Serialize with 2-space indentation; returns (filename, json text)"""
    contract = SavedContract.model_validate(contract.model_dump())
    return backup_filename(contract.name, on), json.dumps(contract.model_dump(mode="json"), indent=2)


def build_saved_contract(contract_id: str, name: str, clauses: List[Clause]) -> SavedContract:
    return SavedContract(id=contract_id, name=name, clauses=sort_clauses(clauses))


def parse_backup(content: Union[str, bytes]) -> SavedContract:
    """
    Validate a backup file

    Each missing piece fails with its own message: no name, no clause list,
    an empty clause list.
    """
    try:
        data: Any = json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Invalid contract file format. Not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError("Invalid contract file format. Expected a JSON object.")
    if not data.get("name") or not isinstance(data.get("name"), str):
        raise ValidationError("Invalid contract file format. Missing 'name' field.")
    if not isinstance(data.get("clauses"), list):
        raise ValidationError("Invalid contract file format. Missing or invalid 'clauses' array.")
    if len(data["clauses"]) == 0:
        raise ValidationError("Contract file contains no clauses.")

    try:
        return SavedContract.model_validate(data)
    except SchemaError as e:
        raise ValidationError(f"Invalid contract file format. {e.errors()[0].get('msg', str(e))}") from e
