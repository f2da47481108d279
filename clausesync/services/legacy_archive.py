"""
Local legacy archive (pre-store save format) and the persisted migration flag

The archive is a directory of JSON files, one SavedContract each. It is only
read as a migration source and kept writable for the archive screens.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from pydantic import ValidationError as SchemaError

from clausesync.config.config import Config
from clausesync.database.schemas import MigrationState, SavedContract
from clausesync.services.clause_ordering import sanitize_identifier
from clausesync.services.exceptions import NotFound

logger = logging.getLogger(__name__)


class LegacyArchive:
    """SavedContract files under one directory"""

    def __init__(self, archive_dir: Path = None):
        self.archive_dir = Path(archive_dir or Config.LEGACY_ARCHIVE_DIR)

    def _entries(self) -> Iterator[Tuple[Path, SavedContract]]:
        if not self.archive_dir.exists():
            return
        for path in sorted(self.archive_dir.glob("*.json")):
            try:
                yield path, SavedContract.model_validate_json(path.read_text(encoding="utf-8"))
            except (SchemaError, ValueError) as e:
                logger.warning(f"[!] Skipping unreadable archive file {path.name}: {e}")

    def _find(self, contract_id: str) -> Tuple[Optional[Path], Optional[SavedContract]]:
        for path, contract in self._entries():
            if contract.id == contract_id:
                return path, contract
        return None, None

    def _new_path(self, contract_id: str) -> Path:
        """File for a contract not yet archived; ids that sanitize alike get a suffix"""
        stem = sanitize_identifier(contract_id) or "contract"
        path = self.archive_dir / f"{stem}.json"
        while path.exists():
            path = self.archive_dir / f"{stem}_{uuid.uuid4().hex[:8]}.json"
        return path

    def list_contracts(self) -> List[SavedContract]:
        """Every readable archived contract, in file-name order"""
        return [contract for _, contract in self._entries()]

    def get_contract(self, contract_id: str) -> Optional[SavedContract]:
        return self._find(contract_id)[1]

    def save_contract(self, contract: SavedContract) -> SavedContract:
        """Write (or overwrite) a contract in place; metadata is recomputed from the clauses"""
        contract = SavedContract.model_validate(contract.model_dump())
        if not contract.id:
            contract.id = str(uuid.uuid4())
        self.archive_dir.mkdir(parents=True, exist_ok=True)
        path, _ = self._find(contract.id)
        path = path or self._new_path(contract.id)
        path.write_text(contract.model_dump_json(indent=2), encoding="utf-8")
        logger.info(f"[OK] Archived {contract.name} ({len(contract.clauses)} clauses) to {path.name}")
        return contract

    def rename_contract(self, contract_id: str, new_name: str) -> SavedContract:
        contract = self.get_contract(contract_id)
        if contract is None:
            raise NotFound(f"Archived contract {contract_id} not found")
        contract.name = new_name.strip()
        return self.save_contract(contract)

    def delete_contract(self, contract_id: str) -> bool:
        path, _ = self._find(contract_id)
        if path is None:
            return False
        path.unlink()
        logger.info(f"[OK] Removed archived contract {contract_id} ({path.name})")
        return True


class MigrationStateStore:
    """Persisted pending / in_progress / complete flag, kept outside the clause store"""

    def __init__(self, state_file: Path = None):
        self.state_file = Path(state_file or Config.MIGRATION_STATE_FILE)

    def get(self) -> MigrationState:
        try:
            data = json.loads(self.state_file.read_text(encoding="utf-8"))
            return MigrationState(data.get("state"))
        except FileNotFoundError:
            return MigrationState.PENDING
        except (ValueError, AttributeError) as e:
            logger.warning(f"[!] Unreadable migration state, treating as pending: {e}")
            return MigrationState.PENDING

    def set(self, state: MigrationState) -> None:
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self.state_file.write_text(json.dumps({"state": MigrationState(state).value}), encoding="utf-8")

    def is_needed(self) -> bool:
        # in_progress here means the previous run died part-way: retry it
        return self.get() != MigrationState.COMPLETE
