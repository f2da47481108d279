import os
from pathlib import Path
from fastapi import UploadFile
import uuid

from clausesync.config.config import Config
from clausesync.services.exceptions import StoreFailure, ValidationError

BACKUP_EXTENSIONS = {'.json'}


class FileHandler:
    """PDF uploads to a temp dir, backup files read into memory"""

    def __init__(self, upload_dir: Path = None, max_file_size: int = None):
        self.upload_dir = Path(upload_dir or Config.UPLOAD_DIR)
        self.max_file_size = max_file_size or Config.MAX_UPLOAD_SIZE
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def _check_extension(self, filename: str, allowed: set) -> str:
        file_ext = Path(filename or "").suffix.lower()
        if file_ext not in allowed:
            raise ValidationError(f"Invalid file type. Allowed: {', '.join(sorted(allowed))}")
        return file_ext

    async def save_upload(self, file: UploadFile) -> str:
        """Save an uploaded PDF under a unique name; returns its path"""
        file_ext = self._check_extension(file.filename, Config.ALLOWED_EXTENSIONS)

        # Generate unique filename
        file_path = self.upload_dir / f"{uuid.uuid4()}{file_ext}"

        try:
            with open(file_path, "wb") as buffer:
                total_size = 0
                while chunk := await file.read(8192):
                    total_size += len(chunk)
                    if total_size > self.max_file_size:
                        raise ValidationError(f"File too large. Max: {self.max_file_size // (1024 * 1024)}MB")
                    buffer.write(chunk)
            return str(file_path)

        except ValidationError:
            self._remove(file_path)
            raise
        except OSError as e:
            self._remove(file_path)
            raise StoreFailure(f"Upload failed: {str(e)}") from e

    async def read_backup(self, file: UploadFile) -> bytes:
        """Contents of an uploaded backup file"""
        self._check_extension(file.filename, BACKUP_EXTENSIONS)
        content = await file.read()
        if len(content) > self.max_file_size:
            raise ValidationError(f"File too large. Max: {self.max_file_size // (1024 * 1024)}MB")
        return content

    async def cleanup(self, *file_paths: str):
        """Remove temporary files"""
        for file_path in file_paths:
            if file_path:
                self._remove(Path(file_path))

    @staticmethod
    def _remove(file_path: Path):
        try:
            if file_path.exists():
                os.remove(file_path)
                print(f"[OK] Cleaned up: {file_path}")
        except OSError as e:
            print(f"[!] Cleanup warning: {e}")
