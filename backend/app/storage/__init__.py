# Storage package
from app.storage.file_storage import FileStorage, get_file_storage

__all__ = ["FileStorage", "get_file_storage"]
