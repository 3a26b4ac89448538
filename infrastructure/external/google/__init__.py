"""Google Apps Script (Drive / Sheets) integration."""
from .apps_script_client import AppsScriptClient, FileUploaded, FolderCreated, RowUpserted

__all__ = ["AppsScriptClient", "FileUploaded", "FolderCreated", "RowUpserted"]
