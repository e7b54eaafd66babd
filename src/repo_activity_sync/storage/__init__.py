from __future__ import annotations

from .mongo import MongoStore, commit_doc_id, numbered_doc_id

__all__ = ["MongoStore", "commit_doc_id", "numbered_doc_id"]
