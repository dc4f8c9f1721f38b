"""Persistent storage: SQLite key-value database, OS keychain, and the
repositories built on them (vocabulary, cases, consultation log)."""

from storage.cases import CaseRepository
from storage.consultations import ConsultationLog
from storage.database import Database, get_db
from storage.keychain import KeychainManager, get_keychain
from storage.vocabulary import VocabularySnapshot, VocabularyStore

__all__ = [
    "CaseRepository",
    "ConsultationLog",
    "Database",
    "get_db",
    "KeychainManager",
    "get_keychain",
    "VocabularySnapshot",
    "VocabularyStore",
]
