from pymongo import MongoClient, ReturnDocument
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional, List, Dict, Any
import time
import config

client = MongoClient(config.DATABASE_URL)
db = client.get_database(config.DATABASE_NAME)

# Collections
accounts_collection = db["accounts"]


def ensure_indexes():
    """Create indexes (called once at startup, not at import)."""
    accounts_collection.create_index("id", unique=True)


@dataclass
class Account:
    """Zoho OAuth client registered for one organisation."""
    id: str
    name: str
    client_id: str
    client_secret: str
    refresh_token: str
    supports_crm: bool = True
    supports_bigin: bool = False

    def supports(self, platform_name: str) -> bool:
        if platform_name == "bigin":
            return self.supports_bigin
        return self.supports_crm

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Accounts:
    """Account model"""

    FIELDS = ("name", "client_id", "client_secret", "refresh_token", "supports_crm", "supports_bigin")

    @staticmethod
    def create(data: Dict[str, Any]) -> Account:
        """Create an account. Ids are millisecond timestamps, as strings."""
        doc = {k: data[k] for k in Accounts.FIELDS if k in data}
        doc.setdefault("supports_crm", True)
        doc.setdefault("supports_bigin", False)
        doc["id"] = str(int(time.time() * 1000))
        doc["created_at"] = datetime.utcnow()
        accounts_collection.insert_one(doc)
        return Accounts._to_account(doc)

    @staticmethod
    def get_by_id(account_id) -> Optional[Account]:
        doc = accounts_collection.find_one({"id": str(account_id)})
        return Accounts._to_account(doc) if doc else None

    @staticmethod
    def get_all() -> List[Account]:
        return [Accounts._to_account(d) for d in accounts_collection.find().sort("id", 1)]

    @staticmethod
    def update(account_id, data: Dict[str, Any]) -> Optional[Account]:
        changes = {k: data[k] for k in Accounts.FIELDS if k in data}
        changes["updated_at"] = datetime.utcnow()
        doc = accounts_collection.find_one_and_update(
            {"id": str(account_id)},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        return Accounts._to_account(doc) if doc else None

    @staticmethod
    def delete(account_id) -> bool:
        result = accounts_collection.delete_one({"id": str(account_id)})
        return result.deleted_count > 0

    @staticmethod
    def _to_account(doc: Dict) -> Account:
        return Account(
            id=str(doc["id"]),
            name=doc.get("name") or "",
            client_id=doc.get("client_id") or "",
            client_secret=doc.get("client_secret") or "",
            refresh_token=doc.get("refresh_token") or "",
            supports_crm=bool(doc.get("supports_crm", True)),
            supports_bigin=bool(doc.get("supports_bigin", False)),
        )
