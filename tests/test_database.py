"""
Comprehensive unit tests for database.py (Accounts model)

Tests cover:
- Account dataclass platform support
- create / get_by_id / get_all / update / delete against a mocked collection
"""

import unittest
from unittest.mock import patch, MagicMock
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


ACCOUNT_DOC = {
    "_id": "mongo-id",
    "id": "1700000000000",
    "name": "Acme",
    "client_id": "cid",
    "client_secret": "secret",
    "refresh_token": "refresh",
    "supports_crm": True,
    "supports_bigin": False,
    "created_at": "ignored",
}


class TestAccountDataclass(unittest.TestCase):

    def test_supports(self):
        from database import Account

        account = Account(id="1", name="A", client_id="c", client_secret="s", refresh_token="r")
        self.assertTrue(account.supports("crm"))
        self.assertFalse(account.supports("bigin"))

        bigin_only = Account(id="2", name="B", client_id="c", client_secret="s", refresh_token="r",
                             supports_crm=False, supports_bigin=True)
        self.assertFalse(bigin_only.supports("crm"))
        self.assertTrue(bigin_only.supports("bigin"))


class TestAccounts(unittest.TestCase):

    @patch("database.accounts_collection")
    def test_create_assigns_timestamp_id(self, mock_coll):
        from database import Accounts

        with patch("database.time.time", return_value=1700000000.5):
            account = Accounts.create({
                "name": "Acme",
                "client_id": "cid",
                "client_secret": "secret",
                "refresh_token": "refresh",
                "unexpected": "dropped",
            })

        self.assertEqual(account.id, "1700000000500")
        self.assertTrue(account.supports_crm)
        self.assertFalse(account.supports_bigin)
        inserted = mock_coll.insert_one.call_args[0][0]
        self.assertNotIn("unexpected", inserted)
        self.assertIn("created_at", inserted)

    @patch("database.accounts_collection")
    def test_get_by_id(self, mock_coll):
        from database import Accounts

        mock_coll.find_one.return_value = dict(ACCOUNT_DOC)
        account = Accounts.get_by_id(1700000000000)

        mock_coll.find_one.assert_called_once_with({"id": "1700000000000"})
        self.assertEqual(account.name, "Acme")
        self.assertEqual(account.refresh_token, "refresh")

    @patch("database.accounts_collection")
    def test_get_by_id_missing(self, mock_coll):
        from database import Accounts

        mock_coll.find_one.return_value = None
        self.assertIsNone(Accounts.get_by_id("nope"))

    @patch("database.accounts_collection")
    def test_get_all_sorted(self, mock_coll):
        from database import Accounts

        mock_coll.find.return_value.sort.return_value = [dict(ACCOUNT_DOC), dict(ACCOUNT_DOC, id="1800000000000")]
        accounts = Accounts.get_all()

        mock_coll.find.return_value.sort.assert_called_once_with("id", 1)
        self.assertEqual([a.id for a in accounts], ["1700000000000", "1800000000000"])

    @patch("database.accounts_collection")
    def test_update_only_known_fields(self, mock_coll):
        from database import Accounts

        mock_coll.find_one_and_update.return_value = dict(ACCOUNT_DOC, supports_bigin=True)
        account = Accounts.update("1700000000000", {"supports_bigin": True, "id": "hijack"})

        changes = mock_coll.find_one_and_update.call_args[0][1]["$set"]
        self.assertEqual(changes["supports_bigin"], True)
        self.assertNotIn("id", changes)
        self.assertTrue(account.supports_bigin)

    @patch("database.accounts_collection")
    def test_delete(self, mock_coll):
        from database import Accounts

        mock_coll.delete_one.return_value = MagicMock(deleted_count=1)
        self.assertTrue(Accounts.delete("1700000000000"))
        mock_coll.delete_one.return_value = MagicMock(deleted_count=0)
        self.assertFalse(Accounts.delete("1700000000000"))


if __name__ == "__main__":
    unittest.main()
