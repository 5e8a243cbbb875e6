import unittest

import jwt

from labhub.auth import (
    DEFAULT_ROSTER,
    authenticate,
    hash_password,
    issue_token,
    resolve_identity,
    seed_roster,
    verify_password,
    verify_token,
)
from labhub.db import InMemoryDbClient
from labhub.enums import Role
from labhub.errors import AuthError


class PasswordTests(unittest.TestCase):
    def test_hash_and_verify(self):
        hashed = hash_password("Luhadia")
        self.assertTrue(hashed.startswith("$2b$"))
        self.assertTrue(verify_password("Luhadia", hashed))
        self.assertFalse(verify_password("luhadia", hashed))
        self.assertFalse(verify_password("Luhadia", None))
        self.assertFalse(verify_password("Luhadia", "garbage"))

    def test_salt_makes_hashes_differ(self):
        self.assertNotEqual(hash_password("x"), hash_password("x"))


class TokenTests(unittest.TestCase):
    def test_round_trip(self):
        token = issue_token("2", "secret", 60)
        self.assertEqual(verify_token(token, "secret"), "2")

    def test_claims(self):
        claims = jwt.decode(issue_token("2", "secret", 60), "secret", algorithms=["HS256"])
        self.assertEqual(claims["sub"], "2")
        self.assertEqual(claims["exp"] - claims["iat"], 60)

    def test_tampered_or_foreign_token_rejected(self):
        token = issue_token("2", "secret", 60)
        with self.assertRaises(AuthError):
            verify_token(token, "other-secret")
        tampered = token[:-2] + ("BB" if token.endswith("AA") else "AA")
        with self.assertRaises(AuthError):
            verify_token(tampered, "secret")
        with self.assertRaises(AuthError):
            verify_token("nonsense", "secret")

    def test_token_without_expiry_rejected(self):
        token = jwt.encode({"sub": "2"}, "secret", algorithm="HS256")
        with self.assertRaises(AuthError):
            verify_token(token, "secret")

    def test_expired_token_rejected(self):
        token = issue_token("2", "secret", -10)
        with self.assertRaises(AuthError) as ctx:
            verify_token(token, "secret")
        self.assertIn("expired", str(ctx.exception))


class RosterTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()

    def test_seed_only_into_empty_table(self):
        self.assertEqual(seed_roster(self.db), len(DEFAULT_ROSTER))
        self.assertEqual(seed_roster(self.db), 0)
        self.assertEqual(self.db.get_user("1").role, Role.ADMIN)

    def test_authenticate(self):
        seed_roster(self.db)
        self.assertEqual(authenticate(self.db, "Daksh", "Singla").user_id, "3")
        with self.assertRaises(AuthError):
            authenticate(self.db, "Daksh", "wrong")
        with self.assertRaises(AuthError):
            authenticate(self.db, "Nobody", "x")

    def test_inactive_user_cannot_log_in_or_connect(self):
        seed_roster(self.db)
        self.db.get_user("3").is_active = False
        with self.assertRaises(AuthError):
            authenticate(self.db, "Daksh", "Singla")
        with self.assertRaises(AuthError):
            resolve_identity(self.db, "3")

    def test_resolve_identity_without_secret_trusts_user_id(self):
        seed_roster(self.db)
        self.assertEqual(resolve_identity(self.db, "2").name, "Sarthak")


if __name__ == "__main__":
    unittest.main()
