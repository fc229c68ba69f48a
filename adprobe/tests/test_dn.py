# mypy: disable-error-code="attr-defined"
# type: ignore
import unittest

from adprobe import dn
from adprobe.exceptions import PathError


class TestDn(unittest.TestCase):

    def test_same_dn_ignores_case_and_spacing(self):
        self.assertTrue(dn.same_dn("CN=Bob,OU=Staff,DC=corp", "cn=bob, ou=staff, dc=corp"))
        self.assertFalse(dn.same_dn("CN=Bob,OU=Staff,DC=corp", "CN=Rob,OU=Staff,DC=corp"))

    def test_split(self):
        self.assertEqual(
            dn.split("CN=Alice Smith,OU=Staff,DC=corp,DC=example"),
            ("CN=Alice Smith", "OU=Staff,DC=corp,DC=example"),
        )

    def test_split_escaped_comma(self):
        leaf, parent = dn.split(r"CN=Smith\, Alice,OU=Staff,DC=corp")
        self.assertEqual(parent, "OU=Staff,DC=corp")
        self.assertEqual(dn.leaf(r"CN=Smith\, Alice,OU=Staff,DC=corp"), ("CN", "Smith, Alice"))
        self.assertTrue(leaf.startswith("CN=Smith"))

    def test_split_without_parent(self):
        with self.assertRaises(PathError):
            dn.split("DC=example")

    def test_invalid(self):
        self.assertFalse(dn.is_valid("not a dn"))
        self.assertFalse(dn.is_valid(""))
        with self.assertRaises(PathError):
            dn.parse("not a dn")

    def test_ancestors(self):
        self.assertEqual(
            dn.ancestors("OU=Staff,DC=corp,DC=example"),
            ["DC=example", "DC=corp,DC=example", "OU=Staff,DC=corp,DC=example"],
        )

    def test_domain(self):
        target = "CN=Bob,OU=Staff,DC=Corp,DC=Example"
        self.assertEqual(dn.domain_components(target), ["Corp", "Example"])
        self.assertEqual(dn.domain_root(target), "DC=Corp,DC=Example")
        self.assertEqual(dn.domain_name(target), "corp.example")
        self.assertIsNone(dn.domain_root("CN=Bob,O=Acme"))
        self.assertIsNone(dn.domain_name("CN=Bob,O=Acme"))
