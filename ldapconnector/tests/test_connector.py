# mypy: disable-error-code="attr-defined"
# type: ignore
"""
Tests for :class:`ldapconnector.connector.LdapConnector`, with the
connection mocked out.
"""

import unittest
from unittest.mock import MagicMock, call, patch

from ldapconnector import ldap
from ldapconnector.connector import LdapConnector
from ldapconnector.exceptions import (
    ConnectivityError,
    DirectoryIOError,
    InvalidValueError,
    NotFoundError,
    PartialUpdateError,
    SchemaError,
    UnknownAttributeError,
    UnknownObjectClassError,
)
from ldapconnector.filters import EqualsFilter, StartsWithFilter
from ldapconnector.objects import (
    ACCOUNT,
    ENABLE,
    GROUP,
    NAME,
    UID,
    Attribute,
    ConnectorObject,
    OperationOptions,
    SyncDelta,
    SyncToken,
)
from ldapconnector.server_capabilities import LdapServerCapabilities

from .fixtures import (
    BASE_DN,
    GROUPS_DN,
    PEOPLE_DN,
    entry,
    make_configuration,
    make_connection,
    search_messages,
)

ALICE_DN = f"uid=alice,{PEOPLE_DN}"
BOB_DN = f"uid=bob,{PEOPLE_DN}"
STAFF_DN = f"cn=staff,{GROUPS_DN}"


class ConnectorTestCase(unittest.TestCase):
    configuration_kwargs: dict = {}
    edirectory = False

    def setUp(self):
        self.configuration = make_configuration(**self.configuration_kwargs)
        self.connection = make_connection(self.configuration, edirectory=self.edirectory)
        self.connection.search_ext.return_value = 3
        self.connector = LdapConnector(self.configuration, connection=self.connection)
        self.results = []

    def handler(self, obj):
        self.results.append(obj)
        return True

    def found(self, dn, **attrs):
        """Make the identifier lookup find ``dn``."""
        self.connection.search_s.return_value = [entry(dn, **attrs)]


class TestLifecycle(ConnectorTestCase):
    def test_connect(self):
        self.connection.is_connected = False
        self.connector.connect()
        self.connection.connect.assert_called_once_with()
        self.connection.read_subschema.assert_called_once_with()
        self.assertTrue(self.connector.schema_translator.is_loaded)

    def test_connect_when_connected_only_loads_schema(self):
        self.connector.connect()
        self.connection.connect.assert_not_called()
        self.connection.read_subschema.assert_called_once_with()

    def test_context_manager(self):
        with LdapConnector(self.configuration, connection=self.connection) as connector:
            self.assertTrue(connector.schema_translator.is_loaded)
        self.connection.close.assert_called_once_with()

    def test_test_rebinds(self):
        self.connector.test()
        self.connection.bind.assert_called_once_with()
        self.connection.root_dse.assert_called_once_with(LdapServerCapabilities.ROOT_DSE_ATTRIBUTES)

    def test_test_connects(self):
        self.connection.is_connected = False
        with self.assertLogs("ldapconnector.connector", level="INFO"):
            self.connector.test()
        self.connection.connect.assert_called_once_with()
        self.connection.bind.assert_not_called()

    def test_test_logs_flavor(self):
        self.connection.root_dse.return_value = {"vendorName": [b"OpenLDAP Foundation"]}
        with self.assertLogs("ldapconnector.connector", level="INFO") as cm:
            self.connector.test()
        self.assertEqual(
            cm.output,
            [
                "INFO:ldapconnector.connector:ldapconnector.test.success "
                "url=ldap://ldap.example.com flavor=openldap"
            ],
        )

    def test_test_warns_about_vendor_mismatch(self):
        self.connection.root_dse.return_value = {"vendorName": [b"NetIQ Corporation"]}
        with self.assertLogs("ldapconnector.connector", level="WARNING") as cm:
            self.connector.test()
        self.assertIn("looks like edirectory", cm.output[0])
        self.assertIn("vendor generic", cm.output[0])

    def test_test_fails(self):
        self.connection.bind.side_effect = ConnectivityError("invalid credentials")
        with self.assertRaises(ConnectivityError):
            self.connector.test()

    def test_test_root_dse_unreadable(self):
        self.connection.root_dse.side_effect = DirectoryIOError("insufficient access")
        with self.assertRaises(DirectoryIOError):
            self.connector.test()

    def test_check_alive(self):
        self.connection.is_alive.return_value = True
        self.connector.check_alive()
        self.connection.is_alive.return_value = False
        with self.assertRaises(ConnectivityError):
            self.connector.check_alive()

    def test_dispose(self):
        self.connector.dispose()
        self.connection.close.assert_called_once_with()

    def test_default_connection(self):
        connector = LdapConnector(self.configuration)
        self.assertEqual(connector.connection.url, "ldap://ldap.example.com")

    def test_schema_is_reloaded_every_call(self):
        first = self.connector.schema()
        self.connector.schema()
        self.assertEqual(self.connection.read_subschema.call_count, 2)
        self.assertIsNotNone(first.find_object_class("inetOrgPerson"))


class TestExecuteQuery(ConnectorTestCase):
    def setUp(self):
        super().setUp()
        self.connection.result3.side_effect = search_messages(
            (ldap.RES_SEARCH_ENTRY, [entry(ALICE_DN, cn="Alice", sn="Jones", entryUUID="1")]),
        )

    def test_search(self):
        result = self.connector.execute_query(
            ACCOUNT, EqualsFilter("cn", "Alice"), self.handler
        )
        self.assertTrue(result.all_results_returned)
        self.assertEqual([obj.uid for obj in self.results], ["1"])
        self.connection.search_ext.assert_called_once_with(
            BASE_DN,
            ldap.SCOPE_SUBTREE,
            "(&(objectClass=inetOrgPerson)(cn=Alice))",
            ["*", "entryUUID"],
        )

    def test_everything(self):
        self.connector.execute_query(ACCOUNT, None, self.handler)
        self.assertEqual(
            self.connection.search_ext.call_args[0][2], "(objectClass=inetOrgPerson)"
        )

    def test_container_and_scope(self):
        options = OperationOptions(container=PEOPLE_DN, scope="one")
        self.connector.execute_query(ACCOUNT, None, self.handler, options)
        args = self.connection.search_ext.call_args[0]
        self.assertEqual(args[0], PEOPLE_DN)
        self.assertEqual(args[1], ldap.SCOPE_ONELEVEL)

    def test_configured_user_container(self):
        connector = LdapConnector(
            make_configuration(user_container_dn=PEOPLE_DN), connection=self.connection
        )
        connector.execute_query(ACCOUNT, None, self.handler)
        self.assertEqual(self.connection.search_ext.call_args[0][0], PEOPLE_DN)

    def test_invalid_scope(self):
        with self.assertRaises(InvalidValueError):
            self.connector.execute_query(
                ACCOUNT, None, self.handler, OperationOptions(scope="children")
            )

    def test_attributes_to_get(self):
        options = OperationOptions(attributes_to_get=[NAME, "cn", "surname"])
        self.connector.execute_query(ACCOUNT, None, self.handler, options)
        self.assertEqual(
            self.connection.search_ext.call_args[0][3], ["cn", "sn", "entryUUID"]
        )

    def test_group_class(self):
        self.connector.execute_query(GROUP, StartsWithFilter("cn", "st"), self.handler)
        self.assertEqual(
            self.connection.search_ext.call_args[0][2],
            "(&(objectClass=groupOfNames)(cn=st*))",
        )

    def test_unknown_object_class(self):
        with self.assertRaises(UnknownObjectClassError):
            self.connector.execute_query("posixAccount", None, self.handler)

    def test_unknown_attribute_fails_before_searching(self):
        with self.assertRaises(UnknownAttributeError):
            self.connector.execute_query(ACCOUNT, EqualsFilter("bogus", "x"), self.handler)
        self.connection.search_ext.assert_not_called()

    def test_dn_lookup(self):
        self.connector.execute_query(ACCOUNT, EqualsFilter(NAME, ALICE_DN), self.handler)
        self.connection.search_ext.assert_called_once_with(
            ALICE_DN,
            ldap.SCOPE_BASE,
            "(objectClass=inetOrgPerson)",
            ["*", "entryUUID"],
        )
        self.assertEqual(len(self.results), 1)

    def test_dn_lookup_missing_entry(self):
        self.connection.search_ext.side_effect = NotFoundError(ALICE_DN)
        result = self.connector.execute_query(
            ACCOUNT, EqualsFilter(NAME, ALICE_DN), self.handler
        )
        self.assertTrue(result.all_results_returned)
        self.assertEqual(self.results, [])

    def test_dn_lookup_rejects_garbage(self):
        with self.assertRaises(InvalidValueError):
            self.connector.execute_query(ACCOUNT, EqualsFilter(NAME, "alice"), self.handler)

    def test_connects_lazily(self):
        self.connection.is_connected = False
        self.connector.execute_query(ACCOUNT, None, self.handler)
        self.connection.connect.assert_called_once_with()


class TestExecuteQueryUidIsDN(ConnectorTestCase):
    configuration_kwargs = {"uid_attribute": "dn"}

    def test_uid_lookup_reads_the_entry(self):
        self.connection.result3.side_effect = search_messages(
            (ldap.RES_SEARCH_ENTRY, [entry(ALICE_DN, cn="Alice", sn="Jones")]),
        )
        self.connector.execute_query(ACCOUNT, EqualsFilter(UID, ALICE_DN), self.handler)
        self.connection.search_ext.assert_called_once_with(
            ALICE_DN, ldap.SCOPE_BASE, "(objectClass=inetOrgPerson)", ["*"]
        )
        self.assertEqual(self.results[0].uid, ALICE_DN)


class TestResolveDN(ConnectorTestCase):
    def test_found(self):
        self.found(ALICE_DN, entryUUID="1")
        self.assertEqual(self.connector.resolve_dn(ACCOUNT, "1"), ALICE_DN)
        self.connection.search_s.assert_called_once_with(
            BASE_DN,
            ldap.SCOPE_SUBTREE,
            "(&(objectClass=inetOrgPerson)(entryUUID=1))",
            ["entryUUID"],
        )

    def test_options(self):
        self.found(ALICE_DN, entryUUID="1")
        self.connector.resolve_dn(
            ACCOUNT, "1", OperationOptions(container=PEOPLE_DN, scope="one")
        )
        args = self.connection.search_s.call_args[0]
        self.assertEqual(args[0], PEOPLE_DN)
        self.assertEqual(args[1], ldap.SCOPE_ONELEVEL)

    def test_not_found(self):
        self.connection.search_s.return_value = []
        with self.assertRaises(NotFoundError):
            self.connector.resolve_dn(ACCOUNT, "1")

    def test_ambiguous(self):
        self.connection.search_s.return_value = [
            entry(ALICE_DN, entryUUID="1"),
            entry(BOB_DN, entryUUID="1"),
        ]
        with self.assertRaises(SchemaError):
            self.connector.resolve_dn(ACCOUNT, "1")

    def test_uid_is_dn(self):
        connector = LdapConnector(
            make_configuration(uid_attribute="dn"), connection=self.connection
        )
        self.assertEqual(connector.resolve_dn(ACCOUNT, ALICE_DN), ALICE_DN)
        self.connection.search_s.assert_not_called()

    def test_uid_is_dn_rejects_garbage(self):
        connector = LdapConnector(
            make_configuration(uid_attribute="dn"), connection=self.connection
        )
        with self.assertRaises(InvalidValueError):
            connector.resolve_dn(ACCOUNT, "not a dn")
        with self.assertRaises(InvalidValueError):
            connector.resolve_dn(ACCOUNT, "")


class TestCreate(ConnectorTestCase):
    def test_create(self):
        self.found(ALICE_DN, entryUUID="new-uuid")
        uid = self.connector.create(
            ACCOUNT, {NAME: ALICE_DN, "cn": "Alice", "surname": "Jones", "mail": []}
        )
        self.assertEqual(uid, "new-uuid")
        self.connection.add.assert_called_once_with(
            ALICE_DN,
            [
                ("objectClass", [b"inetOrgPerson"]),
                ("cn", [b"Alice"]),
                ("sn", [b"Jones"]),
            ],
        )
        self.connection.search_s.assert_called_once_with(
            ALICE_DN, ldap.SCOPE_BASE, "(objectClass=*)", ["entryUUID"]
        )

    def test_attribute_objects(self):
        self.found(ALICE_DN, entryUUID="new-uuid")
        self.connector.create(
            ACCOUNT,
            [Attribute(NAME, ALICE_DN), Attribute("cn", ["Alice", "Ali"]), Attribute("sn", "J")],
        )
        modlist = self.connection.add.call_args[0][1]
        self.assertIn(("cn", [b"Alice", b"Ali"]), modlist)

    def test_extra_object_classes(self):
        connector = LdapConnector(
            make_configuration(extra_object_classes=["activeAccount"]),
            connection=self.connection,
        )
        self.found(ALICE_DN, entryUUID="new-uuid")
        connector.create(ACCOUNT, {NAME: ALICE_DN, "cn": "Alice", "sn": "J", "uidNumber": 1001})
        modlist = self.connection.add.call_args[0][1]
        self.assertEqual(modlist[0], ("objectClass", [b"inetOrgPerson", b"activeAccount"]))
        self.assertIn(("uidNumber", [b"1001"]), modlist)

    def test_supplied_uid(self):
        connector = LdapConnector(
            make_configuration(uid_attribute="uid"), connection=self.connection
        )
        uid = connector.create(ACCOUNT, {NAME: ALICE_DN, "cn": "Alice", "sn": "J", "uid": "alice"})
        self.assertEqual(uid, "alice")
        self.assertIn(("uid", [b"alice"]), self.connection.add.call_args[0][1])
        self.connection.search_s.assert_not_called()

    def test_missing_name(self):
        with self.assertRaises(InvalidValueError):
            self.connector.create(ACCOUNT, {"cn": "Alice"})
        self.connection.add.assert_not_called()

    def test_bad_name(self):
        with self.assertRaises(InvalidValueError):
            self.connector.create(ACCOUNT, {NAME: "alice", "cn": "Alice"})
        with self.assertRaises(InvalidValueError):
            self.connector.create(ACCOUNT, {NAME: [ALICE_DN, BOB_DN], "cn": "Alice"})

    def test_bad_value_fails_before_writing(self):
        with self.assertRaises(InvalidValueError):
            self.connector.create(
                ACCOUNT, {NAME: ALICE_DN, "cn": "Alice", "employeeNumber": ["1", "2"]}
            )
        self.connection.add.assert_not_called()

    def test_duplicate_attributes(self):
        with self.assertRaises(InvalidValueError):
            self.connector.create(
                ACCOUNT, [Attribute(NAME, ALICE_DN), Attribute("cn", "a"), Attribute("CN", "b")]
            )

    def test_entry_vanished(self):
        self.connection.search_s.return_value = []
        with self.assertRaises(NotFoundError):
            self.connector.create(ACCOUNT, {NAME: ALICE_DN, "cn": "Alice", "sn": "J"})

    def test_uid_is_dn(self):
        connector = LdapConnector(
            make_configuration(uid_attribute="dn"), connection=self.connection
        )
        uid = connector.create(ACCOUNT, {NAME: ALICE_DN, "cn": "Alice", "sn": "J"})
        self.assertEqual(uid, ALICE_DN)
        self.connection.search_s.assert_not_called()


class TestUpdate(ConnectorTestCase):
    def setUp(self):
        super().setUp()
        self.found(ALICE_DN, entryUUID="1")

    def test_replace(self):
        uid = self.connector.update(ACCOUNT, "1", {"mail": "alice@example.com", "description": []})
        self.assertEqual(uid, "1")
        self.connection.modify.assert_called_once_with(
            ALICE_DN,
            [
                (ldap.MOD_REPLACE, "mail", [b"alice@example.com"]),
                (ldap.MOD_REPLACE, "description", None),
            ],
        )
        self.connection.rename.assert_not_called()

    def test_same_update_twice(self):
        attributes = {NAME: ALICE_DN, "mail": "alice@example.com", "description": []}
        self.assertEqual(self.connector.update(ACCOUNT, "1", attributes), "1")
        self.assertEqual(self.connector.update(ACCOUNT, "1", attributes), "1")
        expected = call(
            ALICE_DN,
            [
                (ldap.MOD_REPLACE, "mail", [b"alice@example.com"]),
                (ldap.MOD_REPLACE, "description", None),
            ],
        )
        self.assertEqual(self.connection.modify.call_args_list, [expected, expected])
        self.connection.rename.assert_not_called()

    def test_add_values(self):
        self.connector.add_attribute_values(ACCOUNT, "1", {"mail": ["a@x", "b@x"]})
        self.connection.modify.assert_called_once_with(
            ALICE_DN, [(ldap.MOD_ADD, "mail", [b"a@x", b"b@x"])]
        )

    def test_remove_values(self):
        self.connector.remove_attribute_values(ACCOUNT, "1", {"mail": ["a@x"]})
        self.connection.modify.assert_called_once_with(
            ALICE_DN, [(ldap.MOD_DELETE, "mail", [b"a@x"])]
        )

    def test_name_only_with_update(self):
        with self.assertRaises(InvalidValueError):
            self.connector.add_attribute_values(ACCOUNT, "1", {NAME: BOB_DN})
        with self.assertRaises(InvalidValueError):
            self.connector.remove_attribute_values(ACCOUNT, "1", {NAME: BOB_DN})

    def test_nothing_to_do(self):
        self.connector.add_attribute_values(ACCOUNT, "1", {"mail": []})
        self.connection.modify.assert_not_called()

    def test_not_found(self):
        self.connection.search_s.return_value = []
        with self.assertRaises(NotFoundError):
            self.connector.update(ACCOUNT, "1", {"mail": "a@x"})
        self.connection.modify.assert_not_called()

    def test_rename_and_modify(self):
        uid = self.connector.update(ACCOUNT, "1", {NAME: BOB_DN, "cn": "Bob"})
        self.assertEqual(uid, "1")
        self.connection.rename.assert_called_once_with(ALICE_DN, BOB_DN)
        self.connection.modify.assert_called_once_with(
            BOB_DN, [(ldap.MOD_REPLACE, "cn", [b"Bob"])]
        )

    def test_rename_only(self):
        self.connector.update(ACCOUNT, "1", {NAME: BOB_DN})
        self.connection.rename.assert_called_once_with(ALICE_DN, BOB_DN)
        self.connection.modify.assert_not_called()

    def test_same_name_is_not_a_rename(self):
        self.connector.update(ACCOUNT, "1", {NAME: ALICE_DN.upper(), "cn": "Alice"})
        self.connection.rename.assert_not_called()
        self.connection.modify.assert_called_once()

    def test_modify_fails_after_rename(self):
        self.connection.modify.side_effect = DirectoryIOError("constraint violation")
        with self.assertRaises(PartialUpdateError) as cm:
            self.connector.update(ACCOUNT, "1", {NAME: BOB_DN, "cn": "Bob"})
        self.assertEqual(cm.exception.completed, ["rename"])
        self.assertEqual(cm.exception.dn, BOB_DN)

    def test_modify_fails_without_rename(self):
        self.connection.modify.side_effect = DirectoryIOError("constraint violation")
        with self.assertRaises(DirectoryIOError) as cm:
            self.connector.update(ACCOUNT, "1", {"cn": "Bob"})
        self.assertNotIsInstance(cm.exception, PartialUpdateError)

    def test_translation_fails_before_rename(self):
        with self.assertRaises(UnknownAttributeError):
            self.connector.update(ACCOUNT, "1", {NAME: BOB_DN, "bogus": "x"})
        self.connection.rename.assert_not_called()
        self.connection.modify.assert_not_called()

    def test_uid_is_dn_rename_changes_uid(self):
        connector = LdapConnector(
            make_configuration(uid_attribute="dn"), connection=self.connection
        )
        uid = connector.update(ACCOUNT, ALICE_DN, {NAME: BOB_DN})
        self.assertEqual(uid, BOB_DN)
        self.connection.search_s.assert_not_called()

    def test_uid_is_dn_bad_uid_writes_nothing(self):
        connector = LdapConnector(
            make_configuration(uid_attribute="dn"), connection=self.connection
        )
        with self.assertRaises(InvalidValueError):
            connector.update(ACCOUNT, "alice", {NAME: BOB_DN, "cn": "Bob"})
        with self.assertRaises(InvalidValueError):
            connector.delete(ACCOUNT, "alice")
        self.connection.rename.assert_not_called()
        self.connection.modify.assert_not_called()
        self.connection.delete.assert_not_called()


class TestDelete(ConnectorTestCase):
    def test_delete(self):
        self.found(ALICE_DN, entryUUID="1")
        with self.assertLogs("ldapconnector.connector", level="INFO"):
            self.connector.delete(ACCOUNT, "1")
        self.connection.delete.assert_called_once_with(ALICE_DN)

    def test_not_found(self):
        self.connection.search_s.return_value = []
        with self.assertRaises(NotFoundError):
            self.connector.delete(ACCOUNT, "1")
        self.connection.delete.assert_not_called()


class TestEDirectory(ConnectorTestCase):
    configuration_kwargs = {
        "vendor": "edirectory",
        "manage_reciprocal_group_attributes": True,
        "manage_equivalence_attributes": True,
    }
    edirectory = True

    def test_search_rewrites_account_state(self):
        self.connection.result3.side_effect = search_messages(
            (
                ldap.RES_SEARCH_ENTRY,
                [entry(ALICE_DN, cn="Alice", GUID=b"\x00\xff", loginDisabled="TRUE")],
            ),
        )
        options = OperationOptions(attributes_to_get=["cn", ENABLE])
        self.connector.execute_query(ACCOUNT, None, self.handler, options)
        self.assertEqual(
            self.connection.search_ext.call_args[0][3], ["loginDisabled", "cn", "GUID"]
        )
        obj = self.results[0]
        self.assertEqual(obj.uid, "00ff")
        self.assertIs(obj.get(ENABLE).value, False)

    def test_default_containers(self):
        self.connection.result3.side_effect = search_messages()
        self.connector.execute_query(ACCOUNT, None, self.handler)
        self.assertEqual(self.connection.search_ext.call_args[0][0], f"ou=People,{BASE_DN}")
        self.connection.result3.side_effect = search_messages()
        self.connector.execute_query(GROUP, None, self.handler)
        self.assertEqual(self.connection.search_ext.call_args[0][0], f"ou=Groups,{BASE_DN}")

    def test_container_option_wins(self):
        self.connection.result3.side_effect = search_messages()
        options = OperationOptions(container=BASE_DN)
        self.connector.execute_query(ACCOUNT, None, self.handler, options)
        self.assertEqual(self.connection.search_ext.call_args[0][0], BASE_DN)

    def test_resolve_searches_container(self):
        self.found(STAFF_DN, GUID=b"\x01\x02")
        self.connector.resolve_dn(GROUP, "0102")
        self.assertEqual(self.connection.search_s.call_args[0][0], f"ou=Groups,{BASE_DN}")

    def test_uid_filter_is_escaped_binary(self):
        self.found(ALICE_DN, GUID=b"\x00\xff")
        self.connector.resolve_dn(ACCOUNT, "00ff")
        self.assertEqual(
            self.connection.search_s.call_args[0][2],
            "(&(objectClass=inetOrgPerson)(GUID=\\00\\ff))",
        )

    def test_delete_by_guid(self):
        self.found(ALICE_DN, GUID=b"\x12\x34\xab\xcd")
        self.connector.delete(ACCOUNT, "1234abcd")
        self.assertEqual(
            self.connection.search_s.call_args[0][2],
            "(&(objectClass=inetOrgPerson)(GUID=\\12\\34\\ab\\cd))",
        )
        self.connection.delete.assert_called_once_with(ALICE_DN)

    def test_disable(self):
        self.found(ALICE_DN, GUID=b"\x00\xff")
        self.connector.update(ACCOUNT, "00ff", {ENABLE: False})
        self.connection.modify.assert_called_once_with(
            ALICE_DN, [(ldap.MOD_REPLACE, "loginDisabled", [b"TRUE"])]
        )

    def test_create_group_updates_members(self):
        self.found(STAFF_DN, GUID=b"\x01\x02")
        uid = self.connector.create(GROUP, {NAME: STAFF_DN, "cn": "staff", "member": [ALICE_DN]})
        self.assertEqual(uid, "0102")
        modlist = self.connection.add.call_args[0][1]
        self.assertIn(("member", [ALICE_DN.encode("utf-8")]), modlist)
        self.assertIn(("equivalentToMe", [ALICE_DN.encode("utf-8")]), modlist)
        self.connection.modify.assert_called_once_with(
            ALICE_DN, [(ldap.MOD_ADD, "groupMembership", [STAFF_DN.encode("utf-8")])]
        )

    def test_create_with_supplied_guid(self):
        uid = self.connector.create(
            ACCOUNT, {NAME: ALICE_DN, "cn": "Alice", "sn": "Jones", "GUID": b"\x00\xff"}
        )
        self.assertEqual(uid, "00ff")
        self.assertIn(("GUID", [b"\x00\xff"]), self.connection.add.call_args[0][1])
        self.connection.search_s.assert_not_called()
        self.found(ALICE_DN, GUID=b"\x00\xff")
        self.assertEqual(self.connector.resolve_dn(ACCOUNT, uid), ALICE_DN)

    def test_create_with_supplied_uid_keeps_it(self):
        uid = self.connector.create(
            ACCOUNT, {NAME: ALICE_DN, "cn": "Alice", "sn": "Jones", UID: "00ff"}
        )
        self.assertEqual(uid, "00ff")
        self.connection.search_s.assert_not_called()

    def test_replace_members_twice(self):
        # the group already holds what we ask for
        self.found(STAFF_DN, GUID=b"\x01\x02", member=ALICE_DN)
        self.assertEqual(self.connector.update(GROUP, "0102", {"member": [ALICE_DN]}), "0102")
        self.assertEqual(self.connector.update(GROUP, "0102", {"member": [ALICE_DN]}), "0102")
        expected = call(
            STAFF_DN,
            [
                (ldap.MOD_REPLACE, "member", [ALICE_DN.encode("utf-8")]),
                (ldap.MOD_REPLACE, "equivalentToMe", [ALICE_DN.encode("utf-8")]),
            ],
        )
        self.assertEqual(self.connection.modify.call_args_list, [expected, expected])

    def test_replace_members_adds_back_link_once(self):
        self.found(STAFF_DN, GUID=b"\x01\x02")
        self.connector.update(GROUP, "0102", {"member": [ALICE_DN]})
        self.assertEqual(self.connection.modify.call_count, 2)
        self.connection.modify.assert_called_with(
            ALICE_DN, [(ldap.MOD_ADD, "groupMembership", [STAFF_DN.encode("utf-8")])]
        )
        self.connection.modify.reset_mock()
        self.found(STAFF_DN, GUID=b"\x01\x02", member=ALICE_DN)
        self.connector.update(GROUP, "0102", {"member": [ALICE_DN]})
        self.connection.modify.assert_called_once()
        self.assertEqual(self.connection.modify.call_args[0][0], STAFF_DN)

    def test_related_entry_failure(self):
        self.found(STAFF_DN, GUID=b"\x01\x02")
        self.connection.modify.side_effect = [None, None, DirectoryIOError("no such object")]
        with self.assertRaises(PartialUpdateError) as cm:
            self.connector.add_attribute_values(
                GROUP, "0102", {"member": [ALICE_DN, BOB_DN]}
            )
        self.assertEqual(cm.exception.completed, ["modify", f"modify {ALICE_DN}"])
        self.assertEqual(cm.exception.dn, STAFF_DN)

    def test_deferred_changes_wait_for_primary(self):
        self.found(STAFF_DN, GUID=b"\x01\x02")
        self.connection.modify.side_effect = DirectoryIOError("insufficient access")
        with self.assertRaises(DirectoryIOError):
            self.connector.add_attribute_values(GROUP, "0102", {"member": [ALICE_DN]})
        self.connection.modify.assert_called_once()
        self.assertEqual(self.connection.modify.call_args[0][0], STAFF_DN)


class TestSync(ConnectorTestCase):
    configuration_kwargs = {"vendor": "edirectory"}
    edirectory = True

    def test_delegates_to_strategy(self):
        strategy_class = MagicMock()
        strategy_class.return_value.sync.return_value = SyncToken(7)
        with patch("ldapconnector.connector.choose_sync_strategy", return_value=strategy_class):
            token = self.connector.sync(ACCOUNT, SyncToken(5), self.handler)
        self.assertEqual(token, SyncToken(7))
        strategy_class.assert_called_once_with(
            self.connection,
            self.configuration,
            self.connector.schema_translator,
            attributes=["*", "GUID"],
        )
        object_class, passed_token, deliver, _ = strategy_class.return_value.sync.call_args[0]
        self.assertEqual(object_class, ACCOUNT)
        self.assertEqual(passed_token, SyncToken(5))

        obj = ConnectorObject(ACCOUNT, "00ff", ALICE_DN, [Attribute("loginDisabled", False)])
        deliver(SyncDelta(SyncDelta.UPDATE, "00ff", SyncToken(6), obj=obj))
        delivered = self.results[0]
        self.assertIs(delivered.object.get(ENABLE).value, True)

    def test_deletes_are_passed_through(self):
        strategy_class = MagicMock()
        with patch("ldapconnector.connector.choose_sync_strategy", return_value=strategy_class):
            self.connector.sync(ACCOUNT, None, self.handler)
        deliver = strategy_class.return_value.sync.call_args[0][2]
        deliver(SyncDelta(SyncDelta.DELETE, "00ff", SyncToken(6)))
        self.assertIsNone(self.results[0].object)


class TestLatestSyncToken(ConnectorTestCase):
    def test_latest_token(self):
        self.connection.root_dse.return_value = {"lastChangeNumber": [b"12"]}
        self.assertEqual(self.connector.get_latest_sync_token(ACCOUNT), SyncToken(12))
