#!/usr/bin/env python3
"""
Test suite for the route and host tables
"""
import unittest

from edgehttp.core.errors import RouteTableFrozenError
from edgehttp.core.routing import HostTable, RouteEntry, RouteTable


class NamedHandler:
    def __init__(self, name):
        self.name = name

    async def handle(self, request):
        return None


class TestRouteEntry(unittest.TestCase):
    def test_exact_match(self):
        entry = RouteEntry("/sayhello", NamedHandler("hello"))
        self.assertTrue(entry.matches("/sayhello"))
        self.assertFalse(entry.matches("/sayhello/"))
        self.assertFalse(entry.matches("/sayhelloworld"))
        self.assertEqual(entry.remainder("/sayhello"), "/sayhello")

    def test_prefix_segment_boundary(self):
        entry = RouteEntry("/assets", NamedHandler("assets"), prefix=True)
        self.assertTrue(entry.matches("/assets"))
        self.assertTrue(entry.matches("/assets/app.js"))
        self.assertFalse(entry.matches("/assetsx/app.js"))
        self.assertEqual(entry.remainder("/assets/css/site.css"), "/css/site.css")
        self.assertEqual(entry.remainder("/assets"), "/")

    def test_root_prefix_matches_everything(self):
        entry = RouteEntry("/", NamedHandler("static"), prefix=True)
        for path in ("/", "/index.html", "/a/b/c", "/sayhello/extra"):
            with self.subTest(path=path):
                self.assertTrue(entry.matches(path))
                self.assertEqual(entry.remainder(path), path)


class TestRouteTable(unittest.TestCase):
    def setUp(self):
        self.routes = RouteTable()
        self.hello = NamedHandler("hello")
        self.static = NamedHandler("static")
        self.routes.register("/", self.static, prefix=True)
        self.routes.register("/sayhello", self.hello)

    def test_exact_before_prefix(self):
        """Exact routes win even when a prefix route was registered first"""
        self.assertIs(self.routes.lookup("/sayhello").handler, self.hello)

    def test_fallthrough_to_static(self):
        for path in ("/", "/sayhello/", "/SayHello", "/missing.txt"):
            with self.subTest(path=path):
                self.assertIs(self.routes.lookup(path).handler, self.static)

    def test_first_registered_wins(self):
        routes = RouteTable()
        first, second = NamedHandler("first"), NamedHandler("second")
        routes.register("/api", first, prefix=True)
        routes.register("/api", second, prefix=True)
        self.assertIs(routes.lookup("/api/v1").handler, first)

    def test_no_match(self):
        routes = RouteTable()
        routes.register("/only", NamedHandler("only"))
        self.assertIsNone(routes.lookup("/other"))
        self.assertIsNone(routes.lookup("*"))

    def test_freeze(self):
        self.routes.freeze()
        self.assertTrue(self.routes.frozen)
        with self.assertRaises(RouteTableFrozenError):
            self.routes.register("/late", NamedHandler("late"))
        self.assertEqual(len(self.routes), 2)

    def test_invalid_registrations(self):
        with self.assertRaises(ValueError):
            self.routes.register("relative", NamedHandler("x"))
        with self.assertRaises(TypeError):
            self.routes.register("/x", object())

    def test_filters_are_kept_in_order(self):
        entry = self.routes.register("/f", NamedHandler("f"), filters=["a", "b"])
        self.assertEqual(entry.filters, ("a", "b"))


class TestHostTable(unittest.TestCase):
    def setUp(self):
        self.hosts = HostTable()
        self.default = self.hosts.register("default")
        self.example = self.hosts.register("Example.com", max_request_size=128 * 1024)

    def test_select_by_authority(self):
        self.assertIs(self.hosts.select("example.com"), self.example)
        self.assertIs(self.hosts.select("EXAMPLE.COM:8443"), self.example)

    def test_fallback_to_first_host(self):
        self.assertIs(self.hosts.select("unknown.org"), self.default)
        self.assertIs(self.hosts.select(""), self.default)
        self.assertIs(self.hosts.select("[::1]:3000"), self.default)

    def test_max_request_size(self):
        self.assertEqual(self.hosts.max_request_size, 128 * 1024)

    def test_freeze_freezes_routes(self):
        self.hosts.freeze()
        self.assertTrue(self.default.routes.frozen)
        with self.assertRaises(RouteTableFrozenError):
            self.hosts.register("late.example.com")

    def test_empty_table_has_no_default(self):
        with self.assertRaises(LookupError):
            HostTable().default


if __name__ == '__main__':
    unittest.main()
