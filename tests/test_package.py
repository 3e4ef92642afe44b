from __future__ import annotations

from unittest import TestCase

import margin_manager


class TestPackageExports(TestCase):
    def test_every_export_resolves(self) -> None:
        for name in margin_manager.__all__:
            with self.subTest(name=name):
                self.assertTrue(hasattr(margin_manager, name))

    def test_exports_are_sorted_and_unique(self) -> None:
        names = list(margin_manager.__all__)
        self.assertEqual(names, sorted(set(names)))
