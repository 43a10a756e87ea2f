from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from config.catalog import default_catalog
from config.catalog import load_catalog

ROOT = Path(__file__).resolve().parent.parent


class CatalogTests(unittest.TestCase):
    def test_bundled_catalog_loads_cleanly(self):
        catalog, warning = load_catalog(ROOT / "config" / "catalog.yml")
        self.assertIsNone(warning)
        self.assertIn("gpu:qwen3-32b", catalog.llm_models)
        self.assertLessEqual(len(catalog.currencies), 25)
        self.assertIn(("USD", "US Dollar"), catalog.currencies)
        self.assertEqual(catalog.arch_defaults["SDXL"]["width"], 1024)
        self.assertTrue(all(m for m in catalog.image_models))

    def test_missing_file_falls_back_with_warning(self):
        catalog, warning = load_catalog("/nonexistent/catalog.yml")
        self.assertIn("not found", warning)
        self.assertEqual(catalog, default_catalog())

    def test_invalid_yaml_falls_back(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "catalog.yml"
            path.write_text("llm_models: [unclosed\n", encoding="utf-8")
            catalog, warning = load_catalog(path)
        self.assertIn("Failed to read catalog", warning)
        self.assertEqual(catalog.llm_models, default_catalog().llm_models)

    def test_partial_file_keeps_defaults_for_missing_sections(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "catalog.yml"
            path.write_text(
                "llm_models:\n  - gpu:custom\ncurrencies:\n  - [sek, Swedish Krona]\n  - bogus\n",
                encoding="utf-8",
            )
            catalog, warning = load_catalog(path)
        self.assertIsNone(warning)
        self.assertEqual(catalog.llm_models, ["gpu:custom"])
        self.assertEqual(catalog.currencies, [("SEK", "Swedish Krona")])
        self.assertEqual(catalog.languages, default_catalog().languages)

    def test_script_table_shape(self):
        table = default_catalog().to_script_table()
        self.assertEqual(table["currencies"][0], {"code": "USD", "name": "US Dollar"})
        self.assertIsInstance(table["arch_defaults"]["SD1"], dict)


if __name__ == "__main__":
    unittest.main()
