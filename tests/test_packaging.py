from __future__ import annotations

import re
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]


class TestProjectMetadata(unittest.TestCase):
    def setUp(self) -> None:
        self.pyproject = (ROOT / "pyproject.toml").read_text()

    def test_readme_is_user_facing(self) -> None:
        m = re.search(r'^readme\s*=\s*"([^"]+)"', self.pyproject, flags=re.MULTILINE)
        self.assertIsNotNone(m)
        readme = ROOT / m.group(1)
        self.assertEqual(readme.name, "README.md")
        self.assertTrue(readme.exists())
        text = readme.read_text()
        for command in ("spca-jax run", "spca-jax filter", "spca-jax simulate"):
            self.assertIn(command, text)

    def test_console_script(self) -> None:
        self.assertIn('spca-jax = "spca_jax.cli:main"', self.pyproject)


if __name__ == "__main__":
    unittest.main()
