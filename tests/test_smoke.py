"""
Smoke tests to verify basic application integrity.
Ensures that all modules can be imported without errors.
"""
import unittest


class TestSmoke(unittest.TestCase):
    def test_import_textual_app(self):
        """Test that dockyard.textual_app can be imported successfully."""
        try:
            import dockyard.textual_app
        except ImportError as e:
            self.fail(f"Failed to import dockyard.textual_app: {e}")

    def test_import_main_module(self):
        """Test that dockyard.__main__ can be imported successfully."""
        try:
            import dockyard.__main__
        except ImportError as e:
            self.fail(f"Failed to import dockyard.__main__: {e}")

    def test_import_engine(self):
        """Test that dockyard.engine can be imported successfully."""
        try:
            import dockyard.engine
        except ImportError as e:
            self.fail(f"Failed to import dockyard.engine: {e}")


if __name__ == '__main__':
    unittest.main()
