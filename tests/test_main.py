import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from unittest.mock import MagicMock

from spotmonitor.main import build_parser, build_services, emit, run
from storage.json_store import JsonDocumentStore

CONFIG = {
    "store_backend": "json",
    "json_store_path": None,
    "default_region": "us-east-1",
    "default_image_id": "ami-1",
    "product_description": "Linux/UNIX",
    "max_channel_workers": 2,
    "max_region_workers": 2,
    "region_timeout_seconds": 5,
    "sample_window_minutes": 60,
    "reference_window_hours": 24,
}


class TestCli(unittest.TestCase):
    def setUp(self):
        self.temp_file = tempfile.NamedTemporaryFile(mode='w', delete=False, suffix='.json')
        self.temp_file.close()
        self.providers = MagicMock()
        self.provider = self.providers.resource_provider.return_value
        self.provider.create_request.return_value = {
            "request_id": "sir-1", "state": "open", "status_code": "pending-evaluation",
            "status_message": "pending", "resource_id": None,
        }
        self.services = build_services(
            dict(CONFIG), store=JsonDocumentStore(self.temp_file.name), providers=self.providers, adapters={}
        )

    def tearDown(self):
        if os.path.exists(self.temp_file.name):
            os.unlink(self.temp_file.name)

    def _run(self, *argv):
        out = io.StringIO()
        with redirect_stdout(out):
            emit(run(build_parser().parse_args(list(argv)), self.services))
        return json.loads(out.getvalue())

    def test_regions(self):
        regions = self._run("regions")
        self.assertIn("us-east-1", regions)
        self.assertEqual(regions, sorted(regions))

    def test_create_show_list(self):
        created = self._run(
            "create", "--owner", "user-1", "--family", "g5.xlarge", "--region", "us-east-1",
            "--max-price", "1.5", "--workload-config", '{"team": "0"}',
        )
        self.assertEqual(created["state"], "evaluating")
        self.assertEqual(created["max_price"], "1.5")
        self.assertEqual(created["workload_config"], {"team": "0"})

        shown = self._run("show", created["id"], "--caller", "user-1")
        self.assertEqual(shown["provider_request_id"], "sir-1")
        self.assertEqual(len(self._run("list", "--owner", "user-1")), 1)

    def test_notify_without_preferences(self):
        result = self._run("notify", "--owner", "user-1", "--subject", "s", "--message", "m")
        self.assertFalse(result["accepted"])


if __name__ == '__main__':
    unittest.main()
