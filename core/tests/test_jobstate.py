import builtins

from django.test import SimpleTestCase

from core import jobstate


class JobStateExportsTest(SimpleTestCase):
    def test_star_import_keeps_builtin_connection_error(self):
        namespace = {}
        exec("from core.jobstate import *", namespace)
        self.assertNotIn("ConnectionError", namespace)
        self.assertIn("JobSnapshot", namespace)
        self.assertIn("Timeout", namespace)

    def test_public_names_exist(self):
        for name in jobstate.__all__:
            self.assertTrue(hasattr(jobstate, name), name)

    def test_connection_error_event_is_not_the_builtin(self):
        event = jobstate.ConnectionError("Redis unavailable", job_id="J1")
        self.assertIsNot(jobstate.ConnectionError, builtins.ConnectionError)
        self.assertEqual(event.name, "error")
        self.assertEqual(jobstate.event_payload(event)["jobId"], "J1")
