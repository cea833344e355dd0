from unittest import TestCase
from unittest.mock import MagicMock, patch

from errors import AuthExpiredError, PermissionDeniedError, ShopifyError, TransportError
from run_controller import ItemOutcome, Pacer, RunController, RunState


class TestRunController(TestCase):
    def test_all_items_succeed(self):
        controller = RunController("publish")

        run = controller.execute(lambda: range(3), lambda item, run: ItemOutcome.SUCCEEDED)

        self.assertEqual(run.state, RunState.COMPLETED)
        self.assertEqual(run.summary(), {
            "processed": 3, "succeeded": 3, "already_satisfied": 0, "unavailable": 0, "failed": 0,
        })

    def test_per_item_error_is_recorded_and_run_continues(self):
        def process(item, run):
            if item == 1:
                raise ShopifyError("Publish error: boom")
            return ItemOutcome.SUCCEEDED

        run = RunController("publish").execute(lambda: range(3), process)

        self.assertEqual(run.state, RunState.COMPLETED)
        self.assertEqual(run.counters["succeeded"], 2)
        self.assertEqual(run.counters["failed"], 1)
        self.assertEqual(run.errors, [("1", "Publish error: boom")])

    def test_fatal_error_aborts_at_item_boundary(self):
        seen = []

        def process(item, run):
            seen.append(item)
            if item == 5:
                raise PermissionDeniedError("ACCESS_DENIED")
            return ItemOutcome.SUCCEEDED

        run = RunController("publish").execute(lambda: range(1, 11), process)

        self.assertTrue(run.aborted)
        self.assertEqual(seen, [1, 2, 3, 4, 5])
        self.assertEqual(run.processed, 5)
        self.assertEqual(run.counters["succeeded"], 4)
        self.assertEqual(run.counters["failed"], 1)
        self.assertIn("write_publications", run.instruction)

    def test_enumeration_failure_aborts_with_nothing_processed(self):
        def enumerate_items():
            raise TransportError("Request failed")

        process = MagicMock()
        run = RunController("audit").execute(enumerate_items, process)

        self.assertTrue(run.aborted)
        self.assertEqual(run.processed, 0)
        process.assert_not_called()
        self.assertEqual(run.errors[0][0], "<run>")

    def test_auth_expiry_gets_one_refresh_and_retry(self):
        credentials = MagicMock()
        calls = []

        def process(item, run):
            calls.append(item)
            if len(calls) == 1:
                raise AuthExpiredError("IllegalAccessToken")
            return ItemOutcome.SUCCEEDED

        run = RunController("sync-availability", credentials=credentials).execute(lambda: ["a", "b"], process)

        credentials.refresh.assert_called_once()
        self.assertEqual(calls, ["a", "a", "b"])
        self.assertEqual(run.counters["succeeded"], 2)
        self.assertFalse(run.aborted)

    def test_second_auth_expiry_is_fatal(self):
        credentials = MagicMock()

        def process(item, run):
            raise AuthExpiredError("IllegalAccessToken")

        run = RunController("sync-availability", credentials=credentials).execute(lambda: ["a", "b"], process)

        credentials.refresh.assert_called_once()
        self.assertTrue(run.aborted)
        self.assertEqual(run.processed, 1)

    def test_failed_refresh_escalates(self):
        credentials = MagicMock()
        credentials.refresh.side_effect = AuthExpiredError("All tokens expired.")

        def process(item, run):
            raise AuthExpiredError("IllegalAccessToken")

        run = RunController("probe", credentials=credentials).execute(lambda: ["a", "b"], process)

        self.assertTrue(run.aborted)
        self.assertEqual(run.counters["failed"], 1)

    def test_summary_emitted_once_even_on_abort(self):
        controller = RunController("publish")
        with patch.object(controller.run, "finalize", wraps=controller.run.finalize) as finalize:
            def process(item, run):
                raise PermissionDeniedError("denied")
            controller.execute(lambda: [1, 2], process)
        finalize.assert_called_once()

    def test_finalize_is_idempotent(self):
        run = RunController("publish").execute(lambda: [1], lambda item, run: ItemOutcome.SUCCEEDED)
        run.state = RunState.ABORTED
        run.finalize()
        self.assertEqual(run.state, RunState.ABORTED)


class TestPacer(TestCase):
    def test_first_call_does_not_wait(self):
        with patch("run_controller.time.sleep") as sleep:
            pacer = Pacer(0.3)
            pacer()
            sleep.assert_not_called()
            pacer()
            pacer()
        self.assertEqual(sleep.call_count, 2)
        sleep.assert_called_with(0.3)

    def test_zero_interval_never_waits(self):
        with patch("run_controller.time.sleep") as sleep:
            pacer = Pacer(0)
            pacer()
            pacer()
        sleep.assert_not_called()
