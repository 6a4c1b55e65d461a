"""
Debouncer tests.

Timings are in tens of milliseconds so the suite stays fast; every
scenario runs inside its own event loop via asyncio.run().
"""

import asyncio
from datetime import datetime, timezone

from coco.debounce import Debouncer, new_request_id
from coco.models.event import ChangeEvent, ChangeType

DELAY = 0.05


def _change(sequence, content, path="/work/app.py", change_type=ChangeType.MODIFIED, dest=None):
    return ChangeEvent(
        path=path,
        change_type=change_type,
        sequence=sequence,
        timestamp=datetime.now(timezone.utc),
        content=content,
        language="python",
        dest_path=dest,
    )


class TestQuiescence:
    def setup_method(self):
        self.emitted = []

    def test_burst_emits_one_request_with_last_snapshot(self):
        async def scenario():
            debouncer = Debouncer(DELAY, self.emitted.append)
            for n in range(1, 6):
                debouncer.on_change(_change(n, f"x = {n}"))
                await asyncio.sleep(0.01)
            await asyncio.sleep(DELAY * 3)

        asyncio.run(scenario())
        assert len(self.emitted) == 1
        assert self.emitted[0].content == "x = 5"
        assert self.emitted[0].change_sequence == 5
        assert self.emitted[0].path == "/work/app.py"

    def test_nothing_fires_before_the_window_elapses(self):
        async def scenario():
            debouncer = Debouncer(DELAY, self.emitted.append)
            debouncer.on_change(_change(1, "a"))
            await asyncio.sleep(DELAY / 5)
            assert debouncer.is_pending("/work/app.py")
            return len(self.emitted)

        assert asyncio.run(scenario()) == 0

    def test_files_are_debounced_independently(self):
        async def scenario():
            debouncer = Debouncer(DELAY, self.emitted.append)
            debouncer.on_change(_change(1, "a", path="/work/a.py"))
            debouncer.on_change(_change(2, "b", path="/work/b.py"))
            await asyncio.sleep(DELAY * 3)

        asyncio.run(scenario())
        assert sorted(r.path for r in self.emitted) == ["/work/a.py", "/work/b.py"]

    def test_request_ids_are_unique(self):
        assert new_request_id() != new_request_id()
        assert new_request_id().startswith("req_")


class TestInFlight:
    def setup_method(self):
        self.emitted = []

    def test_changes_while_in_flight_collapse_to_latest(self):
        async def scenario():
            debouncer = Debouncer(DELAY, self.emitted.append)
            debouncer.on_change(_change(1, "v1"))
            await asyncio.sleep(DELAY * 3)
            first = self.emitted[0]
            assert debouncer.in_flight("/work/app.py") == first.request_id

            debouncer.on_change(_change(2, "v2"))
            debouncer.on_change(_change(3, "v3"))
            await asyncio.sleep(DELAY * 3)
            assert len(self.emitted) == 1

            debouncer.on_resolved(first.request_id, "/work/app.py")
            # queued snapshot is submitted immediately, no second quiet period
            assert len(self.emitted) == 2

        asyncio.run(scenario())
        assert self.emitted[1].content == "v3"
        assert self.emitted[1].change_sequence == 3

    def test_resolution_without_queued_change_goes_idle(self):
        async def scenario():
            debouncer = Debouncer(DELAY, self.emitted.append)
            debouncer.on_change(_change(1, "v1"))
            await asyncio.sleep(DELAY * 3)
            debouncer.on_resolved(self.emitted[0].request_id, "/work/app.py")
            return debouncer.in_flight("/work/app.py")

        assert asyncio.run(scenario()) is None
        assert len(self.emitted) == 1

    def test_stale_resolution_is_ignored(self):
        async def scenario():
            debouncer = Debouncer(DELAY, self.emitted.append)
            debouncer.on_change(_change(1, "v1"))
            await asyncio.sleep(DELAY * 3)
            debouncer.on_resolved("req_someoneelse", "/work/app.py")
            return debouncer.in_flight("/work/app.py")

        assert asyncio.run(scenario()) == self.emitted[0].request_id


class TestDeleteAndRename:
    def setup_method(self):
        self.emitted = []

    def test_delete_cancels_pending_work(self):
        async def scenario():
            debouncer = Debouncer(DELAY, self.emitted.append)
            debouncer.on_change(_change(1, "v1"))
            debouncer.on_change(_change(2, None, change_type=ChangeType.DELETED))
            await asyncio.sleep(DELAY * 3)
            return debouncer.is_pending("/work/app.py")

        assert asyncio.run(scenario()) is False
        assert self.emitted == []

    def test_rename_retargets_to_destination(self):
        async def scenario():
            debouncer = Debouncer(DELAY, self.emitted.append)
            debouncer.on_change(_change(1, "v1", path="/work/old.py"))
            debouncer.on_change(_change(
                2, "v1", path="/work/old.py", change_type=ChangeType.RENAMED, dest="/work/new.py"
            ))
            await asyncio.sleep(DELAY * 3)

        asyncio.run(scenario())
        assert [r.path for r in self.emitted] == ["/work/new.py"]

    def test_close_cancels_every_timer(self):
        async def scenario():
            debouncer = Debouncer(DELAY, self.emitted.append)
            debouncer.on_change(_change(1, "a", path="/work/a.py"))
            debouncer.on_change(_change(2, "b", path="/work/b.py"))
            debouncer.close()
            await asyncio.sleep(DELAY * 3)

        asyncio.run(scenario())
        assert self.emitted == []
